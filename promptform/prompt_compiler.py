import json
from typing import Any, Dict, List

from promptform.base_utils import BaseUtils, condense_text, to_snake
from promptform.errors import ClientInputError
from promptform.form_prompts import (
    ANALYZE_RESPONSES_PROMPT,
    ASSIST_FIELD_PROMPT,
    FIELD_JSON_CONTRACT,
    FORM_JSON_CONTRACT,
    GENERATE_FROM_DOCUMENT_PROMPT,
    GENERATE_FROM_IMAGE_PROMPT,
    GENERATE_FROM_TEXT_PROMPT,
    OUTCOME_RULES,
    QUIZ_RULES,
    REFACTOR_FORM_PROMPT,
    STRUCTURE_RULES,
    SUGGEST_KNOWLEDGE_BLOCK,
    SUGGEST_NEXT_FIELD_PROMPT,
    SUGGEST_OUTCOME_BLOCK,
    SUGGEST_PLAIN_BLOCK,
)
from promptform.google_helpers import DOC_TEXT_CHAR_LIMIT, JSON_CONTEXT_CHAR_LIMIT

# -----------------------
# Rule tables
# -----------------------

FIELD_KINDS = (
    "text", "email", "password", "textarea", "radio", "checkbox", "select",
    "date", "time", "file", "range", "radioGrid", "section", "submit",
)

OPTION_KINDS = ("radio", "checkbox", "select")

# kinds whose answers are free text rather than a choice
TEXT_LIKE_KINDS = ("text", "textarea", "email", "password", "date", "time", "file")

THEME_PRESETS: Dict[str, Dict[str, str]] = {
    "Indigo":  {"primaryColor": "#6366F1", "backgroundColor": "#E0E7FF"},
    "Slate":   {"primaryColor": "#475569", "backgroundColor": "#E2E8F0"},
    "Rose":    {"primaryColor": "#F43F5E", "backgroundColor": "#FFE4E6"},
    "Amber":   {"primaryColor": "#F59E0B", "backgroundColor": "#FEF3C7"},
    "Emerald": {"primaryColor": "#10B981", "backgroundColor": "#D1FAE5"},
    "Sky":     {"primaryColor": "#0EA5E9", "backgroundColor": "#E0F2FE"},
}
DEFAULT_THEME = "Indigo"

QUIZ_KEYWORDS = ("quiz", "test", "exam", "assessment", "trivia", "knowledge check")

OUTCOME_KEYWORDS = (
    "personality", "personality test", "which type are you", "what kind of",
    "outcome", "result pages", "profile", "style quiz", "archetype",
)

KIND_RULES: Dict[str, str] = {
    "text": "short free-text answers (names, single words, short phrases)",
    "email": "email addresses",
    "password": "secrets the respondent types but should not be displayed",
    "textarea": "long free-text answers (comments, feedback, descriptions)",
    "radio": "a single choice among few options (2 to 5)",
    "checkbox": "multiple choices allowed, or a single consent/agreement tick box",
    "select": "a single choice among many options (6 or more)",
    "date": "calendar dates",
    "time": "times of day",
    "file": "file uploads",
    "range": "a numeric scale between 'min' and 'max' (default 0 to 10)",
    "radioGrid": "a matrix of rows rated on the same set of columns (Likert scales)",
    "section": "a heading that splits the form into parts; it collects no answer",
    "submit": "the submit button, exactly once, always the last field",
}

TASK_KINDS = (
    "generate_from_text",
    "generate_from_image",
    "generate_from_document",
    "assist_field",
    "suggest_next_field",
    "refactor_form",
    "analyze_responses",
)


class PromptCompiler(BaseUtils):
    """
    Renders the instruction text sent to the model for one task kind.
    Pure templating over the rule tables above: no network, no state besides the budgets.
    """

    def __init__(self, doc_char_limit: int = DOC_TEXT_CHAR_LIMIT, json_char_limit: int = JSON_CONTEXT_CHAR_LIMIT):
        self.doc_char_limit = doc_char_limit
        self.json_char_limit = json_char_limit

    # -----------------------
    # Shared blocks
    # -----------------------

    def _theme_table(self) -> str:
        return "\n".join(
            f"  - {name}: primaryColor {preset['primaryColor']}, backgroundColor {preset['backgroundColor']}"
            for name, preset in THEME_PRESETS.items()
        )

    def _kind_rules(self) -> str:
        return "\n".join(f"  - \"{kind}\": {rule}" for kind, rule in KIND_RULES.items())

    def _quoted(self, values) -> str:
        return ", ".join(f"\"{v}\"" for v in values)

    def _structure_rules(self) -> str:
        return self.unsafe_string_format(
            STRUCTURE_RULES,
            FIELD_KINDS=self._quoted(FIELD_KINDS),
            KIND_RULES=self._kind_rules(),
            OPTION_KINDS=self._quoted(OPTION_KINDS),
            THEME_TABLE=self._theme_table(),
        )

    def _field_contract(self) -> str:
        return self.unsafe_string_format(FIELD_JSON_CONTRACT, FIELD_KIND_UNION=" | ".join(FIELD_KINDS))

    def _form_contract(self) -> str:
        return self.unsafe_string_format(FORM_JSON_CONTRACT, FIELD_JSON_CONTRACT=self._field_contract())

    def _form_blocks(self) -> Dict[str, str]:
        return {
            "FORM_JSON_CONTRACT": self._form_contract(),
            "STRUCTURE_RULES": self._structure_rules(),
            "QUIZ_RULES": self.unsafe_string_format(QUIZ_RULES, QUIZ_KEYWORDS=self._quoted(QUIZ_KEYWORDS)),
            "OUTCOME_RULES": self.unsafe_string_format(OUTCOME_RULES, OUTCOME_KEYWORDS=self._quoted(OUTCOME_KEYWORDS)),
        }

    def _json_context(self, value: Any) -> str:
        return condense_text(json.dumps(value, indent=2, ensure_ascii=False, default=str), self.json_char_limit)

    def _context_block(self, context_text: str | None, label: str) -> str:
        context_text = self._coerce_field_to_str(context_text)
        if not context_text:
            return ""
        return f"\n{label}:\n\"{context_text}\"\n"

    def _require(self, context: Dict[str, Any], key: str) -> Any:
        value = context.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ClientInputError(f"Missing required '{key}' for prompt compilation.")
        return value

    # -----------------------
    # Task renderers
    # -----------------------

    def _generate_from_text(self, context: Dict[str, Any]) -> str:
        prompt = self._coerce_field_to_str(self._require(context, "prompt"))
        return self.unsafe_string_format(GENERATE_FROM_TEXT_PROMPT, USER_PROMPT=prompt, **self._form_blocks())

    def _generate_from_image(self, context: Dict[str, Any]) -> str:
        return self.unsafe_string_format(
            GENERATE_FROM_IMAGE_PROMPT,
            CONTEXT_BLOCK=self._context_block(context.get("context"), "Additional context from the user"),
            **self._form_blocks(),
        )

    def _generate_from_document(self, context: Dict[str, Any]) -> str:
        document_text = condense_text(self._require(context, "document_text"), self.doc_char_limit)
        return self.unsafe_string_format(
            GENERATE_FROM_DOCUMENT_PROMPT,
            CONTEXT_BLOCK=self._context_block(context.get("context"), "Additional user instructions (context)"),
            DOCUMENT_TEXT=document_text,
            **self._form_blocks(),
        )

    def _assist_field(self, context: Dict[str, Any]) -> str:
        prompt = self._coerce_field_to_str(self._require(context, "prompt"))
        return self.unsafe_string_format(
            ASSIST_FIELD_PROMPT,
            FIELD_JSON_CONTRACT=self._field_contract(),
            STRUCTURE_RULES=self._structure_rules(),
            USER_PROMPT=prompt,
        )

    def _suggest_next_field(self, context: Dict[str, Any]) -> str:
        form = self._require(context, "form")
        fields: List[Dict[str, Any]] = [f for f in (form.get("fields") or []) if isinstance(f, dict)]

        labels = [str(f.get("label")) for f in fields if f.get("label")]
        names = [str(f.get("name")) for f in fields if f.get("name")]

        quiz_type = str(form.get("quizType") or "").upper()
        if quiz_type == "OUTCOME":
            outcome_ids = outcome_ids_of(form)
            if not outcome_ids:
                raise ClientInputError("OUTCOME quizzes need at least one result page before suggesting questions.")
            quiz_block = self.unsafe_string_format(SUGGEST_OUTCOME_BLOCK, OUTCOME_IDS=self._quoted(outcome_ids))
        elif form.get("isQuiz") or quiz_type == "KNOWLEDGE":
            quiz_block = SUGGEST_KNOWLEDGE_BLOCK
        else:
            quiz_block = SUGGEST_PLAIN_BLOCK

        return self.unsafe_string_format(
            SUGGEST_NEXT_FIELD_PROMPT,
            FIELD_JSON_CONTRACT=self._field_contract(),
            STRUCTURE_RULES=self._structure_rules(),
            QUIZ_MODE_BLOCK=quiz_block.strip(),
            EXISTING_LABELS="\n".join(f"  - \"{label}\"" for label in labels) or "  (none)",
            EXISTING_NAMES="\n".join(f"  - \"{name}\"" for name in names) or "  (none)",
            FORM_JSON=self._json_context(form),
        )

    def _refactor_form(self, context: Dict[str, Any]) -> str:
        form = self._require(context, "form")
        command = self._coerce_field_to_str(self._require(context, "command"))
        return self.unsafe_string_format(
            REFACTOR_FORM_PROMPT,
            COMMAND=command,
            FORM_JSON=self._json_context(form),
            **self._form_blocks(),
        )

    def _analyze_responses(self, context: Dict[str, Any]) -> str:
        form = self._require(context, "form")
        responses = context.get("responses") or []
        return self.unsafe_string_format(
            ANALYZE_RESPONSES_PROMPT,
            FORM_JSON=self._json_context(form),
            RESPONSE_COUNT=len(responses),
            RESPONSES_JSON=self._json_context(responses),
        )

    def compile(self, task_kind: str, context: Dict[str, Any] | None = None) -> str:
        renderers = {
            "generate_from_text": self._generate_from_text,
            "generate_from_image": self._generate_from_image,
            "generate_from_document": self._generate_from_document,
            "assist_field": self._assist_field,
            "suggest_next_field": self._suggest_next_field,
            "refactor_form": self._refactor_form,
            "analyze_responses": self._analyze_responses,
        }
        renderer = renderers.get(task_kind)
        if renderer is None:
            raise ValueError(f"Unknown task kind: {task_kind}")
        return renderer(context or {}).strip() + "\n"


def outcome_ids_of(form: Dict[str, Any]) -> List[str]:
    ids: List[str] = []
    for page in form.get("resultPages") or []:
        if not isinstance(page, dict):
            continue
        oid = page.get("outcomeId") or to_snake(page.get("title"))
        if oid and oid not in ids:
            ids.append(oid)
    return ids
