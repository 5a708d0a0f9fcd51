import pytest

from promptform.errors import ClientInputError
from promptform.prompt_compiler import TASK_KINDS, THEME_PRESETS, PromptCompiler, outcome_ids_of


@pytest.fixture
def compiler():
    return PromptCompiler(doc_char_limit=1000, json_char_limit=2000)


def _sample_form(**extra):
    form = {
        "title": "Team survey",
        "fields": [
            {"label": "Full Name", "name": "full_name", "type": "text"},
            {"label": "Favourite colour", "name": "colour", "type": "radio", "options": ["Red", "Blue"]},
            {"label": "Submit", "name": "submit", "type": "submit"},
        ],
    }
    form.update(extra)
    return form


CONTEXTS = {
    "generate_from_text": {"prompt": "A contact form"},
    "generate_from_image": {"context": None},
    "generate_from_document": {"document_text": "Name: ____\nEmail: ____"},
    "assist_field": {"prompt": "ask for a phone number"},
    "suggest_next_field": {"form": _sample_form()},
    "refactor_form": {"form": _sample_form(), "command": "make every field required"},
    "analyze_responses": {"form": _sample_form(), "responses": [{"full_name": "Ada"}]},
}


@pytest.mark.parametrize("task_kind", TASK_KINDS)
def test_every_task_kind_renders(compiler, task_kind):
    out = compiler.compile(task_kind, CONTEXTS[task_kind])
    assert out.endswith("\n")
    # every placeholder the templates use has been filled
    for placeholder in ("{FORM_JSON_CONTRACT}", "{STRUCTURE_RULES}", "{QUIZ_RULES}", "{OUTCOME_RULES}",
                        "{FIELD_JSON_CONTRACT}", "{FIELD_KINDS}", "{THEME_TABLE}", "{FORM_JSON}"):
        assert placeholder not in out


def test_unknown_task_kind(compiler):
    with pytest.raises(ValueError):
        compiler.compile("write_poem", {})


@pytest.mark.parametrize("task_kind,missing", [
    ("generate_from_text", "prompt"),
    ("generate_from_document", "document_text"),
    ("assist_field", "prompt"),
    ("suggest_next_field", "form"),
    ("refactor_form", "form"),
    ("analyze_responses", "form"),
])
def test_missing_required_context(compiler, task_kind, missing):
    with pytest.raises(ClientInputError) as exc:
        compiler.compile(task_kind, {})
    assert missing in exc.value.message


def test_generation_prompt_carries_rules(compiler):
    out = compiler.compile("generate_from_text", {"prompt": "A wedding RSVP"})
    assert 'User\'s request: "A wedding RSVP"' in out
    assert "Age Range" in out
    assert "exactly one field with type \"submit\"" in out
    assert '"pattern": "email"' in out
    for name, preset in THEME_PRESETS.items():
        assert name in out
        assert preset["primaryColor"] in out
    assert '"trivia"' in out
    assert '"personality"' in out
    assert '{"from": 8, "to": 10}' in out


def test_user_text_is_not_reformatted(compiler):
    out = compiler.compile("generate_from_text", {"prompt": "Use {FIELD_KINDS} literally"})
    assert "Use {FIELD_KINDS} literally" in out


def test_image_prompt_context_block(compiler):
    without = compiler.compile("generate_from_image", {})
    with_ctx = compiler.compile("generate_from_image", {"context": "Only the first page"})
    assert "Additional context from the user" not in without
    assert 'Additional context from the user:\n"Only the first page"' in with_ctx


def test_document_text_is_condensed(compiler):
    doc = "A" * 800 + "B" * 2000 + "Z" * 300
    out = compiler.compile("generate_from_document", {"document_text": doc})
    assert "...[omitted" in out
    assert "A" * 750 in out
    assert "Z" * 186 in out
    assert "Document content to analyze and transform:" in out


def test_suggest_lists_existing_labels_and_names(compiler):
    out = compiler.compile("suggest_next_field", {"form": _sample_form()})
    assert "Anti-duplication (CRITICAL)" in out
    assert '  - "Full Name"' in out
    assert '  - "colour"' in out
    assert "This form is not a quiz" in out


def test_suggest_empty_form_lists_none(compiler):
    out = compiler.compile("suggest_next_field", {"form": {"fields": []}})
    assert "  (none)" in out


def test_suggest_knowledge_quiz(compiler):
    out = compiler.compile("suggest_next_field", {"form": _sample_form(isQuiz=True)})
    assert "KNOWLEDGE quiz" in out


def test_suggest_outcome_quiz_lists_outcome_ids(compiler):
    form = _sample_form(
        isQuiz=True,
        quizType="OUTCOME",
        resultPages=[{"outcomeId": "leader", "title": "Leader"}, {"title": "Team Player"}],
    )
    out = compiler.compile("suggest_next_field", {"form": form})
    assert '"leader", "team_player"' in out


def test_suggest_outcome_quiz_without_pages(compiler):
    form = _sample_form(isQuiz=True, quizType="OUTCOME", resultPages=[])
    with pytest.raises(ClientInputError):
        compiler.compile("suggest_next_field", {"form": form})


def test_refactor_embeds_command_and_form(compiler):
    out = compiler.compile("refactor_form", {"form": _sample_form(), "command": "translate to French"})
    assert 'User command: "translate to French"' in out
    assert '"full_name"' in out


def test_analyze_counts_responses(compiler):
    out = compiler.compile("analyze_responses", {"form": _sample_form(), "responses": [{}, {}, {}]})
    assert "Responses (3 submissions, JSON):" in out
    assert "## Recommendations" in out


def test_outcome_ids_of_dedupes():
    form = {"resultPages": [{"outcomeId": "a"}, {"outcomeId": "a"}, {"title": "B Side"}, "junk"]}
    assert outcome_ids_of(form) == ["a", "b_side"]
