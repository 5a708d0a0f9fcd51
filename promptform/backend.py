# promptform/backend.py

import base64
import binascii
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from promptform.base_utils import BaseUtils
from promptform.entities import FORM_ID_MAX_LENGTH
from promptform.errors import ClientInputError, NotFound, PromptFormError, UploadTooLarge, UpstreamMalformed
from promptform.form_repository import FormRepository
from promptform.google_helpers import MAX_UPLOAD_BYTES, TEMP_DIR, logger
from promptform.llm_client import LlmClient
from promptform.prompt_compiler import PromptCompiler
from promptform.response_aggregator import aggregate, csv_filename, outcome_distribution, responses_to_csv
from promptform.schemas import validate_field, validate_form
from promptform.scoring import calculate_result
from promptform.text_extraction import extract_text

_FORM_ID_RE = re.compile(rf"^[A-Za-z0-9_-]{{1,{FORM_ID_MAX_LENGTH}}}$")
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,", re.IGNORECASE)


class FormService(BaseUtils):
    """
    One per process. Holds the model gateway and the repository and runs every
    endpoint as compile -> send -> extract -> validate (-> persist).
    Methods are blocking; the HTTP layer runs them in a worker thread.
    """

    def __init__(
        self,
        llm: LlmClient,
        repository: FormRepository,
        compiler: PromptCompiler | None = None,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        temp_dir: str = TEMP_DIR,
    ):
        self.llm = llm
        self.repository = repository
        self.compiler = compiler or PromptCompiler()
        self.max_upload_bytes = max_upload_bytes
        self.temp_dir = temp_dir

    # -----------------------
    # Input helpers
    # -----------------------

    def _required_text(self, value: Any, key: str) -> str:
        text = self._coerce_field_to_str(value) if isinstance(value, str) else ""
        if not text:
            raise ClientInputError(f"Missing or invalid '{key}': a non-empty string is required.")
        return text

    def _required_form(self, value: Any, key: str = "form") -> Dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise ClientInputError(f"Invalid '{key}': not valid JSON.")
        if not isinstance(value, dict):
            raise ClientInputError(f"Missing or invalid '{key}': a form object is required.")
        if not isinstance(value.get("fields"), list):
            raise ClientInputError(f"Invalid '{key}': 'fields' must be an array.")
        return value

    def check_form_id(self, form_id: Any) -> str:
        if not isinstance(form_id, str) or not _FORM_ID_RE.match(form_id):
            raise ClientInputError("Invalid formId.")
        return form_id

    # -----------------------
    # Model round trips
    # -----------------------

    def _form_from_model(self, prompt: str, label: str, image: Tuple[str, str] | None = None) -> Dict[str, Any]:
        raw = self.llm.send(prompt, image=image)
        data = self.load_model_json(raw, label)
        try:
            return validate_form(data)
        except ValueError as e:
            logger.error(f"[{label}] Model JSON is not a usable form: {e}\n--- raw text ---\n{raw}")
            raise UpstreamMalformed(str(e), raw_text=raw) from e

    def _field_from_model(self, prompt: str, label: str, existing_names: List[str] = ()) -> Dict[str, Any]:
        raw = self.llm.send(prompt)
        data = self.load_model_json(raw, label)
        try:
            return validate_field(data, existing_names=existing_names)
        except ValueError as e:
            logger.error(f"[{label}] Model JSON is not a usable field: {e}\n--- raw text ---\n{raw}")
            raise UpstreamMalformed(str(e), raw_text=raw) from e

    # -----------------------
    # Generation handlers
    # -----------------------

    def handle_generate_form(self, prompt: Any) -> Dict[str, Any]:
        prompt = self._required_text(prompt, "prompt")
        compiled = self.compiler.compile("generate_from_text", {"prompt": prompt})
        return self._form_from_model(compiled, "generate-form")

    def handle_assist_question(self, prompt: Any) -> Dict[str, Any]:
        prompt = self._required_text(prompt, "prompt")
        compiled = self.compiler.compile("assist_field", {"prompt": prompt})
        return self._field_from_model(compiled, "assist-question")

    def handle_suggest_question(self, form: Any) -> Dict[str, Any]:
        form = self._required_form(form)
        compiled = self.compiler.compile("suggest_next_field", {"form": form})
        names = [str(f.get("name")) for f in form["fields"] if isinstance(f, dict) and f.get("name")]
        return self._field_from_model(compiled, "suggest-question", existing_names=names)

    def handle_generate_form_from_image(self, image: Any, mime_type: Any, context: Any = None) -> Dict[str, Any]:
        if not isinstance(image, str) or not image.strip():
            raise ClientInputError("Missing or invalid 'image': a base64 string is required.")

        image = image.strip()
        m = _DATA_URI_RE.match(image)
        if m:
            mime_type = mime_type or m.group("mime")
            image = image[m.end():]

        if not isinstance(mime_type, str) or not mime_type.lower().startswith("image/"):
            raise ClientInputError("Missing or invalid 'mimeType': an image/* MIME type is required.")

        try:
            decoded = base64.b64decode(image, validate=True)
        except (binascii.Error, ValueError):
            raise ClientInputError("Invalid 'image': not valid base64 data.")
        if not decoded:
            raise ClientInputError("Invalid 'image': the image is empty.")
        if len(decoded) > self.max_upload_bytes:
            raise UploadTooLarge(f"Image exceeds the {self.max_upload_bytes} byte upload limit.")

        context = context if isinstance(context, str) else None
        compiled = self.compiler.compile("generate_from_image", {"context": context})
        return self._form_from_model(compiled, "generate-form-from-image", image=(image, mime_type.lower()))

    def handle_generate_form_from_document(
        self,
        data: bytes,
        mime_type: str | None,
        filename: str | None,
        context: str | None = None,
    ) -> Dict[str, Any]:
        if data is not None and len(data) > self.max_upload_bytes:
            raise UploadTooLarge(f"File exceeds the {self.max_upload_bytes} byte upload limit.")

        text = extract_text(data or b"", mime_type=mime_type, filename=filename, temp_dir=self.temp_dir)
        logger.info(f"[DOCUMENT] Extracted {len(text)} chars from {filename or 'upload'} ({mime_type})")

        compiled = self.compiler.compile(
            "generate_from_document",
            {"document_text": text, "context": context if isinstance(context, str) else None},
        )
        return self._form_from_model(compiled, "generate-form-from-document")

    def handle_refactor_form(self, form_json: Any, command: Any) -> Dict[str, Any]:
        form = self._required_form(form_json, "formJson")
        command = self._required_text(command, "command")
        compiled = self.compiler.compile("refactor_form", {"form": form, "command": command})
        return self._form_from_model(compiled, "refactor-form")

    def handle_analyze_responses(
        self,
        form: Any,
        responses: Any,
        form_id: Any = None,
    ) -> Tuple[str, Optional[str]]:
        """
        Returns (markdown report, warning). The warning is set when the report could not
        be cached on the form; the report itself is still returned.
        """
        form = self._required_form(form)
        if not isinstance(responses, list):
            raise ClientInputError("Missing or invalid 'responses': an array is required.")
        if form_id is not None:
            form_id = self.check_form_id(form_id)

        payloads = [
            r["payload"] if isinstance(r, dict) and isinstance(r.get("payload"), dict) else r
            for r in responses
        ]
        compiled = self.compiler.compile("analyze_responses", {"form": form, "responses": payloads})
        report = self.llm.send(compiled, json_mode=False)
        report = self._strip_markdown_fence(report)

        warning = None
        if form_id:
            try:
                self.repository.update_ai_summary(form_id, report)
            except PromptFormError as e:
                warning = f"AI summary was not saved: {e.message}"
                logger.warning(f"[ANALYZE] {warning}")
        return report, warning

    def _strip_markdown_fence(self, text: str) -> str:
        m = re.match(r"^```(?:markdown|md)?\s*\n(.*)\n```\s*$", text.strip(), re.DOTALL | re.IGNORECASE)
        return m.group(1).strip() if m else text

    # -----------------------
    # Persistence handlers
    # -----------------------

    def handle_submit_response(self, form_id: Any, body: Any, metadata: Dict[str, Any]) -> str:
        form_id = self.check_form_id(form_id)
        if not isinstance(body, dict):
            raise ClientInputError("Invalid submission: a JSON object is required.")

        # {payload, score?, maxScore?} or the answers posted directly
        score = max_score = None
        if isinstance(body.get("payload"), dict):
            payload = body["payload"]
            score = body.get("score")
            max_score = body.get("maxScore")
        else:
            payload = body

        for key, value in (("score", score), ("maxScore", max_score)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise ClientInputError(f"Invalid '{key}': a number is required.")

        if score is None:
            try:
                form = self.repository.get(form_id)
            except NotFound:
                logger.warning(f"[SUBMIT] Form {form_id} not found; storing response unscored")
                form = None
            result = calculate_result(form, payload) if form else {}
            if result.get("maxScore"):
                score, max_score = result["score"], result["maxScore"]

        return self.repository.add_response(form_id, payload, score=score, max_score=max_score, metadata=metadata)

    def handle_delete_form(self, form_id: Any) -> None:
        form_id = self.check_form_id(form_id)
        self.repository.delete(form_id)
        logger.info(f"[FORMS] Deleted form {form_id} (responses kept)")

    def handle_save_form(self, owner_id: Any, form: Any, form_id: Any = None) -> Dict[str, Any]:
        owner_id = self._required_text(owner_id, "ownerId")
        form = self._required_form(form)
        try:
            clean = validate_form(form)
        except ValueError as e:
            raise ClientInputError(f"Invalid 'form': {e}")
        for key in ("id", "ownerId", "aiSummary", "aiSummaryUpdatedAt", "createdAt", "updatedAt"):
            clean.pop(key, None)

        if form_id:
            form_id = self.check_form_id(form_id)
            self.repository.update(form_id, clean, owner_id=owner_id)
        else:
            form_id = self.repository.create(owner_id, clean)
        return self.repository.get(form_id)

    def handle_list_forms(self, owner_id: Any) -> List[Dict[str, Any]]:
        owner_id = self._required_text(owner_id, "ownerId")
        return self.repository.list_by_owner(owner_id)

    def handle_get_form(self, form_id: Any, mark_opened: bool = False) -> Dict[str, Any]:
        form_id = self.check_form_id(form_id)
        if mark_opened:
            self.repository.mark_opened(form_id)
        return self.repository.get(form_id)

    def handle_update_form_meta(self, form_id: Any, title: Any = None, theme: Any = None) -> Dict[str, Any]:
        form_id = self.check_form_id(form_id)
        if title is None and theme is None:
            raise ClientInputError("Nothing to update: provide 'title' and/or 'theme'.")
        if title is not None:
            self.repository.rename(form_id, self._required_text(title, "title"))
        if theme is not None:
            # unknown presets fall back to the default theme
            canonical = validate_form({"fields": [], "theme": theme})["theme"]
            self.repository.update_theme(form_id, canonical)
        return self.repository.get(form_id)

    def handle_duplicate_form(self, owner_id: Any, form_id: Any) -> Dict[str, Any]:
        owner_id = self._required_text(owner_id, "ownerId")
        form_id = self.check_form_id(form_id)
        return self.repository.duplicate(owner_id, form_id)

    def handle_list_responses(self, form_id: Any) -> List[Dict[str, Any]]:
        form_id = self.check_form_id(form_id)
        return self.repository.list_responses(form_id)

    # -----------------------
    # Analytics
    # -----------------------

    def handle_form_summary(self, form_id: Any) -> Dict[str, Any]:
        form_id = self.check_form_id(form_id)
        form = self.repository.get(form_id)
        responses = self.repository.list_responses(form_id)
        return {
            "formId": form_id,
            "responseCount": len(responses),
            "fields": aggregate(form, responses),
            "outcomes": outcome_distribution(form, responses),
            "aiSummary": form.get("aiSummary"),
        }

    def handle_export_csv(self, form_id: Any) -> Tuple[str, str]:
        form_id = self.check_form_id(form_id)
        form = self.repository.get(form_id)
        responses = self.repository.list_responses(form_id)
        return csv_filename(form), responses_to_csv(form, responses)
