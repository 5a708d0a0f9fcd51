from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from promptform.base_utils import to_snake
from promptform.google_helpers import logger
from promptform.prompt_compiler import DEFAULT_THEME, FIELD_KINDS, OPTION_KINDS, THEME_PRESETS
from promptform.scoring import distribute_evenly, outcome_max_score, validate_outcome_ranges

FieldKind = Literal[
    "text", "email", "password", "textarea", "radio", "checkbox", "select",
    "date", "time", "file", "range", "radioGrid", "section", "submit",
]

_KIND_BY_LOWER = {kind.lower(): kind for kind in FIELD_KINDS}
_KIND_ALIASES = {
    "dropdown": "select",
    "multiselect": "checkbox",
    "radio_grid": "radioGrid",
    "grid": "radioGrid",
    "matrix": "radioGrid",
    "slider": "range",
    "number": "text",
    "tel": "text",
    "phone": "text",
    "url": "text",
    "button": "submit",
    "heading": "section",
}

NO_ANSWER_KINDS = ("section", "submit")

Number = Union[int, float]


def _as_str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return None
    out = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("label") or item.get("value")
        if item is None:
            continue
        text = str(item).strip()
        if text:
            out.append(text)
    return out


class Validation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    required: bool = False
    minLength: Optional[int] = None
    maxLength: Optional[int] = None
    pattern: Optional[str] = None


class GridColumn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str
    points: Optional[Number] = None

    @model_validator(mode="before")
    @classmethod
    def _from_plain_string(cls, data):
        if isinstance(data, (str, int, float)):
            return {"label": str(data), "points": None}
        return data


class ScoringRule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option: Optional[str] = None
    column: Optional[str] = None
    points: Number = 0
    outcomeId: Optional[str] = None


class FormField(BaseModel):
    """One form field as the frontend renders it. Keys keep their camelCase wire names."""

    model_config = ConfigDict(extra="ignore")

    type: FieldKind
    label: str = ""
    name: str = ""
    placeholder: Optional[str] = None
    helperText: Optional[str] = None
    validation: Optional[Validation] = None
    options: Optional[List[str]] = None
    rows: Optional[List[str]] = None
    columns: Optional[List[GridColumn]] = None
    min: Optional[Number] = None
    max: Optional[Number] = None
    correctAnswer: Optional[Union[str, List[str]]] = None
    points: Optional[Number] = None
    answerPattern: Optional[str] = None
    scoring: Optional[List[ScoringRule]] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_kind(cls, value):
        key = str(value or "").strip()
        lowered = key.lower()
        return _KIND_BY_LOWER.get(lowered) or _KIND_ALIASES.get(lowered) or key

    @field_validator("label", "name", mode="before")
    @classmethod
    def _text_or_empty(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("options", "rows", mode="before")
    @classmethod
    def _string_lists(cls, value):
        return _as_str_list(value)

    @field_validator("correctAnswer", mode="before")
    @classmethod
    def _answer(cls, value):
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)):
            return _as_str_list(value)
        return str(value)

    @field_validator("scoring", mode="before")
    @classmethod
    def _scoring_list(cls, value):
        if isinstance(value, dict):
            return [value]
        return value

    @model_validator(mode="after")
    def _enforce_kind_shape(self):
        if self.type in NO_ANSWER_KINDS:
            self.options = None
            self.rows = None
            self.columns = None
            self.correctAnswer = None
            self.points = None
            self.answerPattern = None
            self.scoring = None
            self.validation = None
            return self

        if self.type not in OPTION_KINDS:
            self.options = None
        elif self.options is None:
            self.options = []

        if self.type == "radioGrid":
            self.rows = self.rows or []
            self.columns = self.columns or []
        else:
            self.rows = None
            self.columns = None

        if self.type == "range":
            self.min = 0 if self.min is None else self.min
            self.max = 10 if self.max is None else self.max
        else:
            self.min = None
            self.max = None

        if self.type == "email":
            self.validation = self.validation or Validation()
            if not self.validation.pattern:
                self.validation.pattern = "email"

        if self.scoring or self.correctAnswer not in (None, "", []):
            self.validation = self.validation or Validation()
            self.validation.required = True
        return self


class Theme(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = DEFAULT_THEME
    primaryColor: str = THEME_PRESETS[DEFAULT_THEME]["primaryColor"]
    backgroundColor: str = THEME_PRESETS[DEFAULT_THEME]["backgroundColor"]

    @model_validator(mode="before")
    @classmethod
    def _canonical_preset(cls, data):
        if isinstance(data, str):
            data = {"name": data}
        if not isinstance(data, dict):
            data = {}
        requested = str(data.get("name") or "").strip().lower()
        name = next((n for n in THEME_PRESETS if n.lower() == requested), DEFAULT_THEME)
        return {"name": name, **THEME_PRESETS[name]}


class ScoreRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Number = Field(0, alias="from")
    to: Number = 0


class Outcome(BaseModel):
    model_config = ConfigDict(extra="ignore")

    outcomeId: str = ""
    title: str = ""
    description: str = ""
    scoreRange: Optional[ScoreRange] = None

    @model_validator(mode="after")
    def _derive_id(self):
        if not self.outcomeId:
            self.outcomeId = to_snake(self.title)
        return self


class Form(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    ownerId: Optional[str] = None
    title: str = "Untitled form"
    description: Optional[str] = None
    isQuiz: bool = False
    quizType: Optional[Literal["KNOWLEDGE", "OUTCOME"]] = None
    fields: List[FormField] = Field(default_factory=list)
    resultPages: Optional[List[Outcome]] = None
    theme: Theme = Field(default_factory=Theme)
    aiSummary: Optional[str] = None
    aiSummaryUpdatedAt: Optional[Any] = None
    createdAt: Optional[Any] = None
    updatedAt: Optional[Any] = None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        text = "" if value is None else str(value).strip()
        return text or "Untitled form"

    @field_validator("quizType", mode="before")
    @classmethod
    def _quiz_type(cls, value):
        value = str(value or "").strip().upper()
        return value if value in ("KNOWLEDGE", "OUTCOME") else None

    @field_validator("theme", mode="before")
    @classmethod
    def _theme_default(cls, value):
        return {} if value is None else value

    @field_validator("fields", mode="before")
    @classmethod
    def _drop_invalid_fields(cls, value):
        if not isinstance(value, list):
            return []
        kept = []
        for idx, raw in enumerate(value):
            if not isinstance(raw, dict):
                logger.warning(f"[SCHEMA] Dropping field #{idx}: not an object")
                continue
            try:
                kept.append(FormField.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"[SCHEMA] Dropping field #{idx} ({raw.get('type')!r}): {e.errors()[0].get('msg')}")
        return kept

    @model_validator(mode="after")
    def _form_invariants(self):
        if self.quizType:
            self.isQuiz = True

        submit = None
        body: List[FormField] = []
        for fld in self.fields:
            if fld.type == "submit":
                submit = submit or fld
                continue
            body.append(fld)
        body.append(submit or FormField(type="submit", label="Submit", name="submit"))

        assign_unique_names(body)
        self.fields = body
        return self

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def assign_unique_names(fields: List[FormField], taken: Iterable[str] = ()) -> None:
    """Snake-case every name (falling back to the label) and suffix repeats with _1, _2, ..."""
    seen = set(taken)
    for idx, fld in enumerate(fields):
        base = to_snake(fld.name) or to_snake(fld.label) or f"{fld.type.lower()}_{idx + 1}"
        name = base
        n = 1
        while name in seen:
            name = f"{base}_{n}"
            n += 1
        seen.add(name)
        fld.name = name
        if not fld.label and fld.type == "submit":
            fld.label = "Submit"


def _unwrap(data: Any, key: str) -> Any:
    if isinstance(data, dict) and key not in data and isinstance(data.get("form"), dict):
        return data["form"]
    return data


def repair_outcome_ranges(form: Dict[str, Any]) -> None:
    """OUTCOME forms whose result page ranges do not tile 0..max score get them redistributed evenly."""
    pages = form.get("resultPages") or []
    if form.get("quizType") != "OUTCOME" or not pages:
        return
    max_score = outcome_max_score(form)
    report = validate_outcome_ranges(pages, max_score)
    if report["valid"]:
        return
    logger.warning(f"[SCHEMA] Redistributing outcome ranges: {'; '.join(report['issues'])}")
    for page, rng in zip(pages, distribute_evenly(max_score, len(pages))):
        page["scoreRange"] = rng


def validate_form(data: Any) -> Dict[str, Any]:
    """
    Coerce an untrusted form object (model output or client JSON) into the canonical shape.
    Raises ValueError (pydantic's ValidationError included) when it is not a form at all.
    """
    data = _unwrap(data, "fields")
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object describing a form")
    if "fields" in data and not isinstance(data.get("fields"), list):
        raise ValueError("'fields' must be an array")
    form = Form.model_validate(data).to_json()
    repair_outcome_ranges(form)
    return form


def validate_field(data: Any, existing_names: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Coerce a single untrusted field. A whole form is accepted too: its first answerable field is used.
    The name is made unique against `existing_names`.
    """
    if isinstance(data, dict) and isinstance(data.get("field"), dict):
        data = data["field"]
    if isinstance(data, dict) and isinstance(data.get("fields"), list):
        candidates = [f for f in data["fields"] if isinstance(f, dict) and str(f.get("type", "")).lower() != "submit"]
        if not candidates:
            raise ValueError("model returned a form without any usable field")
        data = candidates[0]
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object describing a field")

    fld = FormField.model_validate(data)
    if fld.type == "submit":
        raise ValueError("a submit button is not a valid question")
    assign_unique_names([fld], taken=existing_names)
    return fld.model_dump(by_alias=True, exclude_none=True)
