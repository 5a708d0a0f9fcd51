import pytest

from promptform.schemas import validate_field, validate_form


def _types(form):
    return [f["type"] for f in form["fields"]]


def test_minimal_form_gets_defaults():
    form = validate_form({"fields": []})
    assert form["title"] == "Untitled form"
    assert form["isQuiz"] is False
    assert form["theme"] == {"name": "Indigo", "primaryColor": "#6366F1", "backgroundColor": "#E0E7FF"}
    assert form["fields"] == [{"type": "submit", "label": "Submit", "name": "submit"}]


def test_wrapped_form_is_unwrapped():
    form = validate_form({"form": {"title": "Inner", "fields": [{"type": "text", "label": "Name"}]}})
    assert form["title"] == "Inner"
    assert _types(form) == ["text", "submit"]


@pytest.mark.parametrize("bad", [None, "text", [1, 2], {"fields": "nope"}])
def test_not_a_form(bad):
    with pytest.raises(ValueError):
        validate_form(bad)


def test_exactly_one_submit_moved_last():
    form = validate_form({
        "fields": [
            {"type": "submit", "label": "Send it"},
            {"type": "text", "label": "Name"},
            {"type": "submit", "label": "Second"},
            {"type": "email", "label": "Email"},
        ]
    })
    assert _types(form) == ["text", "email", "submit"]
    assert form["fields"][-1]["label"] == "Send it"


def test_invalid_fields_are_dropped():
    form = validate_form({
        "fields": [
            {"type": "hologram", "label": "Nope"},
            "not a field",
            {"type": "text", "label": "Kept"},
        ]
    })
    assert _types(form) == ["text", "submit"]


def test_kind_aliases_and_case():
    form = validate_form({
        "fields": [
            {"type": "Dropdown", "label": "Country", "options": ["IT", "FR"]},
            {"type": "RADIOGRID", "label": "Grid", "rows": ["A"], "columns": ["Yes", "No"]},
            {"type": "slider", "label": "Rate"},
        ]
    })
    assert _types(form) == ["select", "radioGrid", "range", "submit"]


def test_names_are_snake_case_and_unique():
    form = validate_form({
        "fields": [
            {"type": "text", "label": "Full Name"},
            {"type": "text", "label": "Full Name"},
            {"type": "text", "label": "Other", "name": "full_name"},
        ]
    })
    names = [f["name"] for f in form["fields"]]
    assert names == ["full_name", "full_name_1", "full_name_2", "submit"]


def test_options_only_on_choice_kinds():
    form = validate_form({
        "fields": [
            {"type": "text", "label": "Name", "options": ["a"]},
            {"type": "radio", "label": "Pick"},
            {"type": "radioGrid", "label": "Grid", "options": ["x"], "rows": ["r1"], "columns": ["c1"]},
            {"type": "section", "label": "Part 2", "options": ["x"], "validation": {"required": True}},
        ]
    })
    text, radio, grid, section, _ = form["fields"]
    assert "options" not in text
    assert radio["options"] == []
    assert "options" not in grid
    assert grid["rows"] == ["r1"]
    assert grid["columns"] == [{"label": "c1"}]
    assert "options" not in section and "validation" not in section


def test_range_defaults_and_email_pattern():
    form = validate_form({"fields": [{"type": "range", "label": "Rate"}, {"type": "email", "label": "Email"}]})
    rng, email, _ = form["fields"]
    assert (rng["min"], rng["max"]) == (0, 10)
    assert email["validation"]["pattern"] == "email"


def test_scored_fields_are_required():
    form = validate_form({
        "isQuiz": True,
        "quizType": "knowledge",
        "fields": [{"type": "radio", "label": "2+2", "options": ["3", "4"], "correctAnswer": "4"}],
    })
    assert form["quizType"] == "KNOWLEDGE"
    assert form["fields"][0]["validation"]["required"] is True


def test_quiz_type_implies_quiz():
    form = validate_form({"quizType": "OUTCOME", "fields": []})
    assert form["isQuiz"] is True
    assert validate_form({"quizType": "bogus", "fields": []}).get("quizType") is None


def test_theme_is_canonical_preset():
    form = validate_form({"theme": {"name": "rose", "primaryColor": "#000000"}, "fields": []})
    assert form["theme"] == {"name": "Rose", "primaryColor": "#F43F5E", "backgroundColor": "#FFE4E6"}
    assert validate_form({"theme": {"name": "Neon"}, "fields": []})["theme"]["name"] == "Indigo"


def test_result_pages_keep_range_alias_and_derive_ids():
    form = validate_form({
        "fields": [],
        "resultPages": [{"title": "Night Owl", "scoreRange": {"from": 0, "to": 3}}],
    })
    page = form["resultPages"][0]
    assert page["outcomeId"] == "night_owl"
    assert page["scoreRange"] == {"from": 0, "to": 3}


def test_validate_field_unwraps_and_dedupes():
    fld = validate_field({"field": {"type": "email", "label": "Email"}}, existing_names=["email"])
    assert fld["name"] == "email_1"
    assert fld["validation"]["pattern"] == "email"


def test_validate_field_accepts_whole_form():
    fld = validate_field({"fields": [{"type": "submit"}, {"type": "textarea", "label": "Comments"}]})
    assert fld["type"] == "textarea"
    assert fld["name"] == "comments"


def test_validate_field_rejects_submit():
    with pytest.raises(ValueError):
        validate_field({"type": "submit", "label": "Go"})


def test_outcome_ranges_redistributed_when_invalid(personality_form):
    personality_form["resultPages"][0]["scoreRange"] = {"from": 0, "to": 2}
    personality_form["resultPages"][1]["scoreRange"] = {"from": 1, "to": 9}
    form = validate_form(personality_form)
    assert [p["scoreRange"] for p in form["resultPages"]] == [{"from": 0, "to": 1}, {"from": 2, "to": 3}]


def test_valid_outcome_ranges_kept(personality_form):
    personality_form["resultPages"][0]["scoreRange"] = {"from": 0, "to": 0}
    personality_form["resultPages"][1]["scoreRange"] = {"from": 1, "to": 3}
    form = validate_form(personality_form)
    assert [p["scoreRange"] for p in form["resultPages"]] == [{"from": 0, "to": 0}, {"from": 1, "to": 3}]


def test_ranges_left_alone_on_non_outcome_forms():
    form = validate_form({"fields": [], "resultPages": [{"title": "A", "scoreRange": {"from": 5, "to": 1}}]})
    assert form["resultPages"][0]["scoreRange"] == {"from": 5, "to": 1}
