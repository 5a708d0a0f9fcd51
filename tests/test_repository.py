import pytest

from promptform.entities import FORM_ID_MAX_LENGTH, FormRecord, ResponseRecord
from promptform.errors import NotFound
from promptform.form_repository import FormRepository
from promptform.schemas import validate_form


def _form(title="Contact", theme="Sky"):
    return validate_form({
        "title": title,
        "description": "Say hi",
        "theme": {"name": theme},
        "fields": [
            {"type": "text", "label": "Name"},
            {"type": "radioGrid", "label": "Likes", "rows": ["Coffee", "Tea"], "columns": ["Yes", "No"]},
        ],
    })


def test_create_and_get(repository):
    form_id = repository.create("owner-1", _form())
    view = repository.get(form_id)

    assert view["id"] == form_id
    assert view["ownerId"] == "owner-1"
    assert view["title"] == "Contact"
    assert view["description"] == "Say hi"
    assert view["theme"] == {"name": "Sky", "primaryColor": "#0EA5E9", "backgroundColor": "#E0F2FE"}
    assert [f["name"] for f in view["fields"]] == ["name", "likes", "submit"]
    assert view["aiSummary"] is None
    assert view["createdAt"] is not None


def test_get_missing(repository):
    with pytest.raises(NotFound):
        repository.get("missing")


def test_update_replaces_form(repository):
    form_id = repository.create("owner-1", _form())
    repository.update(form_id, _form(title="Renamed", theme="Rose"))
    view = repository.get(form_id)
    assert view["title"] == "Renamed"
    assert view["theme"]["name"] == "Rose"
    assert view["updatedAt"] > view["createdAt"]


def test_update_missing(repository):
    with pytest.raises(NotFound):
        repository.update("missing", _form())


def test_list_by_owner_most_recent_first(repository):
    first = repository.create("owner-1", _form("First"))
    second = repository.create("owner-1", _form("Second"))
    repository.create("owner-2", _form("Other"))
    repository.add_response(first, {"name": "Ada"})

    views = repository.list_by_owner("owner-1")
    assert [v["id"] for v in views] == [second, first]
    assert [v["responseCount"] for v in views] == [0, 1]

    repository.mark_opened(first)
    assert [v["id"] for v in repository.list_by_owner("owner-1")] == [first, second]


def test_responses_newest_first_with_metadata(repository):
    form_id = repository.create("owner-1", _form())
    older = repository.add_response(form_id, {"name": "Ada"}, metadata={"userAgent": "pytest", "ip": "10.0.0.1"})
    newer = repository.add_response(form_id, {"name": "Bob"}, score=2, max_score=4)

    responses = repository.list_responses(form_id)
    assert [r["id"] for r in responses] == [newer, older]
    assert responses[0]["score"] == 2
    assert responses[0]["maxScore"] == 4
    assert responses[1]["userAgent"] == "pytest"
    assert responses[1]["ip"] == "10.0.0.1"
    assert repository.count_responses(form_id) == 2


def test_add_response_does_not_require_the_form(repository):
    response_id = repository.add_response("missing", {"a": 1})
    responses = repository.list_responses("missing")
    assert [r["id"] for r in responses] == [response_id]
    assert responses[0]["payload"] == {"a": 1}


def test_repository_contract_is_abstract():
    with pytest.raises(TypeError):
        FormRepository()


def test_grid_answers_come_back_nested(repository):
    form_id = repository.create("owner-1", _form())
    repository.add_response(form_id, {"name": "Ada", "likes.Coffee": "Yes", "likes[1]": "1"})
    payload = repository.list_responses(form_id)[0]["payload"]
    assert payload == {"name": "Ada", "likes": {"Coffee": "Yes", "Tea": "No"}}


def test_delete_keeps_responses(repository):
    form_id = repository.create("owner-1", _form())
    repository.add_response(form_id, {"likes[0]": "0"})
    repository.delete(form_id)

    with pytest.raises(NotFound):
        repository.get(form_id)
    orphans = repository.list_responses(form_id)
    assert len(orphans) == 1
    # no form left to decode the grid against
    assert orphans[0]["payload"] == {"likes[0]": "0"}


def test_ai_summary_round_trip(repository):
    form_id = repository.create("owner-1", _form())
    repository.update_ai_summary(form_id, "## Overview\nAll good.")
    view = repository.get(form_id)
    assert view["aiSummary"] == "## Overview\nAll good."
    assert view["aiSummaryUpdatedAt"] is not None


def test_ai_summary_missing_form(repository):
    with pytest.raises(NotFound):
        repository.update_ai_summary("missing", "text")


def test_duplicate(repository):
    source = repository.create("owner-1", _form("Original"))
    repository.add_response(source, {"name": "Ada"})
    repository.update_ai_summary(source, "summary")

    copy = repository.duplicate("owner-2", source)
    assert copy["id"] != source
    assert copy["ownerId"] == "owner-2"
    assert copy["title"] == "Original (Copy)"
    assert copy["theme"]["name"] == "Sky"
    assert copy["responseCount"] == 0
    assert copy["aiSummary"] is None
    assert [f["name"] for f in copy["fields"]] == ["name", "likes", "submit"]
    assert repository.list_responses(copy["id"]) == []


def test_rename_and_theme(repository):
    form_id = repository.create("owner-1", _form())
    repository.rename(form_id, "New title")
    repository.update_theme(form_id, {"name": "Amber", "primaryColor": "#F59E0B", "backgroundColor": "#FEF3C7"})
    view = repository.get(form_id)
    assert view["title"] == "New title"
    assert view["theme"] == {"name": "Amber", "primaryColor": "#F59E0B", "backgroundColor": "#FEF3C7"}


def test_form_id_columns_fit_accepted_ids():
    assert FormRecord.__table__.c.form_id.type.length == FORM_ID_MAX_LENGTH
    assert ResponseRecord.__table__.c.form_id.type.length == FORM_ID_MAX_LENGTH
