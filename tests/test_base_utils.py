import pytest

from promptform.base_utils import BaseUtils, condense_text, extract_json, to_snake
from promptform.errors import UpstreamMalformed


# -----------------------
# extract_json
# -----------------------

def test_extract_json_plain_object():
    assert extract_json('{"title": "Feedback", "fields": []}') == {"title": "Feedback", "fields": []}


def test_extract_json_wrapped_in_prose():
    raw = 'Sure! Here is your form:\n{"title": "Feedback", "fields": [{"type": "text"}]}\nHope this helps.'
    assert extract_json(raw) == {"title": "Feedback", "fields": [{"type": "text"}]}


def test_extract_json_code_fence():
    raw = '```json\n{"title": "Fenced"}\n```'
    assert extract_json(raw) == {"title": "Fenced"}


def test_extract_json_tolerates_comments():
    raw = '{\n  "title": "Commented", // model echoed the schema comment\n  "fields": []\n}'
    assert extract_json(raw) == {"title": "Commented", "fields": []}


def test_extract_json_prefers_whole_text_over_slice():
    # a valid top-level array is returned as-is, not sliced down to the inner object
    assert extract_json('[{"a": 1}]') == [{"a": 1}]


@pytest.mark.parametrize("raw", ["no json here", "{ broken", "", "}{"])
def test_extract_json_unrecoverable(raw):
    with pytest.raises(UpstreamMalformed) as exc:
        extract_json(raw)
    assert exc.value.raw_text == raw
    assert exc.value.status_code == 500


def test_load_model_json_reraises_malformed():
    with pytest.raises(UpstreamMalformed):
        BaseUtils().load_model_json("nope", "test")


# -----------------------
# condense_text
# -----------------------

def test_condense_short_text_unchanged():
    assert condense_text("hello", 100) == "hello"
    assert condense_text("", 100) == ""


def test_condense_keeps_head_and_tail():
    text = "".join(chr(ord("a") + (i % 26)) for i in range(5000))
    out = condense_text(text, 1000)

    head = int(1000 * 0.75)
    tail = 1000 - head - 64
    assert out.startswith(text[:head])
    assert out.endswith(text[-tail:])
    assert f"...[omitted {5000 - head - tail} chars]..." in out
    assert len(out) <= 1000


def test_condense_tiny_limit_drops_tail():
    out = condense_text("x" * 50, 10)
    assert out.startswith("x" * 7)
    assert out.endswith("...[omitted 43 chars]...\n\n")


@pytest.mark.parametrize("limit", [10, 50, 100, 1000])
def test_condense_is_idempotent(limit):
    text = "The quick brown fox jumps over the lazy dog. " * 200
    once = condense_text(text, limit)
    assert condense_text(once, limit) == once


# -----------------------
# Small helpers
# -----------------------

def test_to_snake():
    assert to_snake("Full Name") == "full_name"
    assert to_snake("  E-mail address!  ") == "e_mail_address"
    assert to_snake(None) == ""


def test_unsafe_string_format_only_touches_given_keys():
    template = 'Return {"name": "x"} for {USER_PROMPT}; keep {OTHER}.'
    out = BaseUtils().unsafe_string_format(template, USER_PROMPT="a survey")
    assert out == 'Return {"name": "x"} for a survey; keep {OTHER}.'
