# promptform/base_utils.py

import json
import logging
import re
from typing import Any

import commentjson

from promptform.errors import UpstreamMalformed

logger = logging.getLogger("promptform")

OMISSION_MARKER_RESERVE = 64


def condense_text(text: str, limit: int) -> str:
    """
    Bound `text` to roughly `limit` characters keeping the beginning and the end,
    where form headers and closing/signature sections usually live.

    head = 75% of the budget, tail = the rest minus a fixed reserve for the marker.
    Output already produced by this function is returned unchanged.
    """
    if not text:
        return ""
    if len(text) <= limit:
        return text

    head = int(limit * 0.75)
    tail = max(limit - head - OMISSION_MARKER_RESERVE, 0)

    marker_re = re.compile(r"\n\n\.\.\.\[omitted \d+ chars\]\.\.\.\n\n")
    m = marker_re.search(text)
    if m and m.start() == head and len(text) - m.end() == tail:
        return text

    start = text[:head]
    end = text[len(text) - tail:] if tail else ""
    omitted = len(text) - (head + tail)
    return f"{start}\n\n...[omitted {omitted} chars]...\n\n{end}"


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        # models sometimes echo the // comments found in the schema they were shown
        return commentjson.loads(text)


def extract_json(raw: str) -> Any:
    """
    Two-tier recovery of a JSON value from model output:
    1. parse the trimmed text as-is;
    2. parse the slice between the first '{' and the last '}'.
    Raises UpstreamMalformed (raw text preserved) when both fail.
    """
    text = (raw or "").strip()
    try:
        return _loads(text)
    except Exception as e:
        first_err = str(e)

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise UpstreamMalformed(f"no JSON object found ({first_err})", raw_text=raw)

    try:
        return _loads(text[start:end + 1])
    except Exception as e:
        raise UpstreamMalformed(str(e), raw_text=raw) from e


def to_snake(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(value or "").lower()).strip("_")


class BaseUtils():
    # -----------------------
    # General Utils
    # -----------------------

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        It works differently from the standard "format" method: instead of looking for all the potential keys,
        it looks only for the keys passed in kwargs, so JSON braces inside templates are left alone.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    def load_model_json(self, raw: str, label: str = "model") -> Any:
        try:
            return extract_json(raw)
        except UpstreamMalformed as e:
            logger.error(f"[{label}] Unrecoverable JSON from model: {e.reason}\n--- raw text ---\n{e.raw_text}")
            raise
