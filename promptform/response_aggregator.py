import csv
import io
import json
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from promptform.base_utils import to_snake
from promptform.grid_payload import column_label, resolve_grid_selection
from promptform.prompt_compiler import TEXT_LIKE_KINDS
from promptform.scoring import calculate_result

TEXT_SAMPLE_LIMIT = 100

SKIPPED_KINDS = ("section", "submit")


def _payload(response: Dict[str, Any]) -> Dict[str, Any]:
    # stored responses wrap the answers; bare answer maps are accepted too
    if isinstance(response, dict) and isinstance(response.get("payload"), dict):
        return response["payload"]
    return response if isinstance(response, dict) else {}


def _seeded(options: List[str] | None) -> Dict[str, int]:
    return {opt: 0 for opt in (options or [])}


def _as_rows(counts: Dict[str, int]) -> List[Dict[str, Any]]:
    return [{"name": name, "value": value} for name, value in counts.items()]


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _choice_summary(field: Dict[str, Any], payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    counts = _seeded(field.get("options"))
    answered = 0
    for p in payloads:
        value = p.get(field["name"])
        if value is None or isinstance(value, (list, dict)):
            continue
        value = str(value)
        if not value:
            continue
        counts[value] = counts.get(value, 0) + 1
        answered += 1
    return {"counts": _as_rows(counts), "answered": answered}


def _checkbox_summary(field: Dict[str, Any], payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    counts = _seeded(field.get("options"))
    answered = 0
    for p in payloads:
        raw = p.get(field["name"])
        values = raw if isinstance(raw, list) else ([] if raw is None else [raw])
        picked = [str(v) for v in values if v not in (None, "", False)]
        for v in picked:
            counts[v] = counts.get(v, 0) + 1
        if picked:
            answered += 1
    return {"counts": _as_rows(counts), "answered": answered}


def _grid_summary(field: Dict[str, Any], payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    cols = field.get("columns") or []
    per_row = []
    for r_idx, row_label in enumerate(field.get("rows") or []):
        row_label = row_label or f"Row {r_idx + 1}"
        counts = {column_label(c, i): 0 for i, c in enumerate(cols)}
        for p in payloads:
            selected = resolve_grid_selection(p, field, row_label, r_idx)
            if selected:
                counts[selected] = counts.get(selected, 0) + 1
        per_row.append({"row": row_label, "counts": _as_rows(counts)})
    return {"rows": per_row}


def _range_summary(field: Dict[str, Any], payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    numbers = [n for n in (_finite(p.get(field["name"])) for p in payloads) if n is not None]
    average = sum(numbers) / len(numbers) if numbers else None
    return {
        "average": average,
        "samples": len(numbers),
        "min": field.get("min", 0),
        "max": field.get("max", 10),
    }


def _text_summary(field: Dict[str, Any], payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    items = []
    for p in payloads:
        value = p.get(field["name"])
        if value is None or str(value) == "":
            continue
        items.append(value)
        if len(items) >= TEXT_SAMPLE_LIMIT:
            break
    return {"items": items}


def aggregate(form: Dict[str, Any], responses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Per-field summary of a form's responses, in field order (section and submit skipped):

        radio/select  -> counts per option, every declared option seeded at 0
        checkbox      -> counts per option; one response can bump several options
        radioGrid     -> counts per column, one set per row
        range         -> mean of the finite values (None when there are none)
        anything else -> up to 100 non-empty raw values
    """
    payloads = [_payload(r) for r in responses or []]
    summaries = []
    for field in form.get("fields") or []:
        if not isinstance(field, dict) or field.get("type") in SKIPPED_KINDS or not field.get("name"):
            continue
        kind = field.get("type")
        if kind in ("radio", "select"):
            data = _choice_summary(field, payloads)
        elif kind == "checkbox":
            data = _checkbox_summary(field, payloads)
        elif kind == "radioGrid":
            data = _grid_summary(field, payloads)
        elif kind == "range":
            data = _range_summary(field, payloads)
        else:
            data = _text_summary(field, payloads)

        summaries.append({
            "name": field["name"],
            "label": field.get("label") or field["name"],
            "type": kind,
            "textLike": kind in TEXT_LIKE_KINDS,
            **data,
        })
    return summaries


def is_outcome_form(form: Dict[str, Any]) -> bool:
    return calculate_result(form, {}).get("type") == "OUTCOME"


def outcome_distribution(form: Dict[str, Any], responses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Submissions per winning outcome: declared outcomes first in their order, then any others seen."""
    if not is_outcome_form(form):
        return []

    rows: Dict[str, Dict[str, Any]] = {}
    for page in form.get("resultPages") or []:
        if not isinstance(page, dict):
            continue
        oid = page.get("outcomeId") or to_snake(page.get("title"))
        if oid and oid not in rows:
            rows[oid] = {"outcomeId": oid, "title": page.get("title") or oid, "count": 0}

    for r in responses or []:
        result = calculate_result(form, _payload(r))
        oid = result.get("outcomeId")
        if not oid:
            continue
        if oid not in rows:
            rows[oid] = {"outcomeId": oid, "title": result.get("outcomeTitle") or oid, "count": 0}
        rows[oid]["count"] += 1
    return list(rows.values())


# -----------------------
# CSV export
# -----------------------

def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return "" if value is None else str(value)


def csv_filename(form: Dict[str, Any]) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", str(form.get("title") or "form").lower()).strip("-")
    return f"{base or 'form'}-responses.csv"


def responses_to_csv(form: Dict[str, Any], responses: List[Dict[str, Any]]) -> str:
    """One column per field, one per radioGrid row ("<label> - <row>"), then "Submitted At"."""
    columns = []
    for field in form.get("fields") or []:
        if not isinstance(field, dict) or field.get("type") in SKIPPED_KINDS:
            continue
        label = field.get("label") or field.get("name")
        if field.get("type") == "radioGrid":
            for r_idx, row_label in enumerate(field.get("rows") or []):
                columns.append((
                    f"{label} - {row_label}",
                    lambda p, f=field, rl=row_label, ri=r_idx: resolve_grid_selection(p, f, rl, ri) or "",
                ))
            continue
        columns.append((label, lambda p, name=field.get("name"): _cell(p.get(name))))

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([header for header, _ in columns] + ["Submitted At"])
    for r in responses or []:
        payload = _payload(r)
        writer.writerow([extract(payload) for _, extract in columns] + [_timestamp(r.get("createdAt"))])
    return buf.getvalue()
