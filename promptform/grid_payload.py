import math
from typing import Any, Dict, List, Optional


def column_label(col: Any, idx: int) -> str:
    if isinstance(col, str):
        return col
    if isinstance(col, dict) and isinstance(col.get("label"), str):
        return col["label"]
    return str(idx)


def _as_index(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if text == "":
            return 0
        try:
            value = float(text)
        except ValueError:
            return None
    if not math.isfinite(value) or value != int(value):
        return None
    return int(value)


def resolve_grid_selection(payload: Dict[str, Any], field: Dict[str, Any], row_label: str, row_index: int) -> Optional[str]:
    """
    Selected column label for one radioGrid row. Three payload encodings are accepted, in order:

        payload["likes"]["Coffee"] = "Agree"     # nested (canonical)
        payload["likes.Coffee"] = "Agree"        # flattened dot key
        payload["likes[0]"] = "2"                # legacy bracket index -> columns[2].label

    A bracket value that is not a valid column index is used as a literal label.
    """
    p = payload or {}
    name = field.get("name")

    nested = p.get(name)
    if isinstance(nested, dict) and nested.get(row_label) is not None:
        value = str(nested[row_label])
        return value or None

    dot_key = f"{name}.{row_label}"
    if dot_key in p:
        value = "" if p[dot_key] is None else str(p[dot_key])
        return value or None

    raw = p.get(f"{name}[{row_index}]")
    if raw is not None:
        cols: List[Any] = field.get("columns") or []
        idx = _as_index(raw)
        if idx is not None and 0 <= idx < len(cols):
            return column_label(cols[idx], idx)
        value = str(raw)
        return value or None
    return None


def normalize_grid_payload(form: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite every radioGrid answer of a stored payload into the nested encoding
    and drop the flattened/legacy keys it came from. Other keys are left as they are.
    """
    if not isinstance(payload, dict):
        return payload
    out = dict(payload)
    for field in form.get("fields") or []:
        if not isinstance(field, dict) or field.get("type") != "radioGrid":
            continue
        name = field.get("name")
        rows = field.get("rows") or []
        nested: Dict[str, str] = {}
        for r_idx, row_label in enumerate(rows):
            selected = resolve_grid_selection(payload, field, row_label, r_idx)
            if selected is not None:
                nested[row_label] = selected
            out.pop(f"{name}.{row_label}", None)
            out.pop(f"{name}[{r_idx}]", None)
        if nested:
            out[name] = nested
    return out
