import math
import re
from typing import Any, Dict, List, Optional

from promptform.base_utils import to_snake
from promptform.google_helpers import logger
from promptform.grid_payload import column_label, resolve_grid_selection


def _number(value: Any) -> Optional[float]:
    """Finite float for numbers and numeric strings, None otherwise."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _nrm(value: Any) -> str:
    return re.sub(r"\s+", " ", str("" if value is None else value).strip().lower())


def normalize_loose(value: Any) -> str:
    # "Sometimes Applies (2)" matches "Sometimes Applies"
    text = str("" if value is None else value).lower()
    text = re.sub(r"\(\s*\d+\s*\)", "", text)
    return re.sub(r"\s+", " ", text.strip())


def _to_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    if value is None:
        return []
    return [str(value)]


def _outcome_id(page: Dict[str, Any]) -> str:
    return page.get("outcomeId") or to_snake(page.get("title"))


# -----------------------
# Knowledge quizzes
# -----------------------

def _grid_points(columns: List[Any]):
    raw = []
    for col in columns:
        raw.append(_number(col.get("points")) if isinstance(col, dict) else None)

    all_missing = all(p is None for p in raw)
    all_equal = all(p is not None for p in raw) and len(set(raw)) <= 1
    if all_missing or all_equal:
        return [idx + 1 for idx in range(len(columns))]
    return [p if p is not None else 1 for p in raw]


def _knowledge(form: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    score = 0
    max_score = 0

    for f in form.get("fields") or []:
        if not isinstance(f, dict):
            continue
        kind = f.get("type")
        name = f.get("name")
        value = payload.get(name)

        if kind == "radioGrid":
            rows = f.get("rows") or []
            cols = f.get("columns") or []
            pts = _grid_points(cols)
            best = max(pts) if pts else 0
            for r_idx, row_label in enumerate(rows):
                max_score += best
                selected = resolve_grid_selection(payload, f, row_label, r_idx)
                if selected is None:
                    continue
                for c_idx, col in enumerate(cols):
                    if _nrm(column_label(col, 0)) == _nrm(selected):
                        score += pts[c_idx]
                        break
            continue

        if kind == "range":
            lo_raw, hi_raw = _number(f.get("min", 0)), _number(f.get("max", 10))
            lo_raw = math.floor(lo_raw) if lo_raw is not None else 0
            hi_raw = math.floor(hi_raw) if hi_raw is not None else 10
            lo, hi = min(lo_raw, hi_raw), max(lo_raw, hi_raw)
            selected = _number(value)
            selected = math.floor(selected) if selected is not None else lo
            max_score += max(0, hi - lo)
            score += max(lo, min(hi, selected)) - lo
            continue

        points = _number(f.get("points"))
        points = 1 if points is None else points

        pattern = f.get("answerPattern")
        regex = None
        if isinstance(pattern, str) and pattern:
            try:
                regex = re.compile(pattern, re.IGNORECASE)
            except re.error:
                logger.debug(f"[SCORING] Ignoring invalid answerPattern on {name}: {pattern!r}")

        correct = f.get("correctAnswer")
        ok = None  # None -> not gradable
        if kind in ("radio", "select", "text", "textarea"):
            if regex is not None:
                ok = bool(regex.search(str("" if value is None else value)))
            elif isinstance(correct, str) and correct:
                ok = _nrm(value) == _nrm(correct)
        elif kind == "checkbox":
            chosen = {normalize_loose(v) for v in _to_list(value)}
            if isinstance(correct, list):
                ok = chosen == {normalize_loose(v) for v in correct}
            elif isinstance(correct, str) and correct:
                ok = normalize_loose(correct) in chosen

        if ok is not None:
            max_score += points
            if ok:
                score += points

    return {"type": "KNOWLEDGE", "score": score, "maxScore": max_score}


# -----------------------
# Outcome (personality) quizzes
# -----------------------

def outcome_max_score(form: Dict[str, Any]) -> float:
    """Highest total any single outcome can reach: per field the best rule per outcome, summed."""
    per_outcome: Dict[str, float] = {}
    for f in form.get("fields") or []:
        field_best: Dict[str, float] = {}
        for rule in f.get("scoring") or []:
            if not isinstance(rule, dict) or not rule.get("outcomeId"):
                continue
            pts = _number(rule.get("points"))
            pts = 1 if pts is None else pts
            oid = rule["outcomeId"]
            field_best[oid] = max(field_best.get(oid, 0), pts)
        for oid, pts in field_best.items():
            per_outcome[oid] = per_outcome.get(oid, 0) + pts
    return max([0] + list(per_outcome.values()))


def _outcome(form: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    pages = [p for p in (form.get("resultPages") or []) if isinstance(p, dict)]
    ordered_ids = [_outcome_id(p) for p in pages]
    title_by_id = {_outcome_id(p): p.get("title") for p in pages}

    totals: Dict[str, float] = {}

    def _add(rule: Optional[Dict[str, Any]]) -> None:
        if rule and rule.get("outcomeId"):
            pts = _number(rule.get("points"))
            totals[rule["outcomeId"]] = totals.get(rule["outcomeId"], 0) + (pts or 0)

    for f in form.get("fields") or []:
        rules = [r for r in (f.get("scoring") or []) if isinstance(r, dict)]
        if not rules:
            continue

        by_option: Dict[str, Dict[str, Any]] = {}
        by_column: Dict[str, Dict[str, Any]] = {}
        for rule in rules:
            if rule.get("option"):
                by_option[normalize_loose(rule["option"])] = rule
            if rule.get("column"):
                by_column[normalize_loose(rule["column"])] = rule
            if rule.get("outcomeId"):
                totals.setdefault(rule["outcomeId"], 0)

        kind = f.get("type")
        if kind in ("radio", "select"):
            _add(by_option.get(normalize_loose(payload.get(f.get("name")))))
        elif kind == "checkbox":
            for value in _to_list(payload.get(f.get("name"))):
                _add(by_option.get(normalize_loose(value)))
        elif kind == "radioGrid":
            for r_idx, row_label in enumerate(f.get("rows") or []):
                selected = resolve_grid_selection(payload, f, row_label, r_idx)
                if selected is not None:
                    _add(by_column.get(normalize_loose(selected)))

    best_id = None
    best_points = None
    for oid in list(totals) + [i for i in ordered_ids if i not in totals]:
        pts = totals.get(oid, 0)
        if best_points is None or pts > best_points:
            best_id, best_points = oid, pts
        elif pts == best_points:
            a = ordered_ids.index(oid) if oid in ordered_ids else -1
            b = ordered_ids.index(best_id) if best_id in ordered_ids else -1
            if a >= 0 and (b < 0 or a < b):
                best_id = oid

    if best_id is None and ordered_ids:
        best_id = ordered_ids[0]

    logger.debug(f"[SCORING] Outcome totals={totals} winner={best_id}")
    return {
        "type": "OUTCOME",
        "outcomeId": best_id,
        "outcomeTitle": title_by_id.get(best_id) if best_id else None,
        "totals": totals,
        "score": best_points or 0,
        "maxScore": outcome_max_score(form),
    }


def calculate_result(form: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Score one submission. quizType picks the engine; forms without one are detected:
    scoring rules or explicit outcome ids -> OUTCOME, a plain isQuiz flag -> KNOWLEDGE.
    """
    payload = payload or {}
    quiz_type = form.get("quizType")
    if quiz_type == "OUTCOME":
        return _outcome(form, payload)
    if quiz_type == "KNOWLEDGE":
        return _knowledge(form, payload)

    has_rules = any(isinstance(f, dict) and f.get("scoring") for f in form.get("fields") or [])
    has_ids = any(isinstance(p, dict) and isinstance(p.get("outcomeId"), str) and p["outcomeId"]
                  for p in form.get("resultPages") or [])
    if has_rules or has_ids:
        return _outcome(form, payload)
    if form.get("isQuiz") is True:
        return _knowledge(form, payload)
    return {"type": "KNOWLEDGE", "score": 0, "maxScore": 0}


# -----------------------
# Outcome score ranges
# -----------------------

def _floor_int(value: Any) -> int:
    num = _number(value)
    return math.floor(num) if num is not None else 0


def validate_outcome_ranges(pages: List[Dict[str, Any]] | None, max_score: float) -> Dict[str, Any]:
    """
    Ranges must be ascending, contiguous and non-overlapping, start at 0 and end at max_score.
    Returns {"valid": bool, "issues": [str]}.
    """
    issues: List[str] = []
    if not pages:
        return {"valid": True, "issues": issues}

    ranges = []
    for p in pages:
        rng = (p or {}).get("scoreRange") or {}
        ranges.append((_floor_int(rng.get("from", 0)), _floor_int(rng.get("to", 0))))

    for i, (lo, hi) in enumerate(ranges):
        n = i + 1
        if lo > hi:
            issues.append(f"Outcome {n}: from cannot be greater than to.")
        if lo < 0:
            issues.append(f"Outcome {n}: from must be >= 0.")
        if hi > max_score:
            issues.append(f"Outcome {n}: to must be <= {max_score}.")
        if i > 0:
            prev_to = ranges[i - 1][1]
            if lo <= prev_to:
                issues.append(f"Outcome {n}: overlaps previous (prev to={prev_to}).")
            if lo > prev_to + 1:
                issues.append(f"Outcome {n}: gap after previous (prev to={prev_to}).")

    if ranges[0][0] > 0:
        issues.append(f"Coverage gap at start: first \"from\" is {ranges[0][0]} (should be 0).")
    if ranges[-1][1] < max_score:
        issues.append(f"Coverage gap at end: last \"to\" is {ranges[-1][1]} (should be {max_score}).")

    return {"valid": not issues, "issues": issues}


def distribute_evenly(max_score: float, count: int) -> List[Dict[str, int]]:
    """Contiguous inclusive ranges covering 0..max_score, e.g. (9, 3) -> 0-3, 4-6, 7-9."""
    total = max(0, math.floor(max_score))
    buckets = max(1, math.floor(count))
    base, rem = divmod(total + 1, buckets)

    out = []
    cursor = 0
    for i in range(buckets):
        size = base + (1 if i < rem else 0)
        lo = cursor
        hi = max(lo, lo + size - 1)
        out.append({"from": lo, "to": hi})
        cursor = hi + 1
    out[-1]["to"] = total
    return out
