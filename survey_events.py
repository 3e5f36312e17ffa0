"""
survey_events.py

Pure handlers for the events the survey preview fires:

- value changed  -> dynamic-panel count sync, dependent-choice reset,
                    expression recompute, clear values of hidden questions
- file upload    -> size / type checks, base64 data URL, preview metadata
- file cleared   -> drop preview + answer

Each handler takes a BuilderState and returns a new one plus an outcome, so the
same rules run in the Streamlit app and in tests without a renderer attached.

Condition syntax (SurveyJS-style visibleIf):
  {var} = 'x'   {var} != 'x'   {var} > 3   {var} contains 'x'
  {var} empty   {var} notempty   {panel.var} ...   a and b   a or b   true
"""

import ast
import base64
import copy
import logging
import math
import operator
import re
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from survey_builder import (
    CLEAR_INVISIBLE_VALUES,
    DEFAULT_MAX_FILE_SIZE,
    BuilderState,
    find_field,
    iter_fields,
)

logger = logging.getLogger(__name__)


# -------------------
# RULES
# -------------------
# count question -> dynamic panel it drives
PANEL_COUNT_FIELDS = {
    "children_count": "children_details",
    "household_size": "household_members",
}

# dynamic panel -> {count question inside each instance: sub-panel of that instance}
NESTED_PANEL_COUNT_FIELDS = {
    "household_members": {"asset_count": "member_assets"},
}

# controlling question -> questions whose choice list it filters
DEPENDENT_CHOICES = {
    "country": ["city"],
}

_PATH_RE = re.compile(r"^(?P<parent>\w+)\[(?P<index>\d+)\]\.(?P<child>\w+)$")
_TOKEN_RE = re.compile(r"(\w+)(?:\[(\d+)\])?")


# -------------------
# DATA STRUCTURES
# -------------------
@dataclass
class ValueChangeResult:
    name: str
    panel_counts: Dict[str, int] = field(default_factory=dict)
    cleared: List[str] = field(default_factory=list)


class UploadedFileRecord(BaseModel):
    name: str
    type: str = ""
    size: int = Field(ge=0)
    content: str


@dataclass
class UploadOutcome:
    status: Literal["success", "error"]
    record: Optional[UploadedFileRecord] = None
    preview: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


# -------------------
# VALUE HELPERS
# -------------------
def coerce_count(value: Any) -> int:
    """Leading integer of the value (parseInt-like); non-numeric or negative -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        n = int(value)
    elif isinstance(value, int):
        n = value
    else:
        m = re.match(r"^\s*([+-]?\d+)", str(value))
        if not m:
            return 0
        n = int(m.group(1))
    return max(0, n)


def _to_number(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return float(x)
    try:
        return float(str(x).strip())
    except ValueError:
        return None


def _is_empty(x: Any) -> bool:
    return x is None or x == "" or (isinstance(x, (list, dict)) and not x)


def _js_round(x: float) -> int:
    return int(math.floor(x + 0.5))


def _split_path(name: str) -> Optional[Tuple[str, int, str]]:
    m = _PATH_RE.match(name or "")
    if not m:
        return None
    return m.group("parent"), int(m.group("index")), m.group("child")


def _path_tokens(name: str) -> List[Tuple[str, Optional[int]]]:
    tokens = []
    for part in (name or "").split("."):
        m = _TOKEN_RE.fullmatch(part)
        if not m:
            raise ValueError(f"Invalid answer path: {name!r}")
        tokens.append((m.group(1), int(m.group(2)) if m.group(2) is not None else None))
    return tokens


def get_answer(answers: Dict[str, Any], name: str) -> Any:
    current: Any = answers
    for key, idx in _path_tokens(name):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if idx is not None:
            if not isinstance(current, list) or idx >= len(current):
                return None
            current = current[idx]
    return current


def set_answer(answers: Dict[str, Any], name: str, value: Any) -> Dict[str, Any]:
    """Write value at a plain or scoped (`panel[i].field`, nested too) name; None removes it."""
    tokens = _path_tokens(name)
    container = answers
    for key, idx in tokens[:-1]:
        if idx is None:
            if not isinstance(container.get(key), dict):
                container[key] = {}
            container = container[key]
            continue
        instances = container.get(key)
        if not isinstance(instances, list):
            instances = []
            container[key] = instances
        while len(instances) <= idx:
            instances.append({})
        if not isinstance(instances[idx], dict):
            instances[idx] = {}
        container = instances[idx]

    last = tokens[-1][0]
    if value is None:
        container.pop(last, None)
    else:
        container[last] = value
    return answers


# -------------------
# CONDITIONS
# -------------------
_PRED_UNARY_RE = re.compile(r"^\{(?P<var>[\w.]+)\}\s+(?P<op>notempty|empty)$", re.I)
_PRED_BINARY_RE = re.compile(
    r"^\{(?P<var>[\w.]+)\}\s*(?P<op>==|!=|<>|>=|<=|=|>|<|\s+notcontains\s+|\s+contains\s+)\s*(?P<val>.+)$",
    re.I,
)


def _resolve(var: str, answers: Dict[str, Any], panel: Optional[Dict[str, Any]]) -> Any:
    if var.startswith("panel."):
        return (panel or {}).get(var[len("panel."):])
    return answers.get(var)


def _literal(raw: str, answers: Dict[str, Any], panel: Optional[Dict[str, Any]]) -> Any:
    s = raw.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in {"'", '"'}:
        return s[1:-1]
    if s.startswith("{") and s.endswith("}"):
        return _resolve(s[1:-1], answers, panel)
    if s.lower() in {"true", "false"}:
        return s.lower() == "true"
    n = _to_number(s)
    return n if n is not None else s


def _equals(a: Any, b: Any) -> bool:
    na, nb = _to_number(a), _to_number(b)
    if na is not None and nb is not None:
        return na == nb
    if a is None or b is None:
        return _is_empty(a) and _is_empty(b)
    return str(a) == str(b)


def _contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, (list, tuple, set)):
        return any(_equals(x, needle) for x in haystack)
    if isinstance(haystack, str):
        return str(needle) in haystack
    return False


_ORDERING = {">": operator.gt, ">=": operator.ge, "<": operator.lt, "<=": operator.le}


def _eval_predicate(pred: str, answers: Dict[str, Any], panel: Optional[Dict[str, Any]]) -> bool:
    s = pred.strip()
    if s.lower() in {"true", "false"}:
        return s.lower() == "true"

    m = _PRED_UNARY_RE.match(s)
    if m:
        empty = _is_empty(_resolve(m.group("var"), answers, panel))
        return empty if m.group("op").lower() == "empty" else not empty

    m = _PRED_BINARY_RE.match(s)
    if not m:
        logger.warning("Unsupported condition %r; treating as true", pred)
        return True

    left = _resolve(m.group("var"), answers, panel)
    op = m.group("op").strip().lower()
    right = _literal(m.group("val"), answers, panel)

    if op in {"=", "=="}:
        return _equals(left, right)
    if op in {"!=", "<>"}:
        return not _equals(left, right)
    if op == "contains":
        return _contains(left, right)
    if op == "notcontains":
        return not _contains(left, right)
    nl, nr = _to_number(left), _to_number(right)
    if nl is None or nr is None:
        return False
    return _ORDERING[op](nl, nr)


def evaluate_condition(expr: Optional[str], answers: Dict[str, Any], panel: Optional[Dict[str, Any]] = None) -> bool:
    if expr is None or not str(expr).strip():
        return True
    for disjunct in re.split(r"\s+or\s+", str(expr), flags=re.I):
        if all(_eval_predicate(p, answers, panel) for p in re.split(r"\s+and\s+", disjunct, flags=re.I)):
            return True
    return False


# -------------------
# EXPRESSIONS
# -------------------
_ARITH = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}


def evaluate_expression(expr: str, answers: Dict[str, Any]) -> Optional[float]:
    """Arithmetic over {name} references; None if any operand is missing or non-numeric."""
    refs: Dict[str, Optional[float]] = {}

    def _sub(m: "re.Match[str]") -> str:
        key = f"v{len(refs)}"
        refs[key] = _to_number(answers.get(m.group(1)))
        return key

    src = re.sub(r"\{([\w.]+)\}", _sub, expr or "")
    try:
        tree = ast.parse(src, mode="eval")
    except SyntaxError:
        logger.warning("Unsupported expression %r", expr)
        return None

    def _eval(node: ast.AST) -> Optional[float]:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
            return float(node.value)
        if isinstance(node, ast.Name) and node.id in refs:
            return refs[node.id]
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.UAdd, ast.USub)):
            v = _eval(node.operand)
            if v is None:
                return None
            return -v if isinstance(node.op, ast.USub) else v
        if isinstance(node, ast.BinOp) and type(node.op) in _ARITH:
            a, b = _eval(node.left), _eval(node.right)
            if a is None or b is None:
                return None
            if isinstance(node.op, ast.Div) and b == 0:
                return None
            return _ARITH[type(node.op)](a, b)
        raise ValueError(f"Unsupported expression element in {expr!r}")

    return _eval(tree)


def recompute_expressions(survey: Dict[str, Any], answers: Dict[str, Any]) -> Dict[str, Any]:
    for page in survey.get("pages", []):
        for el in page.get("elements", []):
            if el.get("type") != "expression":
                continue
            v = evaluate_expression(el.get("expression", ""), answers)
            if v is None:
                answers.pop(el["name"], None)
            else:
                answers[el["name"]] = v
    return answers


# -------------------
# CHOICES
# -------------------
def _choice_items(choices: List[Any]) -> List[Dict[str, Any]]:
    out = []
    for c in choices or []:
        if isinstance(c, dict):
            value = c.get("value")
            out.append({"value": value, "text": c.get("text", value), "visibleIf": c.get("visibleIf")})
        else:
            out.append({"value": c, "text": c, "visibleIf": None})
    return out


def visible_choices(question: Dict[str, Any], answers: Dict[str, Any], panel: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    if question.get("choicesVisibleIf") and not evaluate_condition(question["choicesVisibleIf"], answers, panel):
        return []
    return [c for c in _choice_items(question.get("choices") or []) if evaluate_condition(c["visibleIf"], answers, panel)]


def clear_incorrect_values(survey: Dict[str, Any], answers: Dict[str, Any], name: str) -> bool:
    """Drop the answer of `name` if it is no longer among its visible choices."""
    question = find_field(survey, name)
    if question is None or name not in answers:
        return False
    allowed = [c["value"] for c in visible_choices(question, answers)]
    current = answers[name]
    values = current if isinstance(current, list) else [current]
    if all(v in allowed for v in values):
        return False
    answers.pop(name)
    return True


# -------------------
# HIDDEN VALUES
# -------------------
def _drop_all(elements: List[Dict[str, Any]], values: Dict[str, Any], prefix: str, cleared: List[str]) -> None:
    for el in elements or []:
        if el.get("type") == "panel":
            _drop_all(el.get("elements") or [], values, prefix, cleared)
        elif el.get("name") in values:
            values.pop(el["name"])
            cleared.append(prefix + el["name"])


def _clear_hidden(
    elements: List[Dict[str, Any]],
    values: Dict[str, Any],
    answers: Dict[str, Any],
    panel: Optional[Dict[str, Any]],
    prefix: str,
    cleared: List[str],
) -> None:
    for el in elements or []:
        name = el.get("name")
        visible = evaluate_condition(el.get("visibleIf"), answers, panel)
        if el.get("type") == "panel":
            if visible:
                _clear_hidden(el.get("elements") or [], values, answers, panel, prefix, cleared)
            else:
                _drop_all(el.get("elements") or [], values, prefix, cleared)
            continue
        if not visible:
            if name in values:
                values.pop(name)
                cleared.append(prefix + name)
            continue
        if el.get("type") == "paneldynamic" and isinstance(values.get(name), list):
            for i, inst in enumerate(values[name]):
                if isinstance(inst, dict):
                    _clear_hidden(el.get("templateElements") or [], inst, answers, inst, f"{prefix}{name}[{i}].", cleared)


def clear_invisible_values(survey: Dict[str, Any], answers: Dict[str, Any]) -> List[str]:
    cleared: List[str] = []
    for page in survey.get("pages", []):
        _clear_hidden(page.get("elements", []), answers, answers, None, "", cleared)
    return cleared


# -------------------
# DYNAMIC PANELS
# -------------------
def _clamp_count(n: int, panel_def: Optional[Dict[str, Any]]) -> int:
    if panel_def and panel_def.get("maxPanelCount") is not None:
        return min(n, int(panel_def["maxPanelCount"]))
    return n


def _template_child(panel_def: Optional[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    for el in (panel_def or {}).get("templateElements") or []:
        if el.get("name") == name:
            return el
    return None


def _truncate_instances(values: Dict[str, Any], name: str, n: int) -> None:
    if isinstance(values.get(name), list) and len(values[name]) > n:
        values[name] = values[name][:n]


def _sync_top_level(survey, answers, panel_counts, count_name, value, changed):
    panel_name = PANEL_COUNT_FIELDS[count_name]
    panel_def = find_field(survey, panel_name)
    if panel_def is None or panel_def.get("type") != "paneldynamic":
        return survey
    n = _clamp_count(coerce_count(value), panel_def)

    survey = copy.deepcopy(survey)
    find_field(survey, panel_name)["panelCount"] = n
    panel_counts[panel_name] = n
    changed[panel_name] = n
    _truncate_instances(answers, panel_name, n)

    # nested counts of removed instances go with them
    for key in [k for k in panel_counts if k.startswith(f"{panel_name}[")]:
        path = _split_path(key)
        if path and path[1] >= n:
            panel_counts.pop(key)
    return survey


def _sync_instance(survey, answers, panel_counts, parent, idx, count_child, value, changed):
    sub_name = NESTED_PANEL_COUNT_FIELDS[parent][count_child]
    sub_def = _template_child(find_field(survey, parent), sub_name)
    if sub_def is None or sub_def.get("type") != "paneldynamic":
        return
    n = _clamp_count(coerce_count(value), sub_def)
    key = f"{parent}[{idx}].{sub_name}"
    panel_counts[key] = n
    changed[key] = n
    instances = answers.get(parent)
    if isinstance(instances, list) and idx < len(instances) and isinstance(instances[idx], dict):
        _truncate_instances(instances[idx], sub_name, n)


def _apply_rules(
    state: BuilderState,
    answers: Dict[str, Any],
    name: str,
    value: Any,
    programmatic: bool,
    clear_invisible: bool,
) -> Tuple[BuilderState, ValueChangeResult]:
    survey = state.survey
    panel_counts = dict(state.panel_counts)
    result = ValueChangeResult(name=name)

    if name in PANEL_COUNT_FIELDS:
        survey = _sync_top_level(survey, answers, panel_counts, name, value, result.panel_counts)

    path = _split_path(name)
    if path and path[0] in NESTED_PANEL_COUNT_FIELDS and path[2] in NESTED_PANEL_COUNT_FIELDS[path[0]]:
        _sync_instance(survey, answers, panel_counts, path[0], path[1], path[2], value, result.panel_counts)
    elif name in NESTED_PANEL_COUNT_FIELDS and isinstance(answers.get(name), list):
        for idx, inst in enumerate(answers[name]):
            if not isinstance(inst, dict):
                continue
            for count_child in NESTED_PANEL_COUNT_FIELDS[name]:
                if count_child in inst:
                    _sync_instance(survey, answers, panel_counts, name, idx, count_child, inst[count_child], result.panel_counts)

    for dep in DEPENDENT_CHOICES.get(name, []):
        if not programmatic and dep in answers:
            answers.pop(dep)
            result.cleared.append(dep)
        if clear_incorrect_values(survey, answers, dep):
            result.cleared.append(dep)

    recompute_expressions(survey, answers)
    if clear_invisible:
        result.cleared.extend(c for c in clear_invisible_values(survey, answers) if c not in result.cleared)

    return replace(state, survey=survey, answers=answers, panel_counts=panel_counts), result


def handle_value_changed(
    state: BuilderState,
    name: str,
    value: Any,
    data: Optional[Dict[str, Any]] = None,
    programmatic: bool = False,
    clear_invisible: bool = CLEAR_INVISIBLE_VALUES,
) -> Tuple[BuilderState, ValueChangeResult]:
    """
    React to one answer change from the renderer.

    `data` is the renderer's full answer snapshot; without it the value is written
    at `name` (plain or `panel[i].field`). Count questions resize their dynamic
    panel, a scoped count only resizes the sub-panel of its own instance, and a
    change of a controlling question clears its dependent choice question unless
    the change is programmatic. With `clear_invisible` the answers of questions
    hidden by the change are dropped.
    """
    answers = copy.deepcopy(data) if data is not None else set_answer(copy.deepcopy(state.answers), name, value)
    new_state, result = _apply_rules(state, answers, name, value, programmatic, clear_invisible)
    logger.debug("Value changed: %s=%r panel_counts=%s cleared=%s", name, value, result.panel_counts, result.cleared)
    return new_state, result


def load_answers(
    state: BuilderState,
    data: Dict[str, Any],
    clear_invisible: bool = CLEAR_INVISIBLE_VALUES,
) -> Tuple[BuilderState, List[ValueChangeResult]]:
    """Programmatic restore of a saved answer set; dependents are revalidated, not cleared."""
    answers = copy.deepcopy(data or {})
    results: List[ValueChangeResult] = []
    names = [n for n in list(PANEL_COUNT_FIELDS) + list(NESTED_PANEL_COUNT_FIELDS) + list(DEPENDENT_CHOICES) if n in answers]
    new_state = replace(state, answers=answers)
    for name in names:
        new_state, result = _apply_rules(new_state, new_state.answers, name, new_state.answers.get(name), True, clear_invisible)
        results.append(result)
    if not names:
        new_state, result = _apply_rules(new_state, answers, "", None, True, clear_invisible)
        results.append(result)
    return new_state, results


# -------------------
# DEFAULTS + VALIDATION (preview side)
# -------------------
def apply_default_values(
    state: BuilderState,
    skip: Optional[set] = None,
    today: Optional[date] = None,
) -> Tuple[BuilderState, List[str]]:
    """Seed `defaultValue`s of unanswered questions once; `skip` lists names already seeded."""
    answers = copy.deepcopy(state.answers)
    applied: List[str] = []
    for page in state.survey.get("pages", []):
        for el in iter_fields(page.get("elements", [])):
            name = el.get("name")
            if "defaultValue" not in el or name in answers or name in (skip or set()):
                continue
            value = el["defaultValue"]
            if value == "today()":
                value = (today or date.today()).isoformat()
            answers[name] = value
            applied.append(name)
    if not applied:
        return state, []
    return replace(state, answers=answers), applied


EARLIEST_DATE = date(1900, 1, 1)


def _as_date(raw: Any, today: date) -> Optional[date]:
    if raw is None:
        return None
    if raw == "today()":
        return today
    return date.fromisoformat(str(raw))


def date_input_range(question: Dict[str, Any], today: Optional[date] = None) -> Tuple[date, date]:
    """Pickable dates for a date question: its minValue / maxValue, else 1900-01-01 up to today."""
    today = today or date.today()
    lo = _as_date(question.get("minValue"), today) or EARLIEST_DATE
    hi = _as_date(question.get("maxValue"), today) or today
    if lo > hi:
        raise ValueError(f"Empty date range for {question.get('name')!r}: {lo} > {hi}")
    return lo, hi


def _numeric_error(v: Any, rule: Dict[str, Any]) -> Optional[str]:
    n = _to_number(v)
    if n is None:
        return rule.get("text") or "The value should be numeric."
    lo, hi = rule.get("minValue"), rule.get("maxValue")
    if lo is not None and n < lo:
        return rule.get("text") or f"The value should not be less than {lo}"
    if hi is not None and n > hi:
        return rule.get("text") or f"The value should not be greater than {hi}"
    return None


def _validate(
    elements: List[Dict[str, Any]],
    values: Dict[str, Any],
    answers: Dict[str, Any],
    panel: Optional[Dict[str, Any]],
    prefix: str,
    panel_counts: Dict[str, int],
    errors: Dict[str, str],
) -> None:
    for el in elements or []:
        name = el.get("name")
        path = prefix + name
        if not evaluate_condition(el.get("visibleIf"), answers, panel):
            continue
        kind = el.get("type")
        if kind == "panel":
            _validate(el.get("elements") or [], values, answers, panel, prefix, panel_counts, errors)
            continue
        if kind == "paneldynamic":
            count = panel_counts.get(path, el.get("panelCount", 0))
            instances = values.get(name) if isinstance(values.get(name), list) else []
            for i in range(count):
                inst = instances[i] if i < len(instances) and isinstance(instances[i], dict) else {}
                _validate(el.get("templateElements") or [], inst, answers, inst, f"{path}[{i}].", panel_counts, errors)
            continue
        if kind == "expression":
            continue

        v = values.get(name)
        if _is_empty(v):
            if el.get("isRequired"):
                errors[path] = "Response required."
            continue
        for rule in el.get("validators") or []:
            msg = None
            if rule.get("type") == "numeric":
                msg = _numeric_error(v, rule)
            elif rule.get("type") == "regex" and not re.search(rule.get("regex", ""), str(v)):
                msg = rule.get("text") or "Invalid value."
            if msg:
                errors[path] = msg
                break


def validate_answers(state: BuilderState) -> Dict[str, str]:
    """Required / numeric / regex checks over visible questions, keyed by answer path."""
    errors: Dict[str, str] = {}
    for page in state.survey.get("pages", []):
        _validate(page.get("elements", []), state.answers, state.answers, None, "", state.panel_counts, errors)
    return errors


# -------------------
# FILE UPLOADS
# -------------------
def is_accepted_type(accepted: Optional[str], file_name: str, mime: str) -> bool:
    tokens = [t.strip().lower() for t in (accepted or "").split(",") if t.strip()]
    if not tokens:
        return True
    name = (file_name or "").lower()
    ext = "." + name.rsplit(".", 1)[-1] if "." in name else ""
    mime = (mime or "").lower()
    for t in tokens:
        if t.startswith("."):
            if ext == t:
                return True
        elif t.endswith("/*"):
            if mime.startswith(t[:-1]):
                return True
        elif mime == t:
            return True
    return False


def _size_text(size: int) -> str:
    return f"{_js_round(size / 1024)} KB"


def _document_icon(mime: str) -> str:
    if "pdf" in mime:
        return "📄"
    if "doc" in mime or "word" in mime:
        return "📝"
    if "excel" in mime or "sheet" in mime:
        return "📊"
    if "text" in mime or "txt" in mime:
        return "📃"
    if "zip" in mime or "rar" in mime:
        return "📦"
    return "📎"


def _document_type_text(mime: str, name: str) -> str:
    if "pdf" in mime:
        return "PDF Document"
    if "doc" in mime or "word" in mime:
        return "Word Document"
    if "excel" in mime or "sheet" in mime:
        return "Excel Spreadsheet"
    if "text" in mime or "txt" in mime:
        return "Text File"
    if ".epub" in name.lower():
        return "eBook (EPUB)"
    if ".mobi" in name.lower():
        return "eBook (MOBI)"
    return "Document"


def build_file_preview(record: UploadedFileRecord) -> Dict[str, Any]:
    mime = (record.type or "").lower()
    if mime.startswith("image/") or mime.startswith("audio/"):
        return {
            "type": "image" if mime.startswith("image/") else "audio",
            "fileName": record.name,
            "base64Content": record.content,
            "fileSize": record.size,
            "sizeText": _size_text(record.size),
        }
    return {
        "type": "document",
        "fileName": record.name,
        "fileType": record.type,
        "fileSize": record.size,
        "icon": _document_icon(mime),
        "typeText": _document_type_text(mime, record.name),
        "sizeText": _size_text(record.size),
    }


def _read_bytes(upload: Any) -> bytes:
    if hasattr(upload, "getvalue"):
        return upload.getvalue()
    return upload.read()


def handle_upload(state: BuilderState, field_name: str, files: Optional[List[Any]]) -> Tuple[BuilderState, UploadOutcome]:
    """
    Accept or reject a file for a `file` question.

    `files` holds objects with name / type / size and read() (or getvalue()),
    e.g. Streamlit's UploadedFile. Only the first file is used.
    """
    if not files:
        return state, UploadOutcome(status="error", error="No file selected")

    question = find_field(state.survey, field_name) or {}
    upload = files[0]
    name = str(getattr(upload, "name", "") or "")
    mime = str(getattr(upload, "type", "") or "")
    size = int(getattr(upload, "size", 0) or 0)

    max_size = int(question.get("maxSize") or DEFAULT_MAX_FILE_SIZE)
    if size > max_size:
        return state, UploadOutcome(status="error", error=f"File size exceeds limit of {_js_round(max_size / 1048576)}MB")

    accepted = question.get("acceptedTypes")
    if not is_accepted_type(accepted, name, mime):
        return state, UploadOutcome(status="error", error=f"File type not allowed. Accepted types: {accepted}")

    try:
        raw = _read_bytes(upload)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read upload for %s: %s", field_name, e)
        return state, UploadOutcome(status="error", error="Failed to read file")

    content = f"data:{mime or 'application/octet-stream'};base64,{base64.b64encode(raw).decode('ascii')}"
    record = UploadedFileRecord(name=name, type=mime, size=size, content=content)
    preview = build_file_preview(record)

    answers = copy.deepcopy(state.answers)
    answers[field_name] = [record.model_dump()]
    previews = {**state.file_previews, field_name: preview}
    logger.info("File uploaded for question %s: %s (%s, %s)", field_name, name, mime, _size_text(size))
    return replace(state, answers=answers, file_previews=previews), UploadOutcome(status="success", record=record, preview=preview)


def handle_clear_files(state: BuilderState, field_name: str) -> Tuple[BuilderState, str]:
    answers = copy.deepcopy(state.answers)
    answers.pop(field_name, None)
    previews = {k: v for k, v in state.file_previews.items() if k != field_name}
    logger.info("Files cleared for question: %s", field_name)
    return replace(state, answers=answers, file_previews=previews), "success"
