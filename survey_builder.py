"""
survey_builder.py

Survey document state for the bundle survey builder.

Everything the UI can do to the survey goes through a function in this module
that takes the current BuilderState and returns a NEW BuilderState plus a
message for the user. Nothing here touches Streamlit widgets, so every
transition is testable without a running app.

Covers:
1) Merging catalog bundles into the single-page survey document (dedupe by name)
2) Hidden build metadata (timestamps + running totals), exported on demand
3) Completion / clear transitions that reset the document and renderer identity
4) Export payload (survey + metadata)

Env vars (or Streamlit secrets):
- SURVEY_TITLE            default: XLS Form Compatible Survey
- SURVEY_DESCRIPTION      default: A survey built with XLS form compatible question types
- EXPORT_FILE_NAME        default: survey_export_with_metadata.json
- EXPORT_VERSION          default: 1.0
- DEFAULT_MAX_FILE_SIZE   default: 5242880 (bytes, used when a file question has no maxSize)
- CLEAR_INVISIBLE_VALUES  default: 1 (drop answers of questions that become hidden)
- LOG_LEVEL               default: INFO

Requires:
  pip install python-dotenv
"""

import os
import copy
import json
import logging
import random
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Literal, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# -------------------
# CONFIG
# -------------------
load_dotenv()


def _get_setting(name: str, default: str) -> str:
    try:
        import streamlit as st
        v = st.secrets.get(name)
        return str(v) if v is not None else os.getenv(name, default)
    except Exception:
        return os.getenv(name, default)


def _get_flag(name: str, default: str) -> bool:
    return str(_get_setting(name, default)).strip().lower() in {"1", "true", "yes", "y"}


SURVEY_TITLE = _get_setting("SURVEY_TITLE", "XLS Form Compatible Survey")
SURVEY_DESCRIPTION = _get_setting("SURVEY_DESCRIPTION", "A survey built with XLS form compatible question types")
EXPORT_FILE_NAME = _get_setting("EXPORT_FILE_NAME", "survey_export_with_metadata.json")
EXPORT_VERSION = _get_setting("EXPORT_VERSION", "1.0")
SURVEY_VERSION = "1.0"
DEFAULT_MAX_FILE_SIZE = int(str(_get_setting("DEFAULT_MAX_FILE_SIZE", "5242880")).strip() or "5242880")
CLEAR_INVISIBLE_VALUES = _get_flag("CLEAR_INVISIBLE_VALUES", "1")
LOG_LEVEL = _get_setting("LOG_LEVEL", "INFO").strip().upper()

BuilderStatus = Literal["building", "submitted", "cleared"]
Outcome = Literal["submitted", "cleared"]

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


# -------------------
# DATA STRUCTURES
# -------------------
@dataclass
class BuildMetadata:
    """Hidden audit log of how the survey was assembled. Never shown in the builder UI."""

    created_at: str
    start_build_time: int
    last_modified: Optional[str] = None
    total_bundles_added: int = 0
    bundle_history: List[Dict[str, Any]] = field(default_factory=list)
    question_addition_log: List[Dict[str, Any]] = field(default_factory=list)
    survey_build_duration: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "totalBundlesAdded": self.total_bundles_added,
            "bundleHistory": copy.deepcopy(self.bundle_history),
            "questionAdditionLog": copy.deepcopy(self.question_addition_log),
            "surveyBuildDuration": self.survey_build_duration,
            "startBuildTime": self.start_build_time,
        }


@dataclass
class BuilderState:
    survey: Dict[str, Any]
    answers: Dict[str, Any]
    metadata: BuildMetadata
    panel_counts: Dict[str, int] = field(default_factory=dict)
    file_previews: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # renderer identity: bumped only on reset so stale widget state is discarded
    survey_key: int = 0
    status: BuilderStatus = "building"
    # how the previous survey ended (complete or clear)
    last_outcome: Optional[Outcome] = None
    highlight: List[str] = field(default_factory=list)

    @property
    def elements(self) -> List[Dict[str, Any]]:
        return self.survey["pages"][0]["elements"]

    @property
    def question_count(self) -> int:
        return len(self.elements)


@dataclass
class AddResult:
    added: List[str]
    duplicates: List[str]
    message: str

    @property
    def changed(self) -> bool:
        return bool(self.added)


@dataclass
class CompletionReport:
    summary: str
    final_metadata: Dict[str, Any]
    response_id: str


# -------------------
# INITIAL STATE
# -------------------
def initial_survey() -> Dict[str, Any]:
    return {
        "title": SURVEY_TITLE,
        "description": SURVEY_DESCRIPTION,
        "pages": [{"name": "page1", "elements": []}],
    }


def new_metadata(clock: Optional[Clock] = None) -> BuildMetadata:
    now = (clock or _utcnow)()
    return BuildMetadata(created_at=_iso(now), start_build_time=_epoch_ms(now))


def new_builder_state(clock: Optional[Clock] = None) -> BuilderState:
    return BuilderState(survey=initial_survey(), answers={}, metadata=new_metadata(clock))


# -------------------
# DOCUMENT HELPERS
# -------------------
def iter_fields(elements: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    """Top-level fields plus the children of static panels (not dynamic templates)."""
    for el in elements or []:
        yield el
        if el.get("type") == "panel":
            yield from iter_fields(el.get("elements") or [])


def find_field(survey: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    for page in survey.get("pages", []):
        for el in iter_fields(page.get("elements", [])):
            if el.get("name") == name:
                return el
    return None


def _ensure_panel_defaults(schema: Dict[str, Any]) -> Dict[str, Any]:
    if schema.get("type") == "paneldynamic":
        schema.setdefault("panelCount", 0)
        schema.setdefault("allowAddPanel", True)
        schema.setdefault("allowRemovePanel", True)
    for child in (schema.get("templateElements") or []) + (schema.get("elements") or []):
        _ensure_panel_defaults(child)
    return schema


def _with_elements(survey: Dict[str, Any], elements: List[Dict[str, Any]]) -> Dict[str, Any]:
    pages = list(survey["pages"])
    pages[0] = {**pages[0], "elements": elements}
    return {**survey, "pages": pages}


# -------------------
# METADATA
# -------------------
def _stamp(metadata: BuildMetadata, clock: Optional[Clock]) -> datetime:
    now = (clock or _utcnow)()
    if metadata.last_modified:
        last = _parse_iso(metadata.last_modified)
        if now < last:
            now = last
    return now


def record_addition(
    metadata: BuildMetadata,
    added_names: List[str],
    total_questions: int,
    bundle_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> BuildMetadata:
    ts = _iso(_stamp(metadata, clock))
    bundle_number = metadata.total_bundles_added + 1
    history_entry = {
        "timestamp": ts,
        "bundleId": bundle_id,
        "questionsAdded": list(added_names),
        "questionCount": len(added_names),
        "totalQuestionsInSurvey": total_questions,
    }
    log_entries = [{"questionName": n, "addedAt": ts, "bundleNumber": bundle_number} for n in added_names]
    return replace(
        metadata,
        last_modified=ts,
        total_bundles_added=bundle_number,
        bundle_history=metadata.bundle_history + [history_entry],
        question_addition_log=metadata.question_addition_log + log_entries,
    )


# -------------------
# MERGER
# -------------------
def add_questions_to_survey(
    state: BuilderState,
    schemas: List[Dict[str, Any]],
    bundle_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Tuple[BuilderState, AddResult]:
    """
    Append the given field templates to the survey, skipping names already present.

    Non-duplicates are deep-copied so the document never shares objects with the
    catalog. The page element list is replaced rather than mutated, answers and
    survey_key are left alone so the live preview keeps what the user typed.
    """
    if not schemas:
        return state, AddResult(added=[], duplicates=[], message="No questions to add.")

    current = list(state.elements)
    existing = {el.get("name") for el in current}
    added: List[str] = []
    duplicates: List[str] = []

    for schema in schemas:
        name = schema.get("name")
        if name in existing:
            duplicates.append(name)
            continue
        current.append(_ensure_panel_defaults(copy.deepcopy(schema)))
        existing.add(name)
        added.append(name)

    if not added:
        msg = (
            "This feature (or all of its questions) is already in the survey.\n"
            f"Duplicate questions: {', '.join(duplicates)}"
        )
        logger.info("No questions added; duplicates=%s", duplicates)
        return state, AddResult(added=[], duplicates=duplicates, message=msg)

    if duplicates:
        msg = f"Added {len(added)} new questions. Skipped duplicates: {', '.join(duplicates)}"
    else:
        msg = f"Added {len(added)} question(s) to the survey."

    new_state = replace(
        state,
        survey=_with_elements(state.survey, current),
        metadata=record_addition(state.metadata, added, len(current), bundle_id=bundle_id, clock=clock),
        status="building",
        highlight=list(added),
    )
    logger.info("Added %s (bundle=%s); survey now has %d questions", added, bundle_id, len(current))
    return new_state, AddResult(added=added, duplicates=duplicates, message=msg)


def record_answers(state: BuilderState, data: Dict[str, Any]) -> BuilderState:
    return replace(state, answers=copy.deepcopy(data or {}))


# -------------------
# COMPLETION / CLEAR
# -------------------
def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return json.dumps(value, ensure_ascii=False)


def summarize_answers(answers: Dict[str, Any]) -> str:
    lines = ["Survey completed successfully!", "", "Answers summary:"]
    for key, value in answers.items():
        if isinstance(value, (dict, list)):
            lines.append(f"{key}: {json.dumps(value, ensure_ascii=False)}")
        else:
            lines.append(f"{key}: {_scalar_text(value)}")
    return "\n".join(lines) + "\n"


def _response_id(now: datetime, rng: Optional[random.Random] = None) -> str:
    r = rng or random.Random()
    suffix = "".join(r.choices(string.digits + string.ascii_lowercase, k=9))
    return f"resp_{_epoch_ms(now)}_{suffix}"


def _reset(state: BuilderState, outcome: Outcome, clock: Optional[Clock]) -> BuilderState:
    logger.info("Builder %s -> building (survey_key=%d)", outcome, state.survey_key + 1)
    return BuilderState(
        survey=initial_survey(),
        answers={},
        metadata=new_metadata(clock),
        survey_key=state.survey_key + 1,
        status="building",
        last_outcome=outcome,
    )


def complete_survey(
    state: BuilderState,
    answers: Optional[Dict[str, Any]] = None,
    clock: Optional[Clock] = None,
    rng: Optional[random.Random] = None,
) -> Tuple[BuilderState, CompletionReport]:
    """
    Handle the renderer's completion event.

    Builds the final (hidden) metadata, logs it together with the answers, and
    returns a fresh state: empty document, no answers, new metadata and a new
    survey_key so the next renderer instance starts clean.
    """
    data = copy.deepcopy(state.answers if answers is None else answers)
    now = (clock or _utcnow)()
    ts = _iso(now)
    response_id = _response_id(now, rng)

    final_metadata = {
        **state.metadata.to_dict(),
        "completedAt": ts,
        "surveyBuildDuration": max(0, _epoch_ms(now) - state.metadata.start_build_time),
        "finalQuestionCount": state.question_count,
        "responseCount": len(data),
        "completionData": {
            "userResponses": data,
            "submissionTimestamp": ts,
            "surveyVersion": SURVEY_VERSION,
            "responseId": response_id,
        },
    }
    logger.info("Survey completed: %s", json.dumps(data, ensure_ascii=False, indent=2))
    logger.debug("Survey metadata (hidden): %s", json.dumps(final_metadata, ensure_ascii=False, indent=2))

    report = CompletionReport(summary=summarize_answers(data), final_metadata=final_metadata, response_id=response_id)
    return _reset(state, "submitted", clock), report


def clear_survey(state: BuilderState, confirmed: bool, clock: Optional[Clock] = None) -> Tuple[BuilderState, str]:
    if state.question_count == 0:
        return state, "Survey is already empty."
    if not confirmed:
        return state, "Clear cancelled."
    logger.info("Survey cleared (%d questions dropped)", state.question_count)
    return _reset(state, "cleared", clock), "Survey cleared."


# -------------------
# EXPORT
# -------------------
def export_survey(state: BuilderState, clock: Optional[Clock] = None) -> Dict[str, Any]:
    now = (clock or _utcnow)()
    return {
        "survey": copy.deepcopy(state.survey),
        "metadata": {
            **state.metadata.to_dict(),
            "exportedAt": _iso(now),
            "exportVersion": EXPORT_VERSION,
        },
    }


def export_json(state: BuilderState, clock: Optional[Clock] = None) -> str:
    return json.dumps(export_survey(state, clock), ensure_ascii=False, indent=2)


# -------------------
# PRETTY PRINT
# -------------------
def neat_preview(survey: Dict[str, Any], show_conditions: bool = True) -> str:
    lines: List[str] = [f"=== {survey.get('title', '')} ===", ""]

    def _emit(el: Dict[str, Any], depth: int) -> None:
        pad = "   " * depth
        req = " *" if el.get("isRequired") else ""
        lines.append(f"{pad}- {el.get('name')} [{el.get('type')}]{req} {el.get('title', '')}".rstrip())
        if show_conditions and el.get("visibleIf"):
            lines.append(f"{pad}   visibleIf={el['visibleIf']}")
        if el.get("type") == "paneldynamic":
            lines.append(f"{pad}   panelCount={el.get('panelCount')} max={el.get('maxPanelCount', '-')}")
        for child in (el.get("elements") or []) + (el.get("templateElements") or []):
            _emit(child, depth + 1)

    for page in survey.get("pages", []):
        lines.append(f"[{page.get('name')}]")
        for el in page.get("elements", []):
            _emit(el, 0)
    return "\n".join(lines)
