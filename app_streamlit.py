import os
import base64
import json
import logging
from dataclasses import replace
from datetime import date
from typing import Any, Dict, Optional

import streamlit as st

from question_pool import catalog_frame, get_bundle, list_bundles
from survey_builder import (
    CLEAR_INVISIBLE_VALUES,
    DEFAULT_MAX_FILE_SIZE,
    EXPORT_FILE_NAME,
    LOG_LEVEL,
    add_questions_to_survey,
    clear_survey,
    complete_survey,
    export_json,
    neat_preview,
    new_builder_state,
)
from survey_events import (
    apply_default_values,
    date_input_range,
    evaluate_condition,
    get_answer,
    handle_clear_files,
    handle_upload,
    handle_value_changed,
    validate_answers,
    visible_choices,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("app_streamlit")

# ------------------------------------------------------------
# Streamlit config (ONLY ONCE, MUST BE FIRST st.* call)
# ------------------------------------------------------------
st.set_page_config(page_title="Survey Builder", layout="wide")

# ------------------------------------------------------------
# Session state
# ------------------------------------------------------------
if "builder" not in st.session_state:
    st.session_state.builder = new_builder_state()
if "logs" not in st.session_state:
    st.session_state.logs = []
if "notice" not in st.session_state:
    # (level, message) shown once on the next run
    st.session_state.notice = None
if "confirm_clear" not in st.session_state:
    st.session_state.confirm_clear = False
if "upload_errors" not in st.session_state:
    st.session_state.upload_errors = {}
if "seeded_defaults" not in st.session_state:
    # (survey_key, names whose defaultValue was already written) for the live renderer only
    st.session_state.seeded_defaults = (None, set())
if "clear_hidden" not in st.session_state:
    st.session_state.clear_hidden = CLEAR_INVISIBLE_VALUES
if "last_report" not in st.session_state:
    st.session_state.last_report = None


# -----------------------
# Small helpers (UI-side only)
# -----------------------
def _key(path: str) -> str:
    return f"sv{st.session_state.builder.survey_key}::{path}"


def _notify(level: str, msg: str) -> None:
    st.session_state.notice = (level, msg)
    st.session_state.logs.append(msg)


def _drop_widget_key(path: str) -> None:
    base = _key(path)
    for k in list(st.session_state.keys()):
        if isinstance(k, str) and (k == base or k.startswith(base + "::") or k.startswith(base + "[")):
            del st.session_state[k]


def _as_answer(kind: str, raw: Any) -> Any:
    if raw is None:
        return None
    if kind == "date" and isinstance(raw, date):
        return raw.isoformat()
    if kind == "number" and isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if kind in {"text", "email"}:
        return raw if raw.strip() else None
    if kind in {"multi", "ranking"}:
        return list(raw) or None
    return raw


def _apply_change(path: str, value: Any) -> None:
    state, result = handle_value_changed(
        st.session_state.builder, path, value, clear_invisible=st.session_state.clear_hidden
    )
    st.session_state.builder = state
    for cleared in result.cleared:
        if cleared != path:
            _drop_widget_key(cleared)
    for panel, n in result.panel_counts.items():
        logger.info("Panel %s count -> %d", panel, n)


# -----------------------
# Callbacks
# -----------------------
def _on_widget_change(path: str, kind: str) -> None:
    _apply_change(path, _as_answer(kind, st.session_state.get(_key(path))))


def _on_matrix_change(path: str, row: str) -> None:
    current = get_answer(st.session_state.builder.answers, path)
    value = dict(current) if isinstance(current, dict) else {}
    col = st.session_state.get(_key(f"{path}::{row}"))
    if col is None:
        value.pop(row, None)
    else:
        value[row] = col
    _apply_change(path, value or None)


def _on_file_change(name: str) -> None:
    upload = st.session_state.get(_key(name))
    st.session_state.upload_errors.pop(name, None)
    if upload is None:
        st.session_state.builder, _ = handle_clear_files(st.session_state.builder, name)
        return
    state, outcome = handle_upload(st.session_state.builder, name, [upload])
    st.session_state.builder = state
    if not outcome.ok:
        st.session_state.upload_errors[name] = outcome.error
        st.session_state.logs.append(f"⚠️ Upload rejected for {name}: {outcome.error}")


def _on_add_bundle(bundle_id: str) -> None:
    bundle = get_bundle(bundle_id)
    state, result = add_questions_to_survey(
        st.session_state.builder, bundle.question_schemas, bundle_id=bundle.id
    )
    st.session_state.builder = state
    if not result.changed:
        _notify("warning", result.message)
    elif result.duplicates:
        _notify("info", result.message)
    else:
        _notify("success", f"✅ {result.message}")


def _on_complete() -> None:
    errors = validate_answers(st.session_state.builder)
    if errors:
        lines = "\n".join(f"- {path}: {msg}" for path, msg in errors.items())
        _notify("error", f"Please fix the following before completing:\n{lines}")
        return
    state, report = complete_survey(st.session_state.builder)
    st.session_state.builder = state
    st.session_state.last_report = report
    st.session_state.upload_errors = {}
    st.session_state.confirm_clear = False
    _notify("success", report.summary + "\nFull details logged to console.")


def _on_clear_confirmed() -> None:
    state, msg = clear_survey(st.session_state.builder, confirmed=True)
    st.session_state.builder = state
    st.session_state.confirm_clear = False
    st.session_state.upload_errors = {}
    _notify("info", msg)


def _on_clear_requested() -> None:
    state, msg = clear_survey(st.session_state.builder, confirmed=False)
    if state.question_count == 0:
        _notify("warning", msg)
        return
    st.session_state.confirm_clear = True


def _on_clear_cancelled() -> None:
    st.session_state.confirm_clear = False


# -----------------------
# Preview rendering
# -----------------------
def _label(q: Dict[str, Any]) -> str:
    title = q.get("title") or q.get("name")
    return f"{title} *" if q.get("isRequired") else title


def _numeric_bounds(q: Dict[str, Any]):
    lo = hi = None
    for rule in q.get("validators") or []:
        if rule.get("type") == "numeric":
            lo = rule.get("minValue", lo)
            hi = rule.get("maxValue", hi)
    return lo, hi


def _render_number(q: Dict[str, Any], path: str, current: Any) -> None:
    lo, hi = _numeric_bounds(q)
    whole = all(v is None or float(v).is_integer() for v in (lo, hi, current) if not isinstance(v, str))
    cast = int if whole else float
    value = cast(current) if isinstance(current, (int, float)) and not isinstance(current, bool) else None
    st.number_input(
        _label(q),
        min_value=cast(lo) if lo is not None else None,
        max_value=cast(hi) if hi is not None else None,
        value=value,
        step=cast(1),
        key=_key(path),
        on_change=_on_widget_change,
        args=(path, "number"),
    )


def _render_text(q: Dict[str, Any], path: str, current: Any) -> None:
    input_type = q.get("inputType", "text")
    if input_type == "number":
        _render_number(q, path, current)
        return
    if input_type == "date":
        lo, hi = date_input_range(q)
        value = date.fromisoformat(current) if isinstance(current, str) and current else None
        if value is not None:
            value = min(max(value, lo), hi)
        st.date_input(
            _label(q),
            value=value,
            min_value=lo,
            max_value=hi,
            key=_key(path),
            on_change=_on_widget_change,
            args=(path, "date"),
        )
        return
    st.text_input(
        _label(q),
        value=current if isinstance(current, str) else "",
        key=_key(path),
        on_change=_on_widget_change,
        args=(path, "email" if input_type == "email" else "text"),
    )


def _render_file(q: Dict[str, Any], path: str) -> None:
    limit = int(q.get("maxSize") or DEFAULT_MAX_FILE_SIZE)
    st.file_uploader(
        _label(q),
        key=_key(path),
        help=f"Accepted: {q.get('acceptedTypes') or 'any'} • max {limit // 1024} KB",
        on_change=_on_file_change,
        args=(path,),
    )
    err = st.session_state.upload_errors.get(path)
    if err:
        st.error(err)
    preview = st.session_state.builder.file_previews.get(path)
    if not preview:
        return
    with st.container(border=True):
        if preview["type"] in {"image", "audio"}:
            raw = base64.b64decode(preview["base64Content"].split(",", 1)[1])
            icon = "📷 Image Preview" if preview["type"] == "image" else "🎵 Audio Preview"
            st.caption(f"{icon} • {preview['fileName']} ({preview['sizeText']})")
            if preview["type"] == "image":
                st.image(raw, width=300)
            else:
                st.audio(raw)
        else:
            st.markdown(f"{preview['icon']} **{preview['typeText']} Uploaded** ({preview['sizeText']})")
            st.caption(preview["fileName"])
            st.success("✅ File successfully uploaded")


def _render_question(
    q: Dict[str, Any],
    answers: Dict[str, Any],
    panel: Optional[Dict[str, Any]] = None,
    prefix: str = "",
) -> None:
    if not evaluate_condition(q.get("visibleIf"), answers, panel):
        return

    state = st.session_state.builder
    path = prefix + q["name"]
    current = get_answer(answers, path)
    kind = q.get("type")

    if not prefix and q["name"] in state.highlight:
        st.caption("🆕 Just added")

    if kind == "text":
        _render_text(q, path, current)

    elif kind == "radiogroup":
        choices = visible_choices(q, answers, panel)
        options = [c["value"] for c in choices]
        texts = {c["value"]: c["text"] for c in choices}
        st.radio(
            _label(q),
            options,
            index=options.index(current) if current in options else None,
            format_func=lambda v: str(texts.get(v, v)),
            key=_key(path),
            on_change=_on_widget_change,
            args=(path, "single"),
        )

    elif kind in {"checkbox", "ranking"}:
        options = [c["value"] for c in visible_choices(q, answers, panel)]
        label = _label(q) + (" (pick in order)" if kind == "ranking" else "")
        st.multiselect(
            label,
            options,
            default=[v for v in (current or []) if v in options],
            key=_key(path),
            on_change=_on_widget_change,
            args=(path, "ranking" if kind == "ranking" else "multi"),
        )

    elif kind == "rating":
        lo, hi, step = int(q.get("rateMin", 1)), int(q.get("rateMax", 5)), int(q.get("rateStep", 1))
        options = list(range(lo, hi + 1, step))
        st.radio(
            _label(q),
            options,
            index=options.index(current) if current in options else None,
            horizontal=True,
            key=_key(path),
            on_change=_on_widget_change,
            args=(path, "single"),
        )
        if q.get("minRateDescription") or q.get("maxRateDescription"):
            st.caption(f"{lo} = {q.get('minRateDescription', '')} • {hi} = {q.get('maxRateDescription', '')}")

    elif kind == "matrix":
        st.markdown(f"**{_label(q)}**")
        cols = q.get("columns") or []
        col_values = [c["value"] if isinstance(c, dict) else c for c in cols]
        col_text = {(c["value"] if isinstance(c, dict) else c): (c.get("text") if isinstance(c, dict) else c) for c in cols}
        row_values = current if isinstance(current, dict) else {}
        for row in q.get("rows") or []:
            rv = row["value"] if isinstance(row, dict) else row
            rt = row.get("text", rv) if isinstance(row, dict) else row
            st.radio(
                rt,
                col_values,
                index=col_values.index(row_values[rv]) if row_values.get(rv) in col_values else None,
                format_func=lambda v: str(col_text.get(v, v)),
                horizontal=True,
                key=_key(f"{path}::{rv}"),
                on_change=_on_matrix_change,
                args=(path, rv),
            )

    elif kind == "expression":
        if current is None:
            shown = "-"
        elif q.get("displayStyle") == "currency":
            shown = f"${current:,.2f}"
        else:
            shown = f"{current:g}"
        st.metric(q.get("title") or q["name"], shown)

    elif kind == "file":
        _render_file(q, path)

    elif kind == "panel":
        st.markdown(f"#### {q.get('title') or q['name']}")
        with st.container(border=True):
            for child in q.get("elements") or []:
                _render_question(child, answers, panel, prefix)

    elif kind == "paneldynamic":
        st.markdown(f"#### {q.get('title') or q['name']}")
        count = state.panel_counts.get(path, q.get("panelCount", 0))
        instances = current if isinstance(current, list) else []
        template_title = q.get("templateTitle") or "Panel #{panelIndex}"
        for i in range(count):
            inst = instances[i] if i < len(instances) and isinstance(instances[i], dict) else {}
            with st.container(border=True):
                st.markdown(f"**{template_title.replace('{panelIndex}', str(i + 1))}**")
                for child in q.get("templateElements") or []:
                    _render_question(child, answers, inst, f"{path}[{i}].")

    else:
        st.warning(f"Unsupported question type: {kind}")


def _seed_defaults() -> None:
    state = st.session_state.builder
    key, seeded = st.session_state.seeded_defaults
    if key != state.survey_key:
        seeded = set()
        st.session_state.seeded_defaults = (state.survey_key, seeded)
    new_state, applied = apply_default_values(state, skip=seeded)
    if applied:
        seeded.update(applied)
        st.session_state.builder = new_state


# -----------------------
# Sidebar: Config
# -----------------------
st.sidebar.header("Config")
st.sidebar.markdown(
    "- Pick bundles from the **Feature Pool**\n"
    "- Answer in the **Live Survey Preview**\n"
    "- **Complete** to submit, or **Export JSON** to download\n"
)
st.sidebar.caption(f"Export filename: `{EXPORT_FILE_NAME}`")
st.sidebar.caption(f"Default max upload: {DEFAULT_MAX_FILE_SIZE // 1048576}MB")

st.sidebar.subheader("Preview toggles (env)")
def env_toggle(label, env_key, default="1"):
    cur = os.getenv(env_key, default).strip().lower() in {"1", "true", "yes", "y"}
    val = st.sidebar.checkbox(label, value=cur)
    os.environ[env_key] = "1" if val else "0"
    return val

st.session_state.clear_hidden = env_toggle(
    "Clear answers of hidden questions", "CLEAR_INVISIBLE_VALUES", "1" if CLEAR_INVISIBLE_VALUES else "0"
)


# -----------------------
# Header
# -----------------------
state = st.session_state.builder
question_count = state.question_count

st.title("Survey Builder")
st.caption("Build XLS Form compatible surveys with advanced question types and logic")

notice = st.session_state.notice
if notice:
    level, msg = notice
    getattr(st, level)(msg)
    st.session_state.notice = None

h1, h2, h3 = st.columns([2, 1, 1])
with h1:
    st.markdown(f"**{question_count} question{'s' if question_count != 1 else ''} added**")
if question_count > 0:
    with h2:
        st.button("Clear Survey", on_click=_on_clear_requested, key="btn_clear_survey")
    with h3:
        st.download_button(
            label="Export JSON",
            data=export_json(state).encode("utf-8"),
            file_name=EXPORT_FILE_NAME,
            mime="application/json",
            key="btn_export_json",
        )

if st.session_state.confirm_clear:
    st.warning("Are you sure you want to clear all questions from the survey? This will also clear all answers.")
    c_yes, c_no, _ = st.columns([1, 1, 4])
    with c_yes:
        st.button("Yes, clear", type="primary", on_click=_on_clear_confirmed, key="btn_clear_yes")
    with c_no:
        st.button("Cancel", on_click=_on_clear_cancelled, key="btn_clear_no")

tab_builder, tab_advanced = st.tabs(["Builder", "Advanced"])

# -----------------------
# BUILDER TAB
# -----------------------
with tab_builder:
    pool_col, preview_col = st.columns([35, 65], gap="large")

    with pool_col:
        bundles = list_bundles()
        st.subheader("XLS Form Feature Pool")
        st.caption(f"Choose from {len(bundles)} XLS Form compatible question bundles")
        for bundle in bundles:
            with st.container(border=True):
                st.markdown(f"**{bundle.bundle_title}**")
                st.button("Add to Survey", key=f"add_{bundle.id}", on_click=_on_add_bundle, args=(bundle.id,))

    with preview_col:
        st.subheader("Live Survey Preview")
        if question_count == 0:
            if state.last_outcome == "submitted" and st.session_state.last_report is not None:
                st.success(f"Last response recorded: `{st.session_state.last_report.response_id}`")
            st.info("Add questions from the left panel to start building your survey")
            st.markdown("#### No Questions Added Yet")
        else:
            _seed_defaults()
            state = st.session_state.builder
            st.markdown(f"### {state.survey.get('title', '')}")
            st.caption(state.survey.get("description", ""))
            answers = state.answers
            for number, q in enumerate(state.elements, start=1):
                with st.container(border=True):
                    st.caption(f"Q{number}")
                    _render_question(q, answers)
            st.button("Complete", type="primary", on_click=_on_complete, key="btn_complete")

            # highlight only on the first render after an addition
            if state.highlight:
                st.session_state.builder = replace(state, highlight=[])

# -----------------------
# ADVANCED TAB
# -----------------------
with tab_advanced:
    st.subheader("Advanced (optional)")
    state = st.session_state.builder
    st.markdown("**Catalog overview**")
    st.dataframe(catalog_frame(), hide_index=True, width="stretch")

    st.markdown("**Survey outline**")
    st.code(neat_preview(state.survey), language="text")

    with st.expander("Answer data", expanded=False):
        st.json(state.answers)
    with st.expander("Build metadata (hidden)", expanded=False):
        st.json(state.metadata.to_dict())
    if st.session_state.last_report is not None:
        with st.expander("Last completion", expanded=False):
            st.code(st.session_state.last_report.summary, language="text")
            st.code(json.dumps(st.session_state.last_report.final_metadata, ensure_ascii=False, indent=2), language="json")

    if st.session_state.logs:
        st.markdown("**Recent logs**")
        st.code("\n\n".join(st.session_state.logs[-10:]), language="text")
