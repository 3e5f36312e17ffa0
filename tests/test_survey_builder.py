"""
Tests for the survey document state.

Tests verify that:
    - Bundles merge into the single page without duplicate names
    - Build metadata keeps running totals and ordered history
    - Completion and clear reset the document and bump the renderer key
    - Export carries the survey plus metadata
"""

import json
import random
import re
from datetime import datetime, timedelta, timezone

import pytest

from question_pool import get_bundle
from survey_builder import (
    add_questions_to_survey,
    clear_survey,
    complete_survey,
    export_json,
    export_survey,
    find_field,
    neat_preview,
    new_builder_state,
    record_answers,
    summarize_answers,
)

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def state():
    return new_builder_state(clock=lambda: T0)


def add_bundle(state, bundle_id, when=T0):
    b = get_bundle(bundle_id)
    return add_questions_to_survey(state, b.question_schemas, bundle_id=b.id, clock=lambda: when)


def test_initial_state(state):
    """A new state has an empty single-page survey and fresh metadata."""
    assert state.question_count == 0
    assert state.survey["pages"][0]["name"] == "page1"
    assert state.answers == {}
    assert state.survey_key == 0
    assert state.status == "building"
    assert state.last_outcome is None
    assert state.metadata.created_at == "2024-05-01T12:00:00.000Z"
    assert state.metadata.total_bundles_added == 0
    assert state.metadata.last_modified is None


class TestAddQuestions:
    def test_add_bundle(self, state):
        """Adding a bundle appends its questions in order."""
        new_state, result = add_bundle(state, "bundle_skip_logic_v1")
        names = [el["name"] for el in new_state.elements]
        assert names == get_bundle("bundle_skip_logic_v1").field_names()
        assert result.added == names
        assert result.duplicates == []
        assert result.message == "Added 6 question(s) to the survey."
        assert new_state.highlight == names

    def test_same_bundle_twice_is_noop(self, state):
        """Re-adding a bundle leaves the state untouched and reports duplicates."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s2, result = add_bundle(s1, "bundle_age_v1")
        assert s2 is s1
        assert not result.changed
        assert result.duplicates == ["age"]
        assert result.message.startswith("This feature (or all of its questions) is already in the survey.")
        assert "Duplicate questions: age" in result.message
        assert s2.metadata.total_bundles_added == 1

    def test_partial_duplicates(self, state):
        """Only the new names are added when some already exist."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        schemas = [{"type": "text", "name": "age"}, {"type": "text", "name": "nickname"}]
        s2, result = add_questions_to_survey(s1, schemas, clock=lambda: T0)
        assert [el["name"] for el in s2.elements] == ["age", "nickname"]
        assert result.added == ["nickname"]
        assert result.message == "Added 1 new questions. Skipped duplicates: age"

    def test_empty_list(self, state):
        """Nothing to add is reported without touching the state."""
        s1, result = add_questions_to_survey(state, [])
        assert s1 is state
        assert result.message == "No questions to add."

    def test_names_stay_unique(self, state):
        """Top-level names remain unique after many additions."""
        s = state
        for bid in ["bundle_age_v1", "bundle_email_v1", "bundle_age_v1", "bundle_constraints_v1", "bundle_email_v1"]:
            s, _ = add_bundle(s, bid)
        names = [el["name"] for el in s.elements]
        assert len(names) == len(set(names))

    def test_answers_and_key_preserved(self, state):
        """Adding questions keeps existing answers and the renderer key."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s1 = record_answers(s1, {"age": 30})
        s2, _ = add_bundle(s1, "bundle_email_v1")
        assert s2.answers == {"age": 30}
        assert s2.survey_key == s1.survey_key

    def test_document_is_a_copy(self, state):
        """The survey never shares objects with the schemas it was built from."""
        b = get_bundle("bundle_choice_filter_v2")
        s1, _ = add_questions_to_survey(state, b.question_schemas, clock=lambda: T0)
        b.question_schemas[0]["title"] = "mutated"
        assert find_field(s1.survey, "country")["title"] != "mutated"

    def test_previous_state_not_mutated(self, state):
        """The old state's element list is left as it was."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        add_bundle(s1, "bundle_email_v1")
        assert [el["name"] for el in s1.elements] == ["age"]

    def test_dynamic_panel_defaults(self, state):
        """Dynamic panels get panelCount and add/remove flags when missing."""
        schemas = [{"type": "paneldynamic", "name": "p", "templateElements": [{"type": "text", "name": "x"}]}]
        s1, _ = add_questions_to_survey(state, schemas, clock=lambda: T0)
        p = find_field(s1.survey, "p")
        assert p["panelCount"] == 0
        assert p["allowAddPanel"] is True
        assert p["allowRemovePanel"] is True

    def test_dynamic_panel_keeps_explicit_flags(self, state):
        """Flags already present on a bundle's panel are kept."""
        s1, _ = add_bundle(state, "bundle_simple_repeat_v2")
        p = find_field(s1.survey, "children_details")
        assert p["allowAddPanel"] is False
        assert p["maxPanelCount"] == 10


class TestMetadata:
    def test_history_and_log(self, state):
        """Each successful addition appends a history entry and per-question log lines."""
        t1, t2 = T0 + timedelta(seconds=5), T0 + timedelta(seconds=9)
        s1, _ = add_bundle(state, "bundle_age_v1", when=t1)
        s2, _ = add_bundle(s1, "bundle_email_v1", when=t2)
        md = s2.metadata
        assert md.total_bundles_added == 2
        assert [h["bundleId"] for h in md.bundle_history] == ["bundle_age_v1", "bundle_email_v1"]
        assert md.bundle_history[1]["questionsAdded"] == ["has_email", "email_address"]
        assert md.bundle_history[1]["questionCount"] == 2
        assert md.bundle_history[1]["totalQuestionsInSurvey"] == 3
        assert [e["bundleNumber"] for e in md.question_addition_log] == [1, 2, 2]
        assert md.last_modified == "2024-05-01T12:00:09.000Z"

    def test_last_modified_monotonic(self, state):
        """A clock that goes backwards never moves lastModified back."""
        s1, _ = add_bundle(state, "bundle_age_v1", when=T0 + timedelta(seconds=10))
        s2, _ = add_bundle(s1, "bundle_email_v1", when=T0 + timedelta(seconds=3))
        assert s2.metadata.last_modified == s1.metadata.last_modified
        stamps = [h["timestamp"] for h in s2.metadata.bundle_history]
        assert stamps == sorted(stamps)

    def test_to_dict_keys(self, state):
        """Metadata serializes with camelCase keys."""
        d = state.metadata.to_dict()
        assert set(d) == {
            "createdAt",
            "lastModified",
            "totalBundlesAdded",
            "bundleHistory",
            "questionAdditionLog",
            "surveyBuildDuration",
            "startBuildTime",
        }


class TestComplete:
    def test_complete_resets(self, state):
        """Completion empties the survey and bumps the renderer key."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s1 = record_answers(s1, {"age": 42})
        done = T0 + timedelta(minutes=2)
        s2, report = complete_survey(s1, clock=lambda: done, rng=random.Random(7))
        assert s2.question_count == 0
        assert s2.answers == {}
        assert s2.survey_key == s1.survey_key + 1
        assert s2.status == "building"
        assert s2.last_outcome == "submitted"
        assert s2.metadata.total_bundles_added == 0
        assert s2.metadata.created_at == "2024-05-01T12:02:00.000Z"

        md = report.final_metadata
        assert md["finalQuestionCount"] == 1
        assert md["responseCount"] == 1
        assert md["surveyBuildDuration"] == 120000
        assert md["completedAt"] == "2024-05-01T12:02:00.000Z"
        assert md["completionData"]["userResponses"] == {"age": 42}
        assert md["completionData"]["surveyVersion"] == "1.0"
        assert re.fullmatch(r"resp_\d+_[0-9a-z]{9}", report.response_id)
        assert md["completionData"]["responseId"] == report.response_id

    def test_summary_lists_answers(self):
        """The summary has one line per answer, JSON for structured values."""
        text = summarize_answers({"age": 42, "equipment": ["Laptop", "Phone"]})
        assert text.startswith("Survey completed successfully!")
        assert "age: 42" in text
        assert 'equipment: ["Laptop", "Phone"]' in text

    def test_summary_scalar_formatting(self):
        """Booleans print as true/false, whole-number floats without a decimal part."""
        text = summarize_answers({"consent": True, "total": 120.0, "tax": 9.6, "name": "Ann", "note": None})
        assert "consent: true" in text
        assert "total: 120\n" in text
        assert "tax: 9.6" in text
        assert "name: Ann" in text
        assert "note: null" in text

    def test_next_addition_after_complete(self, state):
        """A bundle added after completion keeps the builder in building."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s2, _ = complete_survey(s1, clock=lambda: T0)
        s3, _ = add_bundle(s2, "bundle_age_v1")
        assert s3.status == "building"
        assert [el["name"] for el in s3.elements] == ["age"]

    def test_explicit_answers_override(self, state):
        """Answers passed in take precedence over the stored ones."""
        s1 = record_answers(state, {"a": 1})
        _, report = complete_survey(s1, answers={"b": 2}, clock=lambda: T0)
        assert report.final_metadata["completionData"]["userResponses"] == {"b": 2}


class TestClear:
    def test_clear_empty(self, state):
        """Clearing an empty survey is a no-op."""
        s1, msg = clear_survey(state, confirmed=True)
        assert s1 is state
        assert msg == "Survey is already empty."

    def test_clear_cancelled(self, state):
        """Declining the confirmation keeps everything."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s2, msg = clear_survey(s1, confirmed=False)
        assert s2 is s1
        assert msg == "Clear cancelled."

    def test_clear_confirmed(self, state):
        """A confirmed clear resets the document, answers and metadata."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        s1 = record_answers(s1, {"age": 20})
        s2, msg = clear_survey(s1, confirmed=True, clock=lambda: T0 + timedelta(hours=1))
        assert msg == "Survey cleared."
        assert s2.question_count == 0
        assert s2.answers == {}
        assert s2.status == "building"
        assert s2.last_outcome == "cleared"
        assert s2.survey_key == s1.survey_key + 1
        assert s2.metadata.bundle_history == []


class TestExport:
    def test_export_payload(self, state):
        """Export carries the survey and metadata with an export timestamp."""
        s1, _ = add_bundle(state, "bundle_age_v1")
        payload = export_survey(s1, clock=lambda: T0 + timedelta(seconds=30))
        assert payload["survey"] == s1.survey
        assert payload["survey"] is not s1.survey
        assert payload["metadata"]["exportedAt"] == "2024-05-01T12:00:30.000Z"
        assert payload["metadata"]["exportVersion"] == "1.0"
        assert payload["metadata"]["totalBundlesAdded"] == 1

    def test_export_json_parses(self, state):
        """The JSON export round-trips through json.loads."""
        s1, _ = add_bundle(state, "bundle_matrix_v1")
        data = json.loads(export_json(s1, clock=lambda: T0))
        assert data["survey"]["pages"][0]["elements"][0]["name"] == "service_ratings"


def test_neat_preview(state):
    """The outline lists every field, nested template fields and conditions included."""
    s1, _ = add_bundle(state, "bundle_nested_repeat_v2")
    text = neat_preview(s1.survey)
    assert "- household_size [text] *" in text
    assert "member_assets [paneldynamic]" in text
    assert "visibleIf={panel.asset_count} > 0" in text
    assert "visibleIf" not in neat_preview(s1.survey, show_conditions=False)
