"""
Tests for the Streamlit app, driven through streamlit's AppTest harness.

Tests verify that:
    - Date questions accept dates far enough back for a date of birth
    - The export filename is fixed, not editable
    - Default-value bookkeeping only keeps the live renderer's entry
"""

from datetime import date
from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

APP_PATH = str(Path(__file__).resolve().parent.parent / "app_streamlit.py")


@pytest.fixture
def app():
    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.run()
    assert not at.exception
    return at


def add(at, bundle_id):
    at.button(key=f"add_{bundle_id}").click().run()
    assert not at.exception
    return at


def test_date_of_birth_range(app):
    """The birth date picker reaches back to 1950 and stops at today."""
    add(app, "bundle_grouped_questions_v1")
    dob = app.date_input(key="sv0::date_of_birth")
    assert dob.min <= date(1950, 1, 1)
    assert dob.max <= date.today()


def test_export_filename_is_fixed(app):
    """No sidebar input lets the user rename the export."""
    add(app, "bundle_age_v1")
    assert "Output filename" not in [t.label for t in app.sidebar.text_input]


def test_seeded_defaults_track_live_survey(app):
    """After a clear, default bookkeeping refers to the new renderer only."""
    add(app, "bundle_defaults_v1")
    key, names = app.session_state["seeded_defaults"]
    assert key == 0
    assert "country_of_residence" in names

    app.button(key="btn_clear_survey").click().run()
    app.button(key="btn_clear_yes").click().run()
    add(app, "bundle_defaults_v1")

    key, _ = app.session_state["seeded_defaults"]
    assert key == 1
    assert app.session_state["builder"].answers["country_of_residence"] == "Canada"
