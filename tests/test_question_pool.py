"""
Tests for the question bundle library.

Tests verify that:
    - Every bundle parses and has a unique id
    - Field names are unique within a bundle
    - Consumers get copies, never the library templates
    - Malformed bundles are rejected with ValueError
"""

import pytest

from question_pool import (
    QUESTION_BUNDLES,
    Bundle,
    catalog_frame,
    get_bundle,
    list_bundles,
    validate_catalog,
)


def test_library_loads():
    """All bundles in the library validate."""
    bundles = list_bundles()
    assert len(bundles) == len(QUESTION_BUNDLES) == 18
    assert all(isinstance(b, Bundle) for b in bundles)


def test_bundle_ids_unique():
    """No two bundles share an id."""
    ids = [b.id for b in list_bundles()]
    assert len(ids) == len(set(ids))


def test_field_names_unique_within_bundle():
    """A bundle never repeats a top-level field name."""
    for b in list_bundles():
        names = b.field_names()
        assert len(names) == len(set(names)), b.id


def test_get_bundle_by_id():
    """Lookup returns the matching bundle with its alias fields populated."""
    b = get_bundle("bundle_age_v1")
    assert b.bundle_title
    assert b.field_names() == ["age"]
    assert b.field_types() == ["text"]


def test_get_unknown_bundle_raises():
    """Unknown ids raise KeyError."""
    with pytest.raises(KeyError):
        get_bundle("bundle_does_not_exist")


def test_consumers_get_copies():
    """Mutating a returned bundle does not touch the library."""
    b = get_bundle("bundle_choice_filter_v2")
    b.question_schemas[0]["title"] = "changed"
    b.question_schemas[1]["choices"].clear()

    fresh = get_bundle("bundle_choice_filter_v2")
    assert fresh.question_schemas[0]["title"] != "changed"
    assert len(fresh.question_schemas[1]["choices"]) == 6


def test_nested_repeat_bundle_shape():
    """The household bundle carries a dynamic sub-panel inside its template."""
    b = get_bundle("bundle_nested_repeat_v2")
    members = next(s for s in b.question_schemas if s["name"] == "household_members")
    sub = [t for t in members["templateElements"] if t["type"] == "paneldynamic"]
    assert [s["name"] for s in sub] == ["member_assets"]
    assert sub[0]["visibleIf"] == "{panel.asset_count} > 0"


class TestValidateCatalog:
    def _bundle(self, **overrides):
        raw = {
            "id": "b1",
            "bundleTitle": "Bundle",
            "questionSchemas": [{"type": "text", "name": "q1", "title": "Q1"}],
        }
        raw.update(overrides)
        return raw

    def test_accepts_minimal_bundle(self):
        """A single text question is a valid bundle."""
        (b,) = validate_catalog([self._bundle()])
        assert b.id == "b1"

    def test_rejects_duplicate_ids(self):
        """Two bundles with the same id are rejected."""
        with pytest.raises(ValueError, match="Duplicate bundle id"):
            validate_catalog([self._bundle(), self._bundle()])

    def test_rejects_repeated_field_name(self):
        """A bundle may not list the same field name twice."""
        schemas = [{"type": "text", "name": "q1"}, {"type": "rating", "name": "q1"}]
        with pytest.raises(ValueError, match="repeats a field name"):
            validate_catalog([self._bundle(questionSchemas=schemas)])

    def test_rejects_empty_bundle(self):
        """A bundle needs at least one question."""
        with pytest.raises(ValueError):
            validate_catalog([self._bundle(questionSchemas=[])])

    def test_rejects_unknown_field_type(self):
        """Field types outside the supported set fail validation."""
        with pytest.raises(ValueError):
            validate_catalog([self._bundle(questionSchemas=[{"type": "slider", "name": "q1"}])])

    def test_rejects_nameless_template_field(self):
        """Fields nested in a dynamic panel template are validated too."""
        schemas = [{"type": "paneldynamic", "name": "p", "templateElements": [{"type": "text", "name": ""}]}]
        with pytest.raises(ValueError):
            validate_catalog([self._bundle(questionSchemas=schemas)])


def test_catalog_frame():
    """The overview frame has one row per bundle."""
    df = catalog_frame()
    assert list(df.columns) == ["id", "title", "questions", "types"]
    assert len(df) == 18
    row = df[df["id"] == "bundle_calculations_v1"].iloc[0]
    assert row["questions"] == 5
    assert row["types"] == "expression, text"
