"""Unit tests for the field-level snapshot diff."""

from __future__ import annotations

import json

from services.state.audit_trail.diff import (
    ABSENT,
    FieldChange,
    FieldDiff,
    apply_diff,
    compute_diff,
)


def test_identical_snapshots_produce_empty_diff() -> None:
    snapshot = {"id": 1, "name": "Ada", "tags": ["a", "b"], "meta": {"x": 1, "y": 2}}

    diff = compute_diff(snapshot, dict(snapshot))

    assert diff.is_empty
    assert len(diff) == 0


def test_changed_added_and_removed_fields_are_reported() -> None:
    diff = compute_diff(
        {"id": 1, "name": "Ada", "phone": "555"},
        {"id": 1, "name": "Grace", "email": "g@example.com"},
    )

    assert list(diff) == ["email", "name", "phone"]
    assert diff["name"] == FieldChange(old="Ada", new="Grace")
    assert diff["email"].added
    assert diff["email"].old is ABSENT
    assert diff["phone"].removed
    assert diff["phone"].new is ABSENT


def test_null_and_absent_are_distinct() -> None:
    diff = compute_diff({"phone": None}, {})

    assert diff["phone"].old is None
    assert diff["phone"].new is ABSENT
    assert diff.to_json() == {"phone": {"old": None}}


def test_no_type_coercion_between_equal_looking_values() -> None:
    diff = compute_diff(
        {"a": 5, "b": 1, "c": "5", "d": 0},
        {"a": 5.0, "b": True, "c": 5, "d": False},
    )

    assert set(diff) == {"a", "b", "c", "d"}


def test_nested_mappings_compare_independently_of_key_order() -> None:
    diff = compute_diff({"meta": {"x": 1, "y": 2}}, {"meta": {"y": 2, "x": 1}})

    assert diff.is_empty


def test_nested_mappings_with_mixed_key_types_are_compared() -> None:
    old = {"id": 1, "meta": {1: "a", "b": 2}}

    diff = compute_diff(old, {"id": 1, "meta": {1: "a", "b": 3}})

    assert list(diff) == ["meta"]
    assert diff["meta"].old == {1: "a", "b": 2}
    assert compute_diff(old, {"id": 1, "meta": {"b": 2, 1: "a"}}).is_empty


def test_arrays_compare_in_order() -> None:
    diff = compute_diff({"tags": ["a", "b"]}, {"tags": ["b", "a"]})

    assert diff["tags"] == FieldChange(old=["a", "b"], new=["b", "a"])


def test_none_snapshot_is_treated_as_empty() -> None:
    diff = compute_diff(None, {"id": 1})

    assert diff["id"].added
    assert compute_diff(None, None).is_empty


def test_apply_diff_reconstructs_new_snapshot() -> None:
    old = {"id": 7, "name": "Ada", "phone": "555", "meta": {"vip": True}}
    new = {"id": 7, "name": "Ada L.", "email": "ada@example.com", "meta": {"vip": False}}

    diff = compute_diff(old, new)

    assert apply_diff(old, diff) == new
    assert old["meta"] == {"vip": True}


def test_diff_values_are_copies() -> None:
    new = {"tags": ["a"]}
    diff = compute_diff({}, new)

    new["tags"].append("b")

    assert diff["tags"].new == ["a"]


def test_json_form_round_trips_through_text() -> None:
    diff = compute_diff({"a": 1, "b": None}, {"a": 2, "c": [1, 2]})

    restored = FieldDiff.from_json(json.loads(json.dumps(diff.to_json())))

    assert restored.to_json() == diff.to_json()
    assert restored["c"].old is ABSENT
    assert restored["b"].new is ABSENT
    assert restored["b"].old is None


def test_redacted_replaces_only_prior_values() -> None:
    diff = compute_diff(
        {"name": "Ada", "tier": "gold"},
        {"name": "ANONYMIZED", "tier": "silver", "email": "x@invalid"},
    )

    hidden = diff.redacted(["name", "email"], "[redacted]")

    assert hidden["name"] == FieldChange(old="[redacted]", new="ANONYMIZED")
    assert hidden["email"].old is ABSENT
    assert hidden["tier"] == diff["tier"]
