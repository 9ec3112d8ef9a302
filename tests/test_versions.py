import pytest

from GridFlow.versions import (
    CURRENT_VERSION,
    detect_version,
    fingerprint,
    has_unknown_version,
    normalize_version_tag,
    version_index,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ({"exportFormat": "dexie", "entities": {}}, "7.0"),
        ({"entities": {}, "entityPositions": []}, "7.0"),
        ({"exportFormat": "indexeddb", "entities": {}}, "6.0"),
        ({"entities": {"task_1": {"id": "task_1", "type": "task"}}, "boards": {}}, "5.0"),
        ({"entities": {"tasks": {"1": {"title": "a"}}, "notes": {}}}, "4.0"),
        ({"boards": {}, "relationships": {"entityTags": {}}}, "4.0"),
        ({"boards": {}, "weeklyPlans": {}}, "3.0"),
        ({"boards": {"default": {}}, "templates": []}, "2.0"),
        ({"templates": []}, "2.0"),
        ({"groups": [], "rows": [], "columns": []}, "1.0"),
        ({"rows": []}, "1.0"),
    ],
)
def test_fingerprint_newest_first(raw, expected):
    assert fingerprint(raw) == expected


def test_unrecognized_shapes_are_treated_as_current():
    assert fingerprint({"something": "else"}) == CURRENT_VERSION
    assert fingerprint([1, 2, 3]) == CURRENT_VERSION
    assert fingerprint(None) == CURRENT_VERSION


def test_explicit_known_version_is_trusted():
    # Shape says 1.0 but the tag wins
    assert detect_version({"version": "3.0", "rows": []}) == "3.0"
    assert detect_version({"version": 5, "rows": []}) == "5.0"
    assert detect_version({"version": 4.0}) == "4.0"


def test_unknown_version_falls_back_to_fingerprint():
    raw = {"version": "9.9", "rows": []}
    assert has_unknown_version(raw)
    assert detect_version(raw) == "1.0"
    assert not has_unknown_version({"rows": []})


def test_two_point_five_is_an_alias():
    assert normalize_version_tag("2.5") == "2.0"
    assert detect_version({"version": "2.5", "boards": {}}) == "2.0"
    assert version_index("2.5") == version_index("2.0")


def test_normalize_rejects_non_tags():
    assert normalize_version_tag(True) is None
    assert normalize_version_tag("latest") is None
    assert normalize_version_tag("7") == "7.0"
