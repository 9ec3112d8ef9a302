from hypothesis import given, settings
from hypothesis import strategies as st

from GridFlow.ids import SequentialIdGenerator
from GridFlow.migration import MigrationContext, migrate
from GridFlow.versions import CURRENT_VERSION

NOW = "2024-01-01T00:00:00+00:00"

keys = st.sampled_from(["todo", "inprogress", "done", "ghost"])
titles = st.text(min_size=0, max_size=12)
scalars = st.none() | st.booleans() | st.integers(-5, 5) | st.text(max_size=6)

cards = st.fixed_dictionaries(
    {"title": titles},
    optional={
        "id": st.integers(0, 5),
        "type": st.sampled_from(["task", "note", "checklist", "bogus"]),
        "completed": st.booleans(),
        "subtasks": st.lists(st.fixed_dictionaries({"text": titles}), max_size=2),
        "checklist": st.lists(st.fixed_dictionaries({"text": titles}), max_size=2),
    },
)

rows = st.lists(
    st.fixed_dictionaries(
        {"id": st.integers(0, 4)},
        optional={"cards": st.dictionaries(keys, st.lists(cards | st.integers(0, 3), max_size=3), max_size=3)},
    ),
    max_size=3,
)

v1_snapshots = st.fixed_dictionaries(
    {"rows": rows},
    optional={
        "groups": st.lists(st.fixed_dictionaries({"id": st.integers(0, 3)}), max_size=2),
        "columns": st.lists(st.fixed_dictionaries({"id": st.integers(0, 3), "key": keys}), max_size=3),
        "settings": st.dictionaries(st.text(max_size=4), scalars, max_size=2),
    },
)

loose_snapshots = st.dictionaries(
    st.sampled_from(
        [
            "version",
            "boards",
            "entities",
            "weeklyPlans",
            "relationships",
            "people",
            "tags",
            "entityPositions",
            "exportFormat",
            "templates",
            "rows",
        ]
    ),
    scalars | st.lists(scalars, max_size=2) | st.dictionaries(st.text(max_size=3), scalars, max_size=2),
    max_size=5,
)


def _run(raw):
    ctx = MigrationContext(ids=SequentialIdGenerator(), clock=lambda: NOW)
    return migrate(raw, context=ctx)


@settings(max_examples=75, deadline=None)
@given(v1_snapshots)
def test_migrate_is_idempotent_for_legacy_boards(raw):
    once = _run(raw)
    assert once["version"] == CURRENT_VERSION
    assert _run(once) == once


@settings(max_examples=75, deadline=None)
@given(loose_snapshots)
def test_migrate_is_total_and_idempotent_for_arbitrary_shapes(raw):
    # Transforms must degrade, never raise
    once = _run(raw)
    assert isinstance(once["entities"], dict)
    assert isinstance(once["entityPositions"], list)
    assert _run(once) == once


@settings(max_examples=50, deadline=None)
@given(v1_snapshots)
def test_positions_reference_migrated_entities(raw):
    out = _run(raw)
    for pos in out["entityPositions"]:
        assert pos["entityId"] in out["entities"]
        assert pos["boardId"] in out["boards"]
