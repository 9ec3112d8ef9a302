from datetime import datetime

from hypothesis import given
from hypothesis import strategies as st

from GridFlow.config import Settings
from GridFlow.ids import (
    SequentialIdGenerator,
    UlidIdGenerator,
    generate_ulid,
    is_ulid,
    make_id_generator,
    utc_now_iso,
)


def test_sequential_ids_are_per_prefix():
    ids = SequentialIdGenerator()
    assert [ids.next_id("task"), ids.next_id("task"), ids.next_id("note")] == [
        "task_1",
        "task_2",
        "note_1",
    ]
    assert ids.counters() == {"task": 2, "note": 1}


def test_reserve_skips_past_used_ids():
    ids = SequentialIdGenerator({"task": 2})
    ids.reserve("task_10")
    ids.reserve("task_3")
    ids.reserve("not-sequential")
    assert ids.next_id("task") == "task_11"


def test_bad_persisted_counters_are_ignored():
    ids = SequentialIdGenerator({"task": "x", "note": -4})
    assert ids.next_id("task") == "task_1"
    assert ids.next_id("note") == "note_1"


@given(st.lists(st.integers(min_value=1, max_value=10_000), max_size=20))
def test_next_id_never_returns_a_reserved_id(used):
    ids = SequentialIdGenerator()
    for n in used:
        ids.reserve(f"task_{n}")
    fresh = ids.next_id("task")
    assert fresh not in {f"task_{n}" for n in used}


def test_ulid_shape_and_ordering():
    a = generate_ulid(1_700_000_000_000)
    b = generate_ulid(1_700_000_000_001)
    assert is_ulid(a) and is_ulid(b)
    assert a[:10] < b[:10]
    assert not is_ulid("task_1")


def test_ulid_generator_prefixes_and_has_no_counters():
    ids = UlidIdGenerator()
    new = ids.next_id("task")
    assert new.startswith("task_") and is_ulid(new.split("_", 1)[1])
    assert ids.counters() == {}


def test_make_id_generator_follows_settings():
    assert isinstance(make_id_generator(Settings(id_strategy="ulid")), UlidIdGenerator)
    seq = make_id_generator(Settings(), {"task": 5})
    assert seq.next_id("task") == "task_6"


def test_utc_now_iso_is_timezone_aware():
    assert datetime.fromisoformat(utc_now_iso()).tzinfo is not None
