from GridFlow.metrics import (
    IMPORT_DURATION_BUCKETS_MS,
    get_counter,
    get_counters,
    inc_counter,
    observe_histogram,
    reset_counters,
)


def test_counters_accumulate_and_reset():
    inc_counter("importer.started")
    inc_counter("importer.warnings", 3)
    assert get_counter("importer.started") == 1
    assert get_counter("importer.warnings") == 3
    assert get_counter("never.touched") == 0

    reset_counters()
    assert get_counters() == {}


def test_import_durations_use_the_default_buckets():
    observe_histogram("importer.duration_ms", 7)
    observe_histogram("importer.duration_ms", 300)
    observe_histogram("importer.duration_ms", 60_000)

    c = get_counters()
    assert c["histo.importer.duration_ms.le_10"] == 1
    assert c["histo.importer.duration_ms.le_500"] == 1
    assert c[f"histo.importer.duration_ms.gt_{IMPORT_DURATION_BUCKETS_MS[-1]}"] == 1
    assert c["histo.importer.duration_ms.sum"] == 60_307
    assert c["histo.importer.duration_ms.count"] == 3


def test_custom_buckets_are_fixed_by_the_first_observation():
    observe_histogram("store.open_ms", 3, buckets=[1, 5])
    observe_histogram("store.open_ms", 4, buckets=[100])
    assert get_counters()["histo.store.open_ms.le_5"] == 2
