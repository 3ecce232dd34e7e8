"""
Unit tests for services.common.transform module.

Tests:
- parse_feed_timestamp() accepted layouts
- derive_uptime() policy
- transform_entry() field mapping, defaults and discards
- transform_entries() post-filter and ordering
- sort_records(), chunk_records() and the record filters
- summarize_records()
"""

import pytest

from derepute.services.common.configs import UptimeConfig
from derepute.services.common.transform import (
    SORT_FIELDS,
    chunk_records,
    derive_uptime,
    filter_by_flags,
    filter_by_min_weight,
    is_storable,
    parse_feed_timestamp,
    sort_records,
    summarize_records,
    transform_entries,
    transform_entry,
)
from tests.conftest import NOW, make_entry, make_record


# ============================================================================
# Field Parsing Tests
# ============================================================================


class TestParseFeedTimestamp:
    def test_onionoo_layout(self) -> None:
        assert parse_feed_timestamp("2023-11-14 22:00:00") == NOW - 800

    def test_iso_with_offset(self) -> None:
        assert parse_feed_timestamp("2023-11-14T23:00:00+01:00") == NOW - 800

    def test_numeric(self) -> None:
        assert parse_feed_timestamp(1234) == 1234
        assert parse_feed_timestamp(12.9) == 12

    @pytest.mark.parametrize("value", [None, "", "  ", "yesterday", True, float("nan"), []])
    def test_unparseable(self, value: object) -> None:
        assert parse_feed_timestamp(value) is None


class TestDeriveUptime:
    def test_from_fraction(self) -> None:
        entry = {"consensus_weight_fraction": 0.015625}
        assert derive_uptime(entry, True, UptimeConfig()) == 781

    def test_fraction_clamped(self) -> None:
        assert derive_uptime({"consensus_weight_fraction": 0.5}, True, UptimeConfig()) == 1000

    def test_running_default(self) -> None:
        assert derive_uptime({}, True, UptimeConfig(running_default=850)) == 850

    def test_not_running(self) -> None:
        assert derive_uptime({}, False, UptimeConfig()) == 0

    def test_custom_multiplier(self) -> None:
        policy = UptimeConfig(fraction_multiplier=1000)
        assert derive_uptime({"consensus_weight_fraction": 0.5}, False, policy) == 500

    def test_oversized_fraction_saturates(self) -> None:
        assert derive_uptime({"consensus_weight_fraction": 1e305}, True, UptimeConfig()) == 1000

    def test_negative_fraction_floors_at_zero(self) -> None:
        assert derive_uptime({"consensus_weight_fraction": -1e305}, True, UptimeConfig()) == 0


# ============================================================================
# transform_entry Tests
# ============================================================================


class TestTransformEntry:
    def test_full_entry(self) -> None:
        record = transform_entry(make_entry(consensus_weight_fraction=0.015625), now=NOW)
        assert record is not None
        assert record.fingerprint == "A" * 40
        assert record.nickname == "relay"
        assert record.flags == ("Fast", "Guard", "Running")
        assert record.uptime == 781
        assert record.bandwidth == 1_500_000
        assert record.consensus_weight == 1000
        assert record.country == "DE"
        assert record.as_number == "AS3320"
        assert record.last_seen == NOW - 800
        assert record.running is True

    def test_short_keys(self) -> None:
        entry = {"f": "b" * 40, "n": "short", "r": False, "t": "2023-11-14 22:00:00"}
        record = transform_entry(entry, now=NOW)
        assert record is not None
        assert record.fingerprint == "B" * 40
        assert record.nickname == "short"
        assert record.running is False
        assert record.last_seen == NOW - 800

    def test_defaults_for_missing_fields(self) -> None:
        record = transform_entry({"fingerprint": "c" * 40}, now=NOW)
        assert record is not None
        assert record.nickname == "Unknown"
        assert record.flags == ()
        assert record.uptime == 0
        assert record.bandwidth == 0
        assert record.country == "??"
        assert record.as_number == "AS0"
        assert record.last_seen == NOW
        assert record.running is False

    def test_advertised_bandwidth_fallback(self) -> None:
        entry = make_entry()
        del entry["measured_bandwidth"]
        record = transform_entry(entry, now=NOW)
        assert record is not None
        assert record.bandwidth == 2_000_000

    def test_numeric_as_prefixed(self) -> None:
        record = transform_entry(make_entry(**{"as": 3320}), now=NOW)
        assert record is not None
        assert record.as_number == "AS3320"

    def test_future_last_seen_clamped(self) -> None:
        record = transform_entry(make_entry(last_seen="2030-01-01 00:00:00"), now=NOW)
        assert record is not None
        assert record.last_seen == NOW

    def test_negative_counters_zeroed(self) -> None:
        record = transform_entry(make_entry(consensus_weight=-5), now=NOW)
        assert record is not None
        assert record.consensus_weight == 0

    def test_non_string_flags_dropped(self) -> None:
        record = transform_entry(make_entry(flags=["Fast", 3, None]), now=NOW)
        assert record is not None
        assert record.flags == ("Fast",)

    @pytest.mark.parametrize(
        "fingerprint", [None, "", "a" * 39, "a" * 41, "g" * 40, 12345]
    )
    def test_invalid_fingerprint_discarded(self, fingerprint: object) -> None:
        assert transform_entry(make_entry(fingerprint=fingerprint), now=NOW) is None

    def test_not_a_mapping(self) -> None:
        assert transform_entry(["not", "a", "dict"], now=NOW) is None

    def test_null_byte_discarded(self) -> None:
        assert transform_entry(make_entry(nickname="bad\x00"), now=NOW) is None

    def test_bad_country_still_built(self) -> None:
        record = transform_entry(make_entry(country="deu"), now=NOW)
        assert record is not None
        assert not is_storable(record, NOW)

    def test_oversized_fraction_saturates_uptime(self) -> None:
        record = transform_entry(make_entry(consensus_weight_fraction=1e305), now=NOW)
        assert record is not None
        assert record.uptime == 1000


# ============================================================================
# transform_entries Tests
# ============================================================================


class TestTransformEntries:
    def test_filters_unstorable(self) -> None:
        entries = [
            make_entry("a" * 40),
            make_entry("bad"),
            make_entry("c" * 40, country="deu"),
            "garbage",
            make_entry("d" * 40),
        ]
        records = transform_entries(entries, now=NOW)
        assert [r.fingerprint[0] for r in records] == ["A", "D"]
        assert all(is_storable(r, NOW) for r in records)

    def test_feed_order_kept_without_sort(self) -> None:
        entries = [make_entry(c * 40, consensus_weight=w) for c, w in zip("abc", (1, 3, 2))]
        records = transform_entries(entries, now=NOW)
        assert [r.fingerprint[0] for r in records] == ["A", "B", "C"]

    def test_sorted_descending(self) -> None:
        entries = [make_entry(c * 40, consensus_weight=w) for c, w in zip("abc", (1, 3, 2))]
        records = transform_entries(entries, now=NOW, sort_by="consensus_weight")
        assert [r.consensus_weight for r in records] == [3, 2, 1]

    def test_invalid_sort_field(self) -> None:
        with pytest.raises(ValueError, match="cannot sort"):
            transform_entries([], now=NOW, sort_by="flags")

    def test_empty(self) -> None:
        assert transform_entries([], now=NOW) == []

    def test_oversized_fraction_does_not_abort_batch(self) -> None:
        entries = [make_entry("a" * 40, consensus_weight_fraction=1e305), make_entry("b" * 40)]
        records = transform_entries(entries, now=NOW)
        assert [r.fingerprint[0] for r in records] == ["A", "B"]
        assert records[0].uptime == 1000
        assert records[1].uptime == 500


# ============================================================================
# Ordering and Chunking Tests
# ============================================================================


class TestSortRecords:
    def test_stable_for_equal_keys(self) -> None:
        records = [make_record(c * 40, uptime=u) for c, u in zip("ABCD", (5, 9, 5, 9))]
        result = sort_records(records, "uptime", descending=True)
        assert [r.fingerprint[0] for r in result] == ["B", "D", "A", "C"]

    def test_ascending(self) -> None:
        records = [make_record(c * 40, nickname=n) for c, n in zip("AB", ("zed", "amy"))]
        assert [r.nickname for r in sort_records(records, "nickname", descending=False)] == [
            "amy",
            "zed",
        ]

    def test_unknown_field(self) -> None:
        with pytest.raises(ValueError):
            sort_records([], "bogus")

    def test_sort_fields(self) -> None:
        assert {"uptime", "bandwidth", "consensus_weight", "nickname"} <= SORT_FIELDS
        assert "flags" not in SORT_FIELDS


class TestChunkRecords:
    def test_last_chunk_shorter(self) -> None:
        records = [make_record(c * 40) for c in "ABCDE"]
        chunks = chunk_records(records, 2)
        assert [len(c) for c in chunks] == [2, 2, 1]
        assert [r for c in chunks for r in c] == records

    def test_empty(self) -> None:
        assert chunk_records([], 50) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            chunk_records([make_record()], 0)


class TestFilters:
    def test_min_weight(self) -> None:
        records = [make_record(c * 40, consensus_weight=w) for c, w in zip("ABC", (10, 50, 100))]
        assert [r.consensus_weight for r in filter_by_min_weight(records, 50)] == [50, 100]

    def test_flags(self) -> None:
        records = [
            make_record("A" * 40, flags=("Guard", "Exit")),
            make_record("B" * 40, flags=("Guard",)),
            make_record("C" * 40, flags=("Exit",)),
        ]
        assert [r.fingerprint[0] for r in filter_by_flags(records, ["Guard", "Exit"])] == ["A"]
        assert len(filter_by_flags(records, [])) == 3


# ============================================================================
# Summary Tests
# ============================================================================


class TestSummarizeRecords:
    def test_empty(self) -> None:
        stats = summarize_records([])
        assert stats.total == 0
        assert stats.average_uptime == 0.0
        assert stats.top_countries() == []

    def test_aggregates(self) -> None:
        records = [
            make_record("A" * 40, country="DE", uptime=1000, bandwidth=10, flags=("Guard",)),
            make_record("B" * 40, country="DE", uptime=500, bandwidth=20, running=False),
            make_record("C" * 40, country="US", uptime=0, bandwidth=30, flags=("Guard", "Exit")),
        ]
        stats = summarize_records(records)
        assert stats.total == 3
        assert stats.running == 2
        assert stats.total_bandwidth == 60
        assert stats.average_uptime == 500.0
        assert stats.top_countries(1) == [("DE", 2)]
        assert stats.top_flags(1) == [("Guard", 2)]
