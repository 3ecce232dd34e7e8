"""
Feed entry transformation and record-set helpers.

Maps raw Onionoo relay entries to
[RelayRecord][derepute.models.relay_record.RelayRecord] values, then filters,
orders and chunks them for the synchronizer. Transformation is total: a
single malformed entry is logged and dropped, never raised.

Field mapping:

* fingerprint: ``fingerprint`` or ``f``; exactly 40 hex digits, upper-cased.
* nickname: ``nickname`` or ``n``, ``"Unknown"`` when absent.
* running: ``running`` or ``r``, False when absent.
* uptime: derived by [UptimeConfig][derepute.services.common.configs.UptimeConfig].
* bandwidth: ``measured_bandwidth``, else ``advertised_bandwidth``, else 0.
* country / AS: upper-cased country, ``AS``-prefixed AS number, with
  ``"??"`` and ``"AS0"`` as sentinels.
* last_seen: ``last_seen`` or ``t`` parsed as UTC and clamped to *now*.

See Also:
    [find_violation()][derepute.models.relay_record.find_violation]: The
        registry rules applied in the post-pass filter.
    [Synchronizer][derepute.services.synchronizer.Synchronizer]: Consumes
        the transformed, sorted sequence.
"""

from __future__ import annotations

import math
import re
import time
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from operator import attrgetter
from typing import Any

from derepute.core.logger import Logger
from derepute.models.constants import DEFAULT_NICKNAME, MAX_UPTIME, UNKNOWN_AS, UNKNOWN_COUNTRY
from derepute.models.relay_record import RelayRecord, find_violation

from .configs import UptimeConfig


_logger = Logger("transform")

_FINGERPRINT_RE = re.compile(r"[0-9A-Fa-f]{40}")

NUMERIC_SORT_FIELDS = frozenset({"uptime", "bandwidth", "consensus_weight", "last_seen", "running"})
TEXT_SORT_FIELDS = frozenset({"fingerprint", "nickname", "country", "as_number"})
SORT_FIELDS = NUMERIC_SORT_FIELDS | TEXT_SORT_FIELDS


# =============================================================================
# Field Parsing
# =============================================================================


def parse_feed_timestamp(value: Any) -> int | None:
    """Parse an Onionoo timestamp to Unix seconds, or ``None``.

    Accepts ``YYYY-MM-DD HH:MM:SS`` (the Onionoo layout), any ISO 8601 string,
    or a number of seconds. Naive times are UTC.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value) if math.isfinite(value) else None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace(" ", "T"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


def derive_uptime(entry: Mapping[str, Any], running: bool, policy: UptimeConfig) -> int:
    """Return the 0-1000 uptime score for *entry* under *policy*."""
    fraction = entry.get("consensus_weight_fraction")
    if isinstance(fraction, int | float) and not isinstance(fraction, bool):
        if not math.isfinite(fraction):
            return 0
        scaled = fraction * policy.fraction_multiplier
        # The product overflows to inf for huge fractions; clamp before flooring.
        return math.floor(max(0.0, min(float(MAX_UPTIME), scaled)))
    if running:
        return policy.running_default
    return 0


def _normalize_as(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        return UNKNOWN_AS
    value = value.strip()
    return value if value.startswith("AS") else f"AS{value}"


def _normalize_country(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return UNKNOWN_COUNTRY
    return value.strip().upper()


# =============================================================================
# Transformation
# =============================================================================


def transform_entry(
    entry: Any,
    *,
    now: int,
    uptime: UptimeConfig | None = None,
) -> RelayRecord | None:
    """Map one feed entry to a record, or ``None`` if it must be discarded.

    Never raises for a malformed entry; the reason is logged as a warning.
    The result may still break a registry rule (e.g. a three-letter
    country); [transform_entries()][derepute.services.common.transform.transform_entries]
    filters those out.

    Args:
        entry: One element of the feed's ``relays`` list.
        now: Current Unix time; later ``last_seen`` values are clamped to it.
        uptime: Uptime derivation policy (defaults to ``UptimeConfig()``).
    """
    if not isinstance(entry, Mapping):
        _logger.warning("entry_discarded", reason="not_a_mapping", type=type(entry).__name__)
        return None

    fingerprint = entry.get("fingerprint") or entry.get("f")
    if not isinstance(fingerprint, str) or not _FINGERPRINT_RE.fullmatch(fingerprint.strip()):
        _logger.warning("entry_discarded", reason="invalid_fingerprint", fingerprint=fingerprint)
        return None

    policy = uptime or UptimeConfig()

    nickname = entry.get("nickname") or entry.get("n") or DEFAULT_NICKNAME
    running = entry.get("running")
    if running is None:
        running = entry.get("r")
    running = running is True

    last_seen = parse_feed_timestamp(entry.get("last_seen") or entry.get("t"))
    last_seen = now if last_seen is None else max(0, min(last_seen, now))

    flags = entry.get("flags") or ()
    if not isinstance(flags, list | tuple):
        flags = ()

    try:
        return RelayRecord(
            fingerprint=fingerprint.strip(),
            nickname=nickname.strip() if isinstance(nickname, str) else DEFAULT_NICKNAME,
            flags=tuple(f for f in flags if isinstance(f, str)),
            uptime=derive_uptime(entry, running, policy),
            bandwidth=_non_negative_int(
                entry.get("measured_bandwidth") or entry.get("advertised_bandwidth") or 0
            ),
            consensus_weight=_non_negative_int(entry.get("consensus_weight", 0)),
            country=_normalize_country(entry.get("country")),
            as_number=_normalize_as(entry.get("as_number") or entry.get("as")),
            last_seen=last_seen,
            running=running,
        )
    except (TypeError, ValueError, OverflowError) as e:
        _logger.warning("entry_discarded", reason="invalid_field", fingerprint=fingerprint, error=e)
        return None


def is_storable(record: RelayRecord, now: int) -> bool:
    """Return whether the registry would accept *record* at time *now*."""
    return find_violation(record, now) is None


def transform_entries(
    entries: Iterable[Any],
    *,
    now: int | None = None,
    uptime: UptimeConfig | None = None,
    sort_by: str | None = None,
    descending: bool = True,
) -> list[RelayRecord]:
    """Transform, filter and optionally sort a sequence of feed entries.

    Records that would break a registry rule are dropped with a warning,
    so everything returned is accepted by
    [RegistryStore.batch_upsert()][derepute.core.registry.RegistryStore.batch_upsert]
    at time *now*.

    Raises:
        ValueError: If *sort_by* is not a sortable field.
    """
    if sort_by is not None and sort_by not in SORT_FIELDS:
        raise ValueError(f"cannot sort by {sort_by!r}; expected one of {sorted(SORT_FIELDS)}")
    now = int(time.time()) if now is None else now

    records: list[RelayRecord] = []
    for entry in entries:
        record = transform_entry(entry, now=now, uptime=uptime)
        if record is None:
            continue
        violation = find_violation(record, now)
        if violation is not None:
            _logger.warning(
                "record_discarded", reason=violation.value, fingerprint=record.fingerprint
            )
            continue
        records.append(record)

    if sort_by is not None:
        records = sort_records(records, sort_by, descending=descending)
    return records


# =============================================================================
# Ordering and Chunking
# =============================================================================


def sort_records(
    records: Iterable[RelayRecord], field_name: str, *, descending: bool = True
) -> list[RelayRecord]:
    """Return *records* sorted by *field_name*; equal keys keep their order.

    Raises:
        ValueError: If *field_name* is not in ``SORT_FIELDS``.
    """
    if field_name not in SORT_FIELDS:
        raise ValueError(f"cannot sort by {field_name!r}; expected one of {sorted(SORT_FIELDS)}")
    return sorted(records, key=attrgetter(field_name), reverse=descending)


def chunk_records(records: Sequence[RelayRecord], size: int) -> list[list[RelayRecord]]:
    """Split *records* into contiguous chunks of *size* (the last may be shorter).

    Raises:
        ValueError: If *size* is less than 1.
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(records[i : i + size]) for i in range(0, len(records), size)]


def filter_by_min_weight(records: Iterable[RelayRecord], min_weight: int) -> list[RelayRecord]:
    return [r for r in records if r.consensus_weight >= min_weight]


def filter_by_flags(records: Iterable[RelayRecord], flags: Iterable[str]) -> list[RelayRecord]:
    """Keep the records carrying every flag in *flags*."""
    required = set(flags)
    return [r for r in records if required.issubset(r.flags)]


# =============================================================================
# Summary Statistics
# =============================================================================


@dataclass(frozen=True, slots=True)
class RecordStats:
    """Aggregate view of a record set, logged after each transformation."""

    total: int = 0
    running: int = 0
    total_bandwidth: int = 0
    average_uptime: float = 0.0
    flag_counts: dict[str, int] = field(default_factory=dict)
    country_counts: dict[str, int] = field(default_factory=dict)

    def top_countries(self, n: int = 10) -> list[tuple[str, int]]:
        return Counter(self.country_counts).most_common(n)

    def top_flags(self, n: int = 10) -> list[tuple[str, int]]:
        return Counter(self.flag_counts).most_common(n)


def summarize_records(records: Sequence[RelayRecord]) -> RecordStats:
    if not records:
        return RecordStats()
    flags: Counter[str] = Counter()
    countries: Counter[str] = Counter()
    for record in records:
        flags.update(record.flags)
        countries[record.country] += 1
    return RecordStats(
        total=len(records),
        running=sum(1 for r in records if r.running),
        total_bandwidth=sum(r.bandwidth for r in records),
        average_uptime=sum(r.uptime for r in records) / len(records),
        flag_counts=dict(flags),
        country_counts=dict(countries),
    )
