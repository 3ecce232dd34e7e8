"""
Reputation record for a single network relay.

A [RelayRecord][derepute.models.relay_record.RelayRecord] is the unit the
registry stores, addressed by its 40-character fingerprint. Construction
only enforces *types* (and that counters are unsigned); the structural
rules the registry applies on write are expressed separately by
[find_violation()][derepute.models.relay_record.find_violation] so that a
malformed record can still be built, inspected and rejected.

See Also:
    [RegistryStore][derepute.core.registry.RegistryStore]: Rejects records
        for which ``find_violation`` returns a reason.
    [transform_entry()][derepute.services.common.transform.transform_entry]:
        Builds records from raw feed entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ._validation import (
    dedupe_strings,
    validate_instance,
    validate_str_no_null,
    validate_unsigned,
)
from .constants import (
    COUNTRY_CODE_LENGTH,
    FINGERPRINT_LENGTH,
    MAX_UPTIME,
    UNKNOWN_AS,
    UNKNOWN_COUNTRY,
    RecordViolation,
)


@dataclass(frozen=True, slots=True)
class RelayRecord:
    """Immutable reputation record for one relay.

    Attributes:
        fingerprint: Relay identifier, upper-cased on construction.
        nickname: Operator-chosen display name.
        flags: Ordered set of consensus flags (duplicates dropped, first
            occurrence kept).
        uptime: Fixed-point uptime score, 0 to 1000 (100.0 %).
        bandwidth: Bandwidth in bytes per second.
        consensus_weight: Directory-authority consensus weight.
        country: Two-letter country code, ``"??"`` when unknown.
        as_number: Autonomous system identifier, ``"AS0"`` when unknown.
        last_seen: Unix timestamp of the last time the relay was seen.
        running: Whether the relay was running in the latest consensus.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a counter is negative or a string contains null bytes.

    Examples:
        ```python
        record = RelayRecord(fingerprint="a" * 40, nickname="moria1", country="DE")
        record.fingerprint  # 'AAAA...'
        find_violation(record, now=1_700_000_000)  # None
        ```
    """

    fingerprint: str
    nickname: str
    flags: tuple[str, ...] = field(default=())
    uptime: int = 0
    bandwidth: int = 0
    consensus_weight: int = 0
    country: str = UNKNOWN_COUNTRY
    as_number: str = UNKNOWN_AS
    last_seen: int = 0
    running: bool = False

    def __post_init__(self) -> None:
        validate_str_no_null(self.fingerprint, "fingerprint")
        validate_str_no_null(self.nickname, "nickname")
        validate_str_no_null(self.country, "country")
        validate_str_no_null(self.as_number, "as_number")
        validate_unsigned(self.uptime, "uptime")
        validate_unsigned(self.bandwidth, "bandwidth")
        validate_unsigned(self.consensus_weight, "consensus_weight")
        validate_unsigned(self.last_seen, "last_seen")
        validate_instance(self.running, bool, "running")

        object.__setattr__(self, "fingerprint", self.fingerprint.upper())
        object.__setattr__(self, "flags", dedupe_strings(self.flags, "flags"))

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping of the record."""
        return {
            "fingerprint": self.fingerprint,
            "nickname": self.nickname,
            "flags": list(self.flags),
            "uptime": self.uptime,
            "bandwidth": self.bandwidth,
            "consensus_weight": self.consensus_weight,
            "country": self.country,
            "as_number": self.as_number,
            "last_seen": self.last_seen,
            "running": self.running,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelayRecord:
        """Rebuild a record from the output of ``to_dict()``.

        Raises:
            KeyError: If ``fingerprint`` or ``nickname`` is missing.
        """
        return cls(
            fingerprint=data["fingerprint"],
            nickname=data["nickname"],
            flags=tuple(data.get("flags", ())),
            uptime=data.get("uptime", 0),
            bandwidth=data.get("bandwidth", 0),
            consensus_weight=data.get("consensus_weight", 0),
            country=data.get("country", UNKNOWN_COUNTRY),
            as_number=data.get("as_number", UNKNOWN_AS),
            last_seen=data.get("last_seen", 0),
            running=data.get("running", False),
        )


def find_violation(record: RelayRecord, now: int) -> RecordViolation | None:
    """Return the first registry rule *record* breaks, or ``None``.

    Rules are checked in a fixed order: fingerprint length, uptime bound,
    country code length, ``last_seen`` not after *now*, non-blank nickname.

    Args:
        record: The record to check.
        now: Write-time clock as Unix seconds.
    """
    if len(record.fingerprint) != FINGERPRINT_LENGTH:
        return RecordViolation.INVALID_FINGERPRINT
    if record.uptime > MAX_UPTIME:
        return RecordViolation.INVALID_UPTIME
    if len(record.country) != COUNTRY_CODE_LENGTH:
        return RecordViolation.INVALID_COUNTRY
    if record.last_seen > now:
        return RecordViolation.FUTURE_TIMESTAMP
    if not record.nickname.strip():
        return RecordViolation.EMPTY_NICKNAME
    return None
