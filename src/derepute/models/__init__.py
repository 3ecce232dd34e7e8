"""Pure frozen dataclasses with zero I/O for relay reputation records.

The models layer is the foundation of the diamond DAG. It has **no dependencies**
on any other Derepute package -- only the Python standard library. Records use
``@dataclass(frozen=True, slots=True)`` for immutability and memory efficiency.

Attributes:
    RelayRecord: Reputation record for one relay, keyed by fingerprint.
    find_violation: Registry write rules as a pure function.
    RecordViolation: Enum of reasons a record cannot be stored.
    ServiceName: Enum of service identifiers.

See Also:
    [derepute.models.relay_record][]: Record model and write rules.
    [derepute.models.constants][]: Shared constants and enumerations.
"""

from .constants import (
    COUNTRY_CODE_LENGTH,
    DEFAULT_NICKNAME,
    FINGERPRINT_LENGTH,
    MAX_UPTIME,
    UNKNOWN_AS,
    UNKNOWN_COUNTRY,
    RecordViolation,
    ServiceName,
)
from .relay_record import RelayRecord, find_violation


__all__ = [
    "COUNTRY_CODE_LENGTH",
    "DEFAULT_NICKNAME",
    "FINGERPRINT_LENGTH",
    "MAX_UPTIME",
    "UNKNOWN_AS",
    "UNKNOWN_COUNTRY",
    "RecordViolation",
    "RelayRecord",
    "ServiceName",
    "find_violation",
]
