"""Shared constants for the models layer.

Defines the enumerations and fixed limits that the registry, the feed
transformer and the services all agree on. Placing them here keeps the
models layer free of imports from the upper layers.

See Also:
    [RelayRecord][derepute.models.relay_record.RelayRecord]: Record model
        whose store invariants are expressed with these limits.
    [find_violation()][derepute.models.relay_record.find_violation]:
        Returns a [RecordViolation][derepute.models.constants.RecordViolation].
"""

from __future__ import annotations

from enum import StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    The string values are used as the ``service`` label in Prometheus
    metrics and as the logger name of each service.

    Attributes:
        SYNCHRONIZER: Feed-to-registry batch synchronization service
            ([Synchronizer][derepute.services.synchronizer.Synchronizer]).
        API: Read-only HTTP surface over the registry
            ([Api][derepute.services.api.Api]).
    """

    SYNCHRONIZER = "synchronizer"
    API = "api"


class RecordViolation(StrEnum):
    """Reasons a [RelayRecord][derepute.models.relay_record.RelayRecord] cannot be stored.

    Listed in the order the registry checks them; the first one that
    applies is the one reported.
    """

    INVALID_FINGERPRINT = "invalid_fingerprint"
    INVALID_UPTIME = "invalid_uptime"
    INVALID_COUNTRY = "invalid_country"
    FUTURE_TIMESTAMP = "future_timestamp"
    EMPTY_NICKNAME = "empty_nickname"


FINGERPRINT_LENGTH = 40
"""Length of a relay fingerprint (hex-encoded SHA-1 of the identity key)."""

MAX_UPTIME = 1000
"""Upper bound of the fixed-point uptime score (1000 == 100.0 %)."""

COUNTRY_CODE_LENGTH = 2

UNKNOWN_COUNTRY = "??"
UNKNOWN_AS = "AS0"
DEFAULT_NICKNAME = "Unknown"
