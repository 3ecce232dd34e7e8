"""Derepute exception hierarchy.

Provides typed exceptions for every error category so that callers can
tell a record that must be discarded from a write that should be retried,
and a permission problem from a usage mistake.

Exception hierarchy:

```text
DereputeError (base -- never raised directly)
├── ConfigurationError        -- config validation, missing keys, bad YAML
├── RecordValidationError     -- record breaks a registry rule (never retried)
│   ├── InvalidFingerprintError
│   ├── InvalidUptimeError
│   ├── InvalidCountryError
│   ├── FutureTimestampError
│   └── EmptyNicknameError
├── AuthorizationError        -- caller may not perform the call (not retried)
├── TransientChannelError     -- write channel busy or throttled (retryable)
│   ├── ChannelTimeoutError
│   └── RateLimitedError
├── StateError                -- usage error against current state (not retried)
│   ├── NotFoundError
│   ├── IndexOutOfBoundsError
│   ├── OffsetOutOfBoundsError
│   ├── NullTargetError
│   ├── AlreadyAuthorizedError
│   └── NotAuthorizedError
├── FeedError                 -- upstream feed returned an unusable response
│   └── FeedUnavailableError  -- transient: throttled or server error
└── SynchronizationError      -- a synchronization run applied nothing
```

See Also:
    [RegistryStore][derepute.core.registry.RegistryStore]: Raises the
        validation, authorization and state errors.
    [WriteChannel][derepute.core.channel.WriteChannel]: Raises
        [TransientChannelError][derepute.core.exceptions.TransientChannelError]
        subclasses.
    [Synchronizer][derepute.services.synchronizer.Synchronizer]: Retries
        transient errors and records the rest per chunk.
"""

from __future__ import annotations

from derepute.models.constants import RecordViolation


class DereputeError(Exception):
    """Base exception for all Derepute errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(DereputeError):
    """Invalid or missing configuration (YAML, env vars, CLI flags).

    See Also:
        [load_yaml()][derepute.core.yaml.load_yaml]: YAML loading function
            that may trigger configuration errors.
    """


# ---------------------------------------------------------------------------
# Record validation
# ---------------------------------------------------------------------------


class RecordValidationError(DereputeError):
    """A record breaks one of the registry write rules.

    The offending record must be discarded; retrying the same write can
    never succeed.

    Attributes:
        reason: The [RecordViolation][derepute.models.constants.RecordViolation]
            that was detected.
        fingerprint: Fingerprint of the rejected record.

    See Also:
        [find_violation()][derepute.models.relay_record.find_violation]:
            The pure rule check that produces ``reason``.
        [for_violation()][derepute.core.exceptions.RecordValidationError.for_violation]:
            Build the matching subclass from a violation.
    """

    reason: RecordViolation

    def __init__(self, reason: RecordViolation, fingerprint: str) -> None:
        self.reason = reason
        self.fingerprint = fingerprint
        super().__init__(f"{reason.value}: {fingerprint!r}")

    @classmethod
    def for_violation(cls, reason: RecordViolation, fingerprint: str) -> RecordValidationError:
        """Return the subclass instance matching *reason*."""
        return _VIOLATION_ERRORS[reason](reason, fingerprint)


class InvalidFingerprintError(RecordValidationError):
    """Fingerprint is not exactly 40 characters."""


class InvalidUptimeError(RecordValidationError):
    """Uptime exceeds the maximum of 1000."""


class InvalidCountryError(RecordValidationError):
    """Country code is not exactly two characters."""


class FutureTimestampError(RecordValidationError):
    """``last_seen`` is later than the write-time clock."""


class EmptyNicknameError(RecordValidationError):
    """Nickname is empty or blank."""


_VIOLATION_ERRORS: dict[RecordViolation, type[RecordValidationError]] = {
    RecordViolation.INVALID_FINGERPRINT: InvalidFingerprintError,
    RecordViolation.INVALID_UPTIME: InvalidUptimeError,
    RecordViolation.INVALID_COUNTRY: InvalidCountryError,
    RecordViolation.FUTURE_TIMESTAMP: FutureTimestampError,
    RecordViolation.EMPTY_NICKNAME: EmptyNicknameError,
}


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(DereputeError):
    """Caller is not permitted to perform the requested call.

    Fatal to that call and never retried; surfaced to the operator.

    See Also:
        [AuthorizationSet][derepute.core.authorization.AuthorizationSet]:
            The capability list that raises this error.
    """


# ---------------------------------------------------------------------------
# Write channel
# ---------------------------------------------------------------------------


class TransientChannelError(DereputeError):
    """The write channel could not accept the call right now.

    Callers may retry after a backoff.
    """


class ChannelTimeoutError(TransientChannelError):
    """Waiting for the serialized write channel exceeded its timeout."""


class RateLimitedError(TransientChannelError):
    """The write channel throttled the call.

    Attributes:
        retry_after: Seconds until the channel accepts another write.
    """

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class StateError(DereputeError):
    """The call is invalid against the current registry state.

    Always a usage error: surfaced immediately and never retried.
    """


class NotFoundError(StateError):
    """No record exists for the requested fingerprint."""


class IndexOutOfBoundsError(StateError):
    """Index is outside ``0 <= i < count()``."""


class OffsetOutOfBoundsError(StateError):
    """Pagination offset is outside the populated range."""


class NullTargetError(StateError):
    """Target identity of an administrative call is null or empty."""


class AlreadyAuthorizedError(StateError):
    """Identity is already an authorized updater."""


class NotAuthorizedError(StateError):
    """Identity is not an authorized updater."""


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


class FeedError(DereputeError):
    """The upstream relay feed returned an unusable response.

    See Also:
        [OnionooClient][derepute.services.common.feed.OnionooClient]: Feed client
            that raises this error.
    """


class FeedUnavailableError(FeedError):
    """The feed is throttling or temporarily failing (HTTP 429 or 5xx).

    Callers may retry after a backoff.
    """


# ---------------------------------------------------------------------------
# Synchronization
# ---------------------------------------------------------------------------


class SynchronizationError(DereputeError):
    """A synchronization run attempted chunks and none of them succeeded."""
