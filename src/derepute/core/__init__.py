"""Registry, write channel and service infrastructure.

Depends only on [derepute.models][]. Everything with state or I/O that is
shared by more than one service lives here:

Attributes:
    RegistryStore: Authoritative record store with an append-only
        fingerprint index and JSON snapshot persistence.
    AuthorizationSet: Owner plus updater capability list.
    WriteChannel: Serialized single-writer boundary in front of the store.
    BaseService: Generic service lifecycle with metrics and shutdown.
    Logger: Structured key=value / JSON logger.
    MetricsServer: Prometheus exposition over aiohttp.
"""

from .authorization import AuthorizationSet
from .base_service import BaseService, BaseServiceConfig, ConfigT
from .channel import Receipt, WriteChannel, WriteChannelConfig
from .exceptions import (
    AlreadyAuthorizedError,
    AuthorizationError,
    ChannelTimeoutError,
    ConfigurationError,
    DereputeError,
    EmptyNicknameError,
    FeedError,
    FeedUnavailableError,
    FutureTimestampError,
    IndexOutOfBoundsError,
    InvalidCountryError,
    InvalidFingerprintError,
    InvalidUptimeError,
    NotAuthorizedError,
    NotFoundError,
    NullTargetError,
    OffsetOutOfBoundsError,
    RateLimitedError,
    RecordValidationError,
    StateError,
    SynchronizationError,
    TransientChannelError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import MetricsConfig, MetricsServer
from .registry import (
    BatchConfig,
    FingerprintIndex,
    RegistryConfig,
    RegistryStore,
    SnapshotConfig,
)
from .yaml import load_yaml


__all__ = [
    "AlreadyAuthorizedError",
    "AuthorizationError",
    "AuthorizationSet",
    "BaseService",
    "BaseServiceConfig",
    "BatchConfig",
    "ChannelTimeoutError",
    "ConfigT",
    "ConfigurationError",
    "DereputeError",
    "EmptyNicknameError",
    "FeedError",
    "FeedUnavailableError",
    "FingerprintIndex",
    "FutureTimestampError",
    "IndexOutOfBoundsError",
    "InvalidCountryError",
    "InvalidFingerprintError",
    "InvalidUptimeError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "NotAuthorizedError",
    "NotFoundError",
    "NullTargetError",
    "OffsetOutOfBoundsError",
    "RateLimitedError",
    "Receipt",
    "RecordValidationError",
    "RegistryConfig",
    "RegistryStore",
    "SnapshotConfig",
    "StateError",
    "StructuredFormatter",
    "SynchronizationError",
    "TransientChannelError",
    "WriteChannel",
    "WriteChannelConfig",
    "format_kv_pairs",
    "load_yaml",
]
