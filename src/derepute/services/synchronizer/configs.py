"""Synchronizer service configuration models.

See Also:
    [Synchronizer][derepute.services.synchronizer.Synchronizer]: The service
        class that consumes these configurations.
    [BaseServiceConfig][derepute.core.base_service.BaseServiceConfig]:
        Base class providing ``interval`` and ``metrics`` fields.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from derepute.core.base_service import BaseServiceConfig
from derepute.services.common.configs import FeedConfig, RetryConfig, UptimeConfig
from derepute.services.common.transform import SORT_FIELDS


DEFAULT_IDENTITY_ENV = "DEREPUTE_IDENTITY"


class SourceConfig(BaseModel):
    """Which slice of the feed a run pulls.

    The feed is requested already ordered by ``ranking`` (most significant
    first), so a run that stops early has still written the most important
    relays.
    """

    max_records: int = Field(default=100, ge=1, le=10_000, description="Relays fetched per run")
    ranking: str = Field(
        default="-consensus_weight",
        min_length=1,
        description="Onionoo order parameter (leading '-' = descending)",
    )


class OrderingConfig(BaseModel):
    """Local ordering of the transformed records before chunking."""

    sort_by: str | None = Field(
        default="consensus_weight", description="Record field to sort by (None = feed order)"
    )
    descending: bool = True

    @field_validator("sort_by", mode="after")
    @classmethod
    def validate_sort_by(cls, v: str | None) -> str | None:
        if v is not None and v not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {sorted(SORT_FIELDS)}, got {v!r}")
        return v


class SubmitConfig(BaseModel):
    """Chunking and pacing of writes through the write channel.

    ``inter_chunk_delay`` spaces consecutive chunks on the serialized
    write channel; it can only be lowered when the channel provides its
    own ordering guarantee.
    """

    chunk_size: int = Field(default=50, ge=1, le=1000, description="Records per batch write")
    inter_chunk_delay: float = Field(
        default=3.0, ge=0.0, le=600.0, description="Seconds between chunk submissions"
    )
    timeout: float = Field(
        default=120.0, ge=0.1, le=3600.0, description="Seconds allowed for one submission"
    )


class VerifyConfig(BaseModel):
    """Post-run read-back of the registry."""

    enabled: bool = True
    sample: int = Field(default=3, ge=0, le=100, description="Records logged after a run")


class SynchronizerConfig(BaseServiceConfig):
    """Configuration for the [Synchronizer][derepute.services.synchronizer.Synchronizer] service.

    The writer identity is never read from deep call frames: it is either
    given as ``identity`` or resolved once, here, from the environment
    variable named by ``identity_env``.

    Examples:
        ```yaml
        interval: 3600.0
        identity_env: DEREPUTE_IDENTITY
        source:
          max_records: 100
        submit:
          chunk_size: 50
          inter_chunk_delay: 3.0
        retry:
          max_retries: 5
        ```
    """

    identity_env: str = Field(
        default=DEFAULT_IDENTITY_ENV,
        min_length=1,
        description="Environment variable holding the writer identity",
    )
    identity: str = Field(min_length=1, description="Writer identity (loaded from identity_env)")
    dry_run: bool = Field(default=False, description="Log chunks instead of submitting them")

    feed: FeedConfig = Field(default_factory=FeedConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    ordering: OrderingConfig = Field(default_factory=OrderingConfig)
    uptime: UptimeConfig = Field(default_factory=UptimeConfig)
    submit: SubmitConfig = Field(default_factory=SubmitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    verify: VerifyConfig = Field(default_factory=VerifyConfig)

    @model_validator(mode="before")
    @classmethod
    def resolve_identity(cls, data: Any) -> Any:
        """Resolve the writer identity from the environment variable."""
        if isinstance(data, dict) and not data.get("identity"):
            env_var = data.get("identity_env", DEFAULT_IDENTITY_ENV)
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "identity": value}
        return data
