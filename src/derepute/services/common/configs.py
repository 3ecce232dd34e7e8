"""Shared configuration models for Derepute services.

See Also:
    [OnionooClient][derepute.services.common.feed.OnionooClient]: Consumes
        [FeedConfig][derepute.services.common.configs.FeedConfig].
    [transform_entry()][derepute.services.common.transform.transform_entry]:
        Consumes [UptimeConfig][derepute.services.common.configs.UptimeConfig].
    [SynchronizerConfig][derepute.services.synchronizer.SynchronizerConfig]:
        Embeds all three models.

Examples:
    ```yaml
    feed:
      base_url: https://onionoo.torproject.org
      timeout: 30.0
    retry:
      max_retries: 5
      initial_delay: 2.0
    uptime:
      fraction_multiplier: 50000
    ```
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from derepute.models.constants import MAX_UPTIME


DEFAULT_FEED_URL = "https://onionoo.torproject.org"
DEFAULT_USER_AGENT = "Derepute/1.0 (Tor Reputation Store)"


class FeedConfig(BaseModel):
    """Where and how to read the relay feed.

    With ``source_file`` set, a previously downloaded Onionoo ``details``
    document is read from disk instead of querying ``base_url``.
    """

    base_url: str = Field(default=DEFAULT_FEED_URL, description="Onionoo API base URL")
    timeout: float = Field(default=30.0, ge=0.1, le=300.0, description="HTTP request timeout")
    max_response_size: int = Field(
        default=50 * 1024 * 1024, ge=1024, description="Maximum response body in bytes"
    )
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)
    source_file: Path | None = Field(
        default=None, description="Read a saved details document instead of the API"
    )


class RetryConfig(BaseModel):
    """Exponential backoff for transient failures.

    The delay before retry *n* (from 1) is
    ``initial_delay * 2 ** (n - 1)``, capped at ``max_delay``.
    """

    max_retries: int = Field(default=5, ge=0, le=20, description="Retries after the first attempt")
    initial_delay: float = Field(default=2.0, ge=0.0, description="Delay before the first retry")
    max_delay: float = Field(default=60.0, ge=0.0, description="Upper bound on a single delay")

    @model_validator(mode="after")
    def validate_delays(self) -> RetryConfig:
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        return self

    def delay(self, retry: int) -> float:
        """Return the backoff before retry number *retry* (1-based)."""
        return float(min(self.initial_delay * 2 ** (retry - 1), self.max_delay))


class UptimeConfig(BaseModel):
    """Policy deriving the 0-1000 uptime score from the feed.

    The feed carries no measured uptime, so the score is a proxy:
    ``consensus_weight_fraction * fraction_multiplier`` when the fraction is
    reported, otherwise ``running_default`` for running relays and 0 for the
    rest.
    """

    fraction_multiplier: float = Field(default=50_000.0, gt=0.0)
    running_default: int = Field(default=900, ge=0, le=MAX_UPTIME)
