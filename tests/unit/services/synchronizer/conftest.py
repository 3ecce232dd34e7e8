"""Shared fixtures for services.synchronizer test package."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from derepute.core.channel import Receipt
from derepute.services.common.configs import RetryConfig
from derepute.services.synchronizer import (
    SubmitConfig,
    SynchronizerConfig,
    VerifyConfig,
)
from tests.conftest import UPDATER, make_entry


def make_receipt(sequence: int = 1, records: int = 2) -> Receipt:
    return Receipt(
        sequence=sequence,
        operation="batch_upsert",
        caller=UPDATER,
        records=records,
        committed_at=0.0,
    )


def make_feed(entries: list[dict[str, Any]] | None = None) -> MagicMock:
    """Mock OnionooClient whose fetch_top_relays returns *entries*."""
    feed = MagicMock()
    feed.fetch_top_relays = AsyncMock(
        return_value=entries if entries is not None else [make_entry(c * 40) for c in "abc"]
    )
    return feed


@pytest.fixture
def sync_config() -> SynchronizerConfig:
    """Two-record chunks, no spacing, 1s base backoff, three retries."""
    return SynchronizerConfig(
        identity=UPDATER,
        submit=SubmitConfig(chunk_size=2, inter_chunk_delay=0.0, timeout=5.0),
        retry=RetryConfig(max_retries=3, initial_delay=1.0, max_delay=60.0),
        verify=VerifyConfig(sample=2),
    )


@pytest.fixture
def mock_sleep(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Replace the backoff sleep so retries complete instantly."""
    sleep = AsyncMock()
    monkeypatch.setattr("derepute.services.synchronizer.service.asyncio.sleep", sleep)
    return sleep
