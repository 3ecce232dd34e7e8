"""
Pytest configuration and shared fixtures for Derepute tests.

Provides:
- A fixed write-time clock and record factory
- Registry fixtures with an owner and an authorized updater
- Raw Onionoo feed entry factory
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import pytest

from derepute.core.registry import RegistryStore
from derepute.models.relay_record import RelayRecord


NOW = 1_700_000_000
OWNER = "operator"
UPDATER = "sync-bot"


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Record Fixtures
# ============================================================================


def make_record(fingerprint: str = "A" * 40, **overrides: Any) -> RelayRecord:
    """Build a storable record at ``NOW`` with sensible defaults."""
    fields: dict[str, Any] = {
        "fingerprint": fingerprint,
        "nickname": "relay",
        "flags": ("Fast", "Running"),
        "uptime": 900,
        "bandwidth": 1_000_000,
        "consensus_weight": 1000,
        "country": "DE",
        "as_number": "AS3320",
        "last_seen": NOW - 60,
        "running": True,
    }
    fields.update(overrides)
    return RelayRecord(**fields)


@pytest.fixture
def record_factory() -> Callable[..., RelayRecord]:
    return make_record


# ============================================================================
# Registry Fixtures
# ============================================================================


@pytest.fixture
def store() -> RegistryStore:
    """Empty in-memory registry owned by ``OWNER`` with a fixed clock."""
    return RegistryStore(OWNER, clock=lambda: NOW)


@pytest.fixture
def authorized_store(store: RegistryStore) -> RegistryStore:
    """Registry where ``UPDATER`` may write."""
    store.add_updater(OWNER, UPDATER)
    return store


@pytest.fixture
def populated_store(authorized_store: RegistryStore) -> RegistryStore:
    """Registry holding five records: AAAA.., BBBB.., CCCC.., DDDD.., EEEE.."""
    records = [
        make_record("A" * 40, nickname="alpha", country="DE"),
        make_record("B" * 40, nickname="bravo", country="US"),
        make_record("C" * 40, nickname="charlie", country="FR"),
        make_record("D" * 40, nickname="delta", country="DE"),
        make_record("E" * 40, nickname="echo", country="NL"),
    ]
    authorized_store.batch_upsert(UPDATER, records)
    return authorized_store


# ============================================================================
# Feed Fixtures
# ============================================================================


def make_entry(fingerprint: str = "a" * 40, **overrides: Any) -> dict[str, Any]:
    """Build a raw Onionoo details entry."""
    entry: dict[str, Any] = {
        "fingerprint": fingerprint,
        "nickname": "relay",
        "running": True,
        "flags": ["Fast", "Guard", "Running"],
        "consensus_weight": 1000,
        "consensus_weight_fraction": 0.01,
        "advertised_bandwidth": 2_000_000,
        "measured_bandwidth": 1_500_000,
        "country": "de",
        "as": "AS3320",
        "last_seen": "2023-11-14 22:00:00",
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def entry_factory() -> Callable[..., dict[str, Any]]:
    return make_entry
