"""
Unit tests for services.synchronizer.service module.

Tests:
- Chunked submission order and registry contents
- Transient retry with exponential backoff (timeouts, throttling)
- Retry exhaustion and non-transient rejection per chunk
- Pre-flight authorization and feed retry
- Dry run, shutdown between chunks, idempotent re-runs
- run(): persistence, verification and SynchronizationError
"""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from derepute.core.channel import WriteChannel
from derepute.core.exceptions import (
    AuthorizationError,
    ChannelTimeoutError,
    FeedError,
    FeedUnavailableError,
    InvalidUptimeError,
    RateLimitedError,
    SynchronizationError,
)
from derepute.core.registry import RegistryConfig, RegistryStore, SnapshotConfig
from derepute.models.constants import RecordViolation, ServiceName
from derepute.services.synchronizer import (
    SourceConfig,
    SynchronizerConfig,
    SyncPhase,
    Synchronizer,
)
from tests.conftest import NOW, OWNER, UPDATER, make_entry
from tests.unit.services.synchronizer.conftest import make_feed, make_receipt


def _mock_channel(*side_effect: object) -> MagicMock:
    channel = MagicMock()
    channel.batch_upsert = AsyncMock(side_effect=list(side_effect))
    return channel


# ============================================================================
# Pipeline Tests
# ============================================================================


class TestSynchronize:
    def test_service_name(self) -> None:
        assert Synchronizer.SERVICE_NAME == ServiceName.SYNCHRONIZER

    async def test_chunks_submitted_in_order(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        channel = WriteChannel(authorized_store)
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        assert report.fetched == 3
        assert report.transformed == 3
        assert report.planned_chunks == 2
        assert [c.size for c in report.chunks] == [2, 1]
        assert [c.receipt.sequence for c in report.chunks if c.receipt] == [1, 2]
        assert authorized_store.count() == 3
        assert authorized_store.get_by_index(0) == "A" * 40
        assert authorized_store.get_by_index(2) == "C" * 40
        assert sync.phase is SyncPhase.DONE
        assert sync.last_report is report

    async def test_fetch_uses_source_config(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        config = sync_config.model_copy(
            update={"source": SourceConfig(max_records=7, ranking="-bandwidth")}
        )
        feed = make_feed([])
        sync = Synchronizer(authorized_store, config, channel=_mock_channel(), feed=feed)

        report = await sync.synchronize()

        feed.fetch_top_relays.assert_awaited_once_with(limit=7, order="-bandwidth")
        assert report.planned_chunks == 0
        assert report.chunks == []

    async def test_malformed_entries_dropped(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        entries = [make_entry("a" * 40), make_entry("xyz"), make_entry("b" * 40, country="deu")]
        sync = Synchronizer(authorized_store, sync_config, feed=make_feed(entries))

        report = await sync.synchronize()

        assert report.fetched == 3
        assert report.transformed == 1
        assert report.discarded == 2
        assert authorized_store.count() == 1

    async def test_local_ordering(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        entries = [make_entry(c * 40, consensus_weight=w) for c, w in zip("abc", (1, 30, 20))]
        sync = Synchronizer(authorized_store, sync_config, feed=make_feed(entries))

        await sync.synchronize()

        assert [authorized_store.get_by_index(i)[0] for i in range(3)] == ["B", "C", "A"]

    async def test_idempotent(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        sync = Synchronizer(authorized_store, sync_config, feed=make_feed())

        await sync.synchronize()
        first = authorized_store.to_dict()
        await sync.synchronize()

        assert authorized_store.to_dict() == first
        assert authorized_store.count() == 3


# ============================================================================
# Retry Tests
# ============================================================================


class TestChunkRetry:
    async def test_transient_failures_then_success(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        channel = _mock_channel(
            ChannelTimeoutError("busy"),
            ChannelTimeoutError("busy"),
            make_receipt(1),
            make_receipt(2, records=1),
        )
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        first = report.chunks[0]
        assert first.succeeded
        assert first.attempts == 3
        assert first.backoff_s == 3.0
        assert mock_sleep.await_args_list == [call(1.0), call(2.0)]
        assert report.retries == 2
        assert report.chunks_succeeded == 2

    async def test_submission_timeout_is_retried(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        channel = _mock_channel(TimeoutError(), make_receipt(1), make_receipt(2))
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        assert report.chunks[0].attempts == 2
        assert report.chunks[0].succeeded
        mock_sleep.assert_awaited_once_with(1.0)

    async def test_rate_limit_raises_backoff_floor(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        channel = _mock_channel(
            RateLimitedError("slow down", retry_after=5.0), make_receipt(1), make_receipt(2)
        )
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        await sync.synchronize()

        mock_sleep.assert_awaited_once_with(5.0)

    async def test_retries_exhausted(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        errors = [ChannelTimeoutError("busy")] * 4
        channel = _mock_channel(*errors, make_receipt(1, records=1))
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        first, second = report.chunks
        assert not first.succeeded
        assert first.attempts == 4
        assert first.error_type == "ChannelTimeoutError"
        assert first.backoff_s == 7.0
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert second.succeeded

    async def test_non_transient_error_not_retried(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        rejection = InvalidUptimeError(RecordViolation.INVALID_UPTIME, "A" * 40)
        channel = _mock_channel(rejection, make_receipt(1, records=1))
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        assert report.chunks[0].attempts == 1
        assert report.chunks[0].error_type == "InvalidUptimeError"
        assert report.chunks[1].succeeded
        assert channel.batch_upsert.await_count == 2
        mock_sleep.assert_not_awaited()


# ============================================================================
# Pre-flight and Feed Tests
# ============================================================================


class TestPreflightAndFeed:
    async def test_unauthorized_identity(
        self, store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        feed = make_feed()
        sync = Synchronizer(store, sync_config, feed=feed)

        with pytest.raises(AuthorizationError):
            await sync.synchronize()
        feed.fetch_top_relays.assert_not_called()

    async def test_owner_may_synchronize(
        self, store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        config = sync_config.model_copy(update={"identity": OWNER})
        sync = Synchronizer(store, config, feed=make_feed())
        await sync.synchronize()
        assert store.count() == 3

    async def test_feed_retry(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        feed = make_feed()
        entries = feed.fetch_top_relays.return_value
        feed.fetch_top_relays = AsyncMock(side_effect=[FeedUnavailableError("503"), entries])
        sync = Synchronizer(authorized_store, sync_config, feed=feed)

        report = await sync.synchronize()

        assert report.fetched == 3
        mock_sleep.assert_awaited_once_with(1.0)

    async def test_feed_unavailable_after_retries(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        feed = MagicMock()
        feed.fetch_top_relays = AsyncMock(side_effect=FeedUnavailableError("503"))
        sync = Synchronizer(authorized_store, sync_config, feed=feed)

        with pytest.raises(FeedError) as exc_info:
            await sync.synchronize()

        assert type(exc_info.value) is FeedError
        assert feed.fetch_top_relays.await_count == 4
        assert authorized_store.count() == 0

    async def test_feed_rejection_not_retried(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        mock_sleep: AsyncMock,
    ) -> None:
        feed = MagicMock()
        feed.fetch_top_relays = AsyncMock(side_effect=FeedError("HTTP 400"))
        sync = Synchronizer(authorized_store, sync_config, feed=feed)

        with pytest.raises(FeedError, match="400"):
            await sync.synchronize()
        mock_sleep.assert_not_awaited()


# ============================================================================
# Dry Run and Shutdown Tests
# ============================================================================


class TestDryRunAndShutdown:
    async def test_dry_run_writes_nothing(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        config = sync_config.model_copy(update={"dry_run": True})
        channel = _mock_channel()
        sync = Synchronizer(authorized_store, config, channel=channel, feed=make_feed())

        report = await sync.synchronize()

        assert report.dry_run
        assert report.records_applied == 3
        assert all(c.attempts == 0 for c in report.chunks)
        channel.batch_upsert.assert_not_called()
        assert authorized_store.count() == 0

    async def test_dry_run_still_checks_authorization(
        self, store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        config = sync_config.model_copy(update={"dry_run": True})
        sync = Synchronizer(store, config, feed=make_feed())
        with pytest.raises(AuthorizationError):
            await sync.synchronize()

    async def test_shutdown_between_chunks(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        channel = MagicMock()
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        async def submit_then_stop(identity: str, chunk: list) -> object:
            sync.request_shutdown()
            return make_receipt(1, records=len(chunk))

        channel.batch_upsert = AsyncMock(side_effect=submit_then_stop)

        report = await sync.synchronize()

        assert report.aborted
        assert len(report.chunks) == 1
        assert report.chunks[0].succeeded
        assert channel.batch_upsert.await_count == 1


# ============================================================================
# run() Tests
# ============================================================================


class TestRun:
    async def test_persists_snapshot(
        self, sync_config: SynchronizerConfig, tmp_path: Path
    ) -> None:
        path = tmp_path / "registry.json"
        store = RegistryStore(
            OWNER,
            config=RegistryConfig(owner=OWNER, snapshot=SnapshotConfig(path=path)),
            clock=lambda: NOW,
        )
        store.add_updater(OWNER, UPDATER)
        sync = Synchronizer(store, sync_config, feed=make_feed())

        await sync.run()

        restored = RegistryStore("anyone")
        restored.load_snapshot(path)
        assert restored.count() == 3

    async def test_dry_run_does_not_persist(
        self, sync_config: SynchronizerConfig, tmp_path: Path
    ) -> None:
        path = tmp_path / "registry.json"
        store = RegistryStore(
            OWNER, config=RegistryConfig(owner=OWNER, snapshot=SnapshotConfig(path=path))
        )
        config = sync_config.model_copy(update={"identity": OWNER, "dry_run": True})
        sync = Synchronizer(store, config, feed=make_feed())

        await sync.run()

        assert not path.exists()

    async def test_all_chunks_failed_raises(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
    ) -> None:
        channel = _mock_channel(AuthorizationError("revoked"), AuthorizationError("revoked"))
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        with pytest.raises(SynchronizationError, match="AuthorizationError"):
            await sync.run()
        assert sync.last_report is not None
        assert sync.last_report.chunks_failed == 2

    async def test_partial_failure_does_not_raise(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
    ) -> None:
        rejection = InvalidUptimeError(RecordViolation.INVALID_UPTIME, "A" * 40)
        channel = _mock_channel(rejection, make_receipt(1, records=1))
        sync = Synchronizer(authorized_store, sync_config, channel=channel, feed=make_feed())

        await sync.run()

        assert sync.last_report is not None
        assert sync.last_report.chunks_failed == 1

    async def test_empty_feed_does_not_raise(
        self, authorized_store: RegistryStore, sync_config: SynchronizerConfig
    ) -> None:
        sync = Synchronizer(authorized_store, sync_config, feed=make_feed([]))
        await sync.run()
        assert authorized_store.count() == 0

    async def test_verification_logged(
        self,
        authorized_store: RegistryStore,
        sync_config: SynchronizerConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        sync = Synchronizer(authorized_store, sync_config, feed=make_feed())

        with caplog.at_level(logging.INFO, logger="synchronizer"):
            await sync.run()

        messages = [r.getMessage() for r in caplog.records if r.name == "synchronizer"]
        assert "sync_completed" in messages
        assert "registry_verified" in messages
        assert messages.count("registry_sample") == 2
