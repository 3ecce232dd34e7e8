"""
Synchronizer service for Derepute.

Pulls the ranked relay feed and applies it to the registry as a sequence
of atomic batch writes through the serialized
[WriteChannel][derepute.core.channel.WriteChannel].

The cycle proceeds through:

1. **Pre-flight**: fail fast with
   [AuthorizationError][derepute.core.exceptions.AuthorizationError] when the
   configured identity may not write.
2. **Fetching**: the top ``source.max_records`` relays by ``source.ranking``,
   retried with exponential backoff on transient feed errors.
3. **Transforming**: [transform_entries()][derepute.services.common.transform.transform_entries]
   drops malformed and unstorable entries and applies the stable local order.
4. **Batching**: contiguous chunks of ``submit.chunk_size`` records.
5. **Submitting**: one chunk at a time; chunk *i + 1* is never submitted
   before chunk *i* is confirmed or has exhausted its retries. Transient
   channel errors and submission timeouts are retried with exponential
   backoff; any other rejection is recorded and the run moves on.

A run can be aborted by a shutdown request only between chunks. Because
every write fully replaces the record addressed by its fingerprint, a
partial run is recovered by simply running again; no cursor is kept.

Note:
    The run raises [SynchronizationError][derepute.core.exceptions.SynchronizationError]
    only when chunks were attempted and none of them succeeded.

See Also:
    [SynchronizerConfig][derepute.services.synchronizer.SynchronizerConfig]:
        Configuration model for this service.
    [SyncReport][derepute.services.synchronizer.SyncReport]: Per-run summary.

Examples:
    ```python
    from derepute.core.registry import RegistryStore
    from derepute.services.synchronizer import Synchronizer

    store = RegistryStore.from_yaml("config/registry.yaml")
    sync = Synchronizer.from_yaml("config/services/synchronizer.yaml", store=store)

    async with sync:
        await sync.run()
    ```
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import aiohttp

from derepute.core.base_service import BaseService
from derepute.core.channel import WriteChannel
from derepute.core.exceptions import (
    AuthorizationError,
    DereputeError,
    FeedError,
    FeedUnavailableError,
    RateLimitedError,
    SynchronizationError,
    TransientChannelError,
)
from derepute.models.constants import ServiceName
from derepute.services.common.feed import OnionooClient
from derepute.services.common.transform import (
    chunk_records,
    summarize_records,
    transform_entries,
)

from .configs import SynchronizerConfig
from .utils import ChunkOutcome, SyncPhase, SyncReport


if TYPE_CHECKING:
    from derepute.core.registry import RegistryStore
    from derepute.models.relay_record import RelayRecord


_TRANSIENT_FEED_ERRORS = (FeedUnavailableError, TimeoutError, aiohttp.ClientConnectionError)
_TRANSIENT_SUBMIT_ERRORS = (TransientChannelError, TimeoutError)


class Synchronizer(BaseService[SynchronizerConfig]):
    """Feed-to-registry batch synchronization service.

    Args:
        store: Registry the records are written to.
        config: Service configuration.
        channel: Write channel in front of *store*; one is created from
            ``store.config.channel`` when omitted.
        feed: Feed client; one is created from ``config.feed`` when omitted.
    """

    SERVICE_NAME = ServiceName.SYNCHRONIZER
    CONFIG_CLASS = SynchronizerConfig

    def __init__(
        self,
        store: RegistryStore,
        config: SynchronizerConfig | None = None,
        *,
        channel: WriteChannel | None = None,
        feed: OnionooClient | None = None,
    ) -> None:
        super().__init__(store=store, config=config)
        self._channel = channel or WriteChannel(store)
        self._feed = feed or OnionooClient(self._config.feed)
        self._phase = SyncPhase.IDLE
        self._last_report: SyncReport | None = None

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    # -------------------------------------------------------------------------
    # Service cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Execute one synchronization run and publish its outcome.

        Raises:
            AuthorizationError: If the identity may not write to the registry.
            FeedError: If the feed stayed unavailable after all retries.
            SynchronizationError: If chunks were attempted and none succeeded.
        """
        if self._store.refresh():
            self._logger.info("registry_reloaded", records=self._store.count())

        report = await self.synchronize()

        self._record_metrics(report)
        self._logger.info("sync_completed", **report.summary())

        if self._config.verify.enabled:
            self._verify()

        if not report.dry_run and report.records_applied and self._store.persist():
            self._logger.info("registry_persisted", records=self._store.count())

        if report.chunks and report.chunks_succeeded == 0:
            raise SynchronizationError(
                f"all {report.chunks_failed} attempted chunks failed "
                f"({report.chunks[-1].error_type}: {report.chunks[-1].error})"
            )

    async def synchronize(self) -> SyncReport:
        """Run the fetch, transform, batch and submit pipeline once.

        Returns:
            The run's [SyncReport][derepute.services.synchronizer.SyncReport].
            Failed chunks are reported, not raised.
        """
        self._preflight()
        report = SyncReport(dry_run=self._config.dry_run)

        self._phase = SyncPhase.FETCHING
        entries = await self._fetch()
        report.fetched = len(entries)

        self._phase = SyncPhase.TRANSFORMING
        records = transform_entries(
            entries,
            now=int(time.time()),
            uptime=self._config.uptime,
            sort_by=self._config.ordering.sort_by,
            descending=self._config.ordering.descending,
        )
        report.transformed = len(records)
        stats = summarize_records(records)
        self._logger.info(
            "records_transformed",
            fetched=report.fetched,
            valid=stats.total,
            running=stats.running,
            total_bandwidth=stats.total_bandwidth,
            average_uptime=round(stats.average_uptime, 1),
            top_countries=dict(stats.top_countries(5)),
        )

        self._phase = SyncPhase.BATCHING
        chunks = chunk_records(records, self._config.submit.chunk_size)
        report.planned_chunks = len(chunks)

        for index, chunk in enumerate(chunks):
            if index > 0 and self._config.submit.inter_chunk_delay > 0:
                await self.wait(self._config.submit.inter_chunk_delay)
            if not self.is_running:
                report.aborted = True
                self._logger.warning(
                    "sync_aborted", completed=len(report.chunks), remaining=len(chunks) - index
                )
                break

            self._phase = SyncPhase.SUBMITTING
            outcome = await self._submit_chunk(index, chunk, total=len(chunks))
            report.chunks.append(outcome)
            self._phase = SyncPhase.CONFIRMED if outcome.succeeded else SyncPhase.FAILED

        self._phase = SyncPhase.DONE
        self._last_report = report
        return report

    # -------------------------------------------------------------------------
    # Pipeline steps
    # -------------------------------------------------------------------------

    def _preflight(self) -> None:
        identity = self._config.identity
        if not self._store.authorization.is_authorized(identity):
            raise AuthorizationError(
                f"{identity!r} is neither the registry owner nor an authorized updater"
            )
        self._logger.debug("preflight_passed", identity=identity)

    async def _fetch(self) -> list[dict[str, Any]]:
        """Fetch the ranked feed, retrying transient failures.

        Raises:
            FeedError: When the feed rejects the request or stays unavailable.
        """
        retry = self._config.retry
        source = self._config.source
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(
                    self._feed.fetch_top_relays(limit=source.max_records, order=source.ranking),
                    timeout=self._config.feed.timeout,
                )
            except _TRANSIENT_FEED_ERRORS as e:
                if attempt > retry.max_retries:
                    raise FeedError(f"feed unavailable after {attempt} attempts: {e}") from e
                delay = retry.delay(attempt)
                self._logger.warning(
                    "feed_retry", attempt=attempt, delay_s=delay, error=str(e) or type(e).__name__
                )
                await asyncio.sleep(delay)

    async def _submit_chunk(
        self, index: int, chunk: list[RelayRecord], *, total: int
    ) -> ChunkOutcome:
        """Submit one chunk until it is committed, rejected, or out of retries.

        Backoff sleeps are not interruptible: once a chunk is being
        submitted, its outcome is always determined before the run stops.
        """
        log = self._logger.bind(index=index, size=len(chunk))
        if self._config.dry_run:
            log.info(
                "chunk_dry_run",
                total=total,
                first=chunk[0].fingerprint,
                last=chunk[-1].fingerprint,
            )
            return ChunkOutcome(index=index, size=len(chunk), succeeded=True, attempts=0)

        retry = self._config.retry
        identity = self._config.identity
        attempts = 0
        backoff = 0.0

        while True:
            attempts += 1
            try:
                receipt = await asyncio.wait_for(
                    self._channel.batch_upsert(identity, chunk),
                    timeout=self._config.submit.timeout,
                )
            except _TRANSIENT_SUBMIT_ERRORS as e:
                error = str(e) or type(e).__name__
                if attempts > retry.max_retries:
                    log.error(
                        "chunk_failed",
                        attempts=attempts,
                        error=error,
                        error_type=type(e).__name__,
                    )
                    return ChunkOutcome(
                        index=index,
                        size=len(chunk),
                        succeeded=False,
                        attempts=attempts,
                        backoff_s=backoff,
                        error=error,
                        error_type=type(e).__name__,
                    )
                delay = retry.delay(attempts)
                if isinstance(e, RateLimitedError):
                    delay = max(delay, e.retry_after)
                log.warning("chunk_retry", attempt=attempts, delay_s=delay, error=error)
                await asyncio.sleep(delay)
                backoff += delay
            except DereputeError as e:
                log.error(
                    "chunk_rejected",
                    attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return ChunkOutcome(
                    index=index,
                    size=len(chunk),
                    succeeded=False,
                    attempts=attempts,
                    backoff_s=backoff,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                log.info(
                    "chunk_confirmed",
                    total=total,
                    attempts=attempts,
                    sequence=receipt.sequence,
                )
                return ChunkOutcome(
                    index=index,
                    size=len(chunk),
                    succeeded=True,
                    attempts=attempts,
                    backoff_s=backoff,
                    receipt=receipt,
                )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _verify(self) -> None:
        count = self._store.count()
        sample = self._store.records_between(0, self._config.verify.sample)
        self._logger.info("registry_verified", count=count, sampled=len(sample))
        for record in sample:
            self._logger.info(
                "registry_sample",
                fingerprint=record.fingerprint,
                nickname=record.nickname,
                uptime=record.uptime,
                country=record.country,
            )

    def _record_metrics(self, report: SyncReport) -> None:
        self.set_gauge("fetched", report.fetched)
        self.set_gauge("transformed", report.transformed)
        self.set_gauge("chunks_succeeded", report.chunks_succeeded)
        self.set_gauge("chunks_failed", report.chunks_failed)
        self.set_gauge("registry_size", self._store.count())
        self.inc_counter("records_applied", report.records_applied)
        self.inc_counter("chunk_retries", report.retries)
