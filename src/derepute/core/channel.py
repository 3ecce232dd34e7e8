"""
Serialized write channel in front of the registry.

Every mutation of the [RegistryStore][derepute.core.registry.RegistryStore]
(record writes and administrative calls alike) is submitted through a
[WriteChannel][derepute.core.channel.WriteChannel], which holds an
``asyncio.Lock`` for the duration of exactly one store call. Calls are
therefore totally ordered by submission, whatever the caller.

The channel also models the two transient signals a slow, shared write
channel produces: a bounded wait for the lock
([ChannelTimeoutError][derepute.core.exceptions.ChannelTimeoutError]) and
a minimum spacing between committed writes
([RateLimitedError][derepute.core.exceptions.RateLimitedError]).

See Also:
    [Synchronizer][derepute.services.synchronizer.Synchronizer]: Submits
        chunks through the channel and retries transient errors.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, NamedTuple

from pydantic import BaseModel, Field

from .exceptions import ChannelTimeoutError, DereputeError, RateLimitedError
from .logger import Logger
from .metrics import CHANNEL_WRITES, REGISTRY_RECORDS


if TYPE_CHECKING:
    from derepute.models.relay_record import RelayRecord

    from .registry import RegistryStore


class WriteChannelConfig(BaseModel):
    """Timing limits of the serialized write channel."""

    acquire_timeout: float = Field(
        default=30.0, gt=0.0, description="Seconds to wait for the channel before timing out"
    )
    min_interval: float = Field(
        default=0.0,
        ge=0.0,
        description="Minimum seconds between two committed writes (0 = unthrottled)",
    )


class Receipt(NamedTuple):
    """Audit record returned for every committed write.

    Attributes:
        sequence: Position of the write in the channel's total order (from 1).
        operation: Store method that was executed.
        caller: Identity that submitted the write.
        records: Number of records written (0 for administrative calls).
        committed_at: Channel clock reading at commit time.
    """

    sequence: int
    operation: str
    caller: str
    records: int
    committed_at: float


class WriteChannel:
    """Single-writer boundary between callers and a registry store.

    Example:
        channel = WriteChannel(store)
        receipt = await channel.batch_upsert("sync-bot", chunk)
        receipt.sequence  # 1
    """

    def __init__(
        self,
        store: RegistryStore,
        config: WriteChannelConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config or store.config.channel
        self._clock = clock
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._last_commit: float | None = None
        self._logger = Logger("channel")

    @property
    def config(self) -> WriteChannelConfig:
        return self._config

    @property
    def store(self) -> RegistryStore:
        return self._store

    @property
    def sequence(self) -> int:
        """Number of writes committed through this channel."""
        return self._sequence

    async def _submit(
        self,
        operation: str,
        caller: str,
        call: Callable[[], Any],
        records: int = 0,
    ) -> Receipt:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self._config.acquire_timeout)
        except TimeoutError:
            CHANNEL_WRITES.labels(operation=operation, outcome="timeout").inc()
            raise ChannelTimeoutError(
                f"{operation}: write channel busy for {self._config.acquire_timeout}s"
            ) from None

        try:
            now = self._clock()
            if self._last_commit is not None and self._config.min_interval > 0:
                elapsed = now - self._last_commit
                if elapsed < self._config.min_interval:
                    CHANNEL_WRITES.labels(operation=operation, outcome="rate_limited").inc()
                    raise RateLimitedError(
                        f"{operation}: write submitted {elapsed:.3f}s after previous commit",
                        retry_after=self._config.min_interval - elapsed,
                    )
            try:
                call()
            except DereputeError:
                CHANNEL_WRITES.labels(operation=operation, outcome="rejected").inc()
                raise

            self._sequence += 1
            self._last_commit = self._clock()
            receipt = Receipt(
                sequence=self._sequence,
                operation=operation,
                caller=caller,
                records=records,
                committed_at=self._last_commit,
            )
        finally:
            self._lock.release()

        CHANNEL_WRITES.labels(operation=operation, outcome="committed").inc()
        REGISTRY_RECORDS.set(self._store.count())
        self._logger.debug(
            "write_committed", operation=operation, sequence=receipt.sequence, records=records
        )
        return receipt

    # -------------------------------------------------------------------------
    # Record Writes
    # -------------------------------------------------------------------------

    async def upsert(self, caller: str, record: RelayRecord) -> Receipt:
        """Submit [RegistryStore.upsert()][derepute.core.registry.RegistryStore.upsert]."""
        return await self._submit(
            "upsert", caller, lambda: self._store.upsert(caller, record), records=1
        )

    async def batch_upsert(self, caller: str, records: Sequence[RelayRecord]) -> Receipt:
        """Submit [RegistryStore.batch_upsert()][derepute.core.registry.RegistryStore.batch_upsert].

        Raises:
            ChannelTimeoutError: If the channel stayed busy past ``acquire_timeout``.
            RateLimitedError: If submitted sooner than ``min_interval`` after
                the previous commit.
            AuthorizationError: Propagated from the store.
            RecordValidationError: Propagated from the store; nothing written.
        """
        batch = list(records)
        return await self._submit(
            "batch_upsert",
            caller,
            lambda: self._store.batch_upsert(caller, batch),
            records=len(batch),
        )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def transfer_ownership(self, caller: str, new_owner: str | None) -> Receipt:
        return await self._submit(
            "transfer_ownership", caller, lambda: self._store.transfer_ownership(caller, new_owner)
        )

    async def add_updater(self, caller: str, who: str | None) -> Receipt:
        return await self._submit(
            "add_updater", caller, lambda: self._store.add_updater(caller, who)
        )

    async def remove_updater(self, caller: str, who: str | None) -> Receipt:
        return await self._submit(
            "remove_updater", caller, lambda: self._store.remove_updater(caller, who)
        )
