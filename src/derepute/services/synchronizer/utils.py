"""Synchronizer run state and reporting types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from derepute.core.channel import Receipt


class SyncPhase(StrEnum):
    """Position of the synchronizer in its per-run state machine.

    ``FETCHING -> TRANSFORMING -> BATCHING -> SUBMITTING -> CONFIRMED | FAILED``,
    looping back to ``SUBMITTING`` for the next chunk, then ``DONE``.
    """

    IDLE = "idle"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    BATCHING = "batching"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DONE = "done"


@dataclass(slots=True)
class ChunkOutcome:
    """Result of submitting one chunk, after any retries.

    Attributes:
        index: Position of the chunk in the run (from 0).
        size: Number of records in the chunk.
        succeeded: Whether the chunk was committed (or logged, in a dry run).
        attempts: Submissions made, including the first one (0 in a dry run).
        backoff_s: Total seconds slept between attempts.
        receipt: Write channel receipt of the committed attempt.
        error: Message of the final error when the chunk failed.
        error_type: Class name of that error.
    """

    index: int
    size: int
    succeeded: bool
    attempts: int
    backoff_s: float = 0.0
    receipt: Receipt | None = None
    error: str | None = None
    error_type: str | None = None


@dataclass(slots=True)
class SyncReport:
    """Terminal summary of one synchronization run."""

    fetched: int = 0
    transformed: int = 0
    planned_chunks: int = 0
    chunks: list[ChunkOutcome] = field(default_factory=list)
    aborted: bool = False
    dry_run: bool = False

    @property
    def discarded(self) -> int:
        return self.fetched - self.transformed

    @property
    def chunks_succeeded(self) -> int:
        return sum(1 for c in self.chunks if c.succeeded)

    @property
    def chunks_failed(self) -> int:
        return sum(1 for c in self.chunks if not c.succeeded)

    @property
    def records_applied(self) -> int:
        """Records committed (or that would have been, in a dry run)."""
        return sum(c.size for c in self.chunks if c.succeeded)

    @property
    def retries(self) -> int:
        return sum(max(c.attempts - 1, 0) for c in self.chunks)

    def summary(self) -> dict[str, Any]:
        """Flat mapping suitable for a structured log line."""
        return {
            "fetched": self.fetched,
            "transformed": self.transformed,
            "discarded": self.discarded,
            "chunks_planned": self.planned_chunks,
            "chunks_succeeded": self.chunks_succeeded,
            "chunks_failed": self.chunks_failed,
            "records_applied": self.records_applied,
            "retries": self.retries,
            "aborted": self.aborted,
            "dry_run": self.dry_run,
        }
