"""Unit tests for services.synchronizer.utils module."""

from derepute.services.synchronizer.utils import ChunkOutcome, SyncPhase, SyncReport


class TestSyncReport:
    def test_empty(self) -> None:
        report = SyncReport()
        assert report.chunks_succeeded == 0
        assert report.chunks_failed == 0
        assert report.records_applied == 0
        assert report.retries == 0

    def test_aggregates(self) -> None:
        report = SyncReport(
            fetched=10,
            transformed=7,
            planned_chunks=3,
            chunks=[
                ChunkOutcome(index=0, size=3, succeeded=True, attempts=3, backoff_s=3.0),
                ChunkOutcome(index=1, size=3, succeeded=False, attempts=1, error="x"),
                ChunkOutcome(index=2, size=1, succeeded=True, attempts=1),
            ],
        )
        assert report.discarded == 3
        assert report.chunks_succeeded == 2
        assert report.chunks_failed == 1
        assert report.records_applied == 4
        assert report.retries == 2

    def test_dry_run_attempts_do_not_count_as_retries(self) -> None:
        report = SyncReport(chunks=[ChunkOutcome(index=0, size=5, succeeded=True, attempts=0)])
        assert report.retries == 0
        assert report.records_applied == 5

    def test_summary_keys(self) -> None:
        summary = SyncReport(fetched=1, aborted=True).summary()
        assert summary["fetched"] == 1
        assert summary["aborted"] is True
        assert set(summary) >= {"chunks_planned", "records_applied", "dry_run"}


class TestSyncPhase:
    def test_values(self) -> None:
        assert SyncPhase.SUBMITTING == "submitting"
        assert SyncPhase.DONE.value == "done"
