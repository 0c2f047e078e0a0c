"""Unit tests for the run statistics aggregator."""

from __future__ import annotations

import dataclasses
import threading

import pytest

from clair_load_test.stats import StatsAggregator, StatsSnapshot


class TestStatsAggregator:
    """Tests for StatsAggregator."""

    def test_empty_snapshot(self) -> None:
        """Test a fresh aggregator reports zeros everywhere."""
        snapshot = StatsAggregator().snapshot()

        assert snapshot == StatsSnapshot()
        assert snapshot.average_index_report_request_latency_milliseconds == 0.0
        assert snapshot.average_vulnerability_report_request_latency_milliseconds == 0.0

    def test_records_index_report_attempts(self) -> None:
        """Test index report attempts update count, latency and failures."""
        stats = StatsAggregator()

        stats.record_index_report(10, success=True)
        stats.record_index_report(30, success=False)
        snapshot = stats.snapshot()

        assert snapshot.total_index_report_requests == 2
        assert snapshot.total_index_report_request_latency_milliseconds == 40
        assert snapshot.non_2XX_index_report_responses == 1
        assert snapshot.total_vulnerability_report_requests == 0
        assert snapshot.non_2XX_vulnerability_report_responses == 0

    def test_records_vulnerability_report_attempts(self) -> None:
        """Test vulnerability report attempts do not touch index counters."""
        stats = StatsAggregator()

        stats.record_vulnerability_report(5, success=False)
        snapshot = stats.snapshot()

        assert snapshot.total_vulnerability_report_requests == 1
        assert snapshot.total_vulnerability_report_request_latency_milliseconds == 5
        assert snapshot.non_2XX_vulnerability_report_responses == 1
        assert snapshot.total_index_report_requests == 0
        assert snapshot.non_2XX_index_report_responses == 0

    def test_zero_latency_is_accepted(self) -> None:
        """Test sub-millisecond requests are recorded as zero."""
        stats = StatsAggregator()

        stats.record_index_report(0, success=True)

        assert stats.snapshot().total_index_report_requests == 1

    @pytest.mark.parametrize(
        "method",
        ["record_index_report", "record_vulnerability_report"],
    )
    def test_negative_latency_is_rejected(self, method: str) -> None:
        """Test negative latencies raise instead of being clamped."""
        stats = StatsAggregator()

        with pytest.raises(ValueError, match="non-negative"):
            getattr(stats, method)(-1, success=True)

        assert stats.snapshot() == StatsSnapshot()

    def test_concurrent_records_are_not_lost(self) -> None:
        """Test every concurrent record is reflected in the snapshot."""
        stats = StatsAggregator()
        threads_count = 16
        per_thread = 2_000
        barrier = threading.Barrier(threads_count)

        def worker(index: int) -> None:
            barrier.wait()
            for i in range(per_thread):
                success = (i + index) % 4 != 0
                stats.record_index_report(1, success)
                stats.record_vulnerability_report(2, success)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = stats.snapshot()
        total = threads_count * per_thread
        assert snapshot.total_index_report_requests == total
        assert snapshot.total_index_report_request_latency_milliseconds == total
        assert snapshot.total_vulnerability_report_requests == total
        assert snapshot.total_vulnerability_report_request_latency_milliseconds == 2 * total
        assert snapshot.non_2XX_index_report_responses == total // 4
        assert snapshot.non_2XX_vulnerability_report_responses == total // 4


class TestStatsSnapshot:
    """Tests for StatsSnapshot."""

    def test_snapshot_is_immutable(self) -> None:
        """Test snapshots cannot be modified after the fact."""
        snapshot = StatsAggregator().snapshot()

        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.total_index_report_requests = 3  # type: ignore[misc]

    def test_snapshot_is_detached_from_aggregator(self) -> None:
        """Test later records do not change an existing snapshot."""
        stats = StatsAggregator()
        stats.record_index_report(7, success=True)
        snapshot = stats.snapshot()

        stats.record_index_report(7, success=True)

        assert snapshot.total_index_report_requests == 1

    def test_to_dict_includes_counters_and_averages(self) -> None:
        """Test the serialised form carries every counter and derived averages."""
        snapshot = StatsSnapshot(
            total_index_report_requests=4,
            total_index_report_request_latency_milliseconds=100,
            non_2XX_index_report_responses=1,
            total_vulnerability_report_requests=2,
            total_vulnerability_report_request_latency_milliseconds=30,
            non_2XX_vulnerability_report_responses=0,
        )

        payload = snapshot.to_dict()

        assert payload == {
            "total_index_report_requests": 4,
            "total_index_report_request_latency_milliseconds": 100,
            "non_2XX_index_report_responses": 1,
            "total_vulnerability_report_requests": 2,
            "total_vulnerability_report_request_latency_milliseconds": 30,
            "non_2XX_vulnerability_report_responses": 0,
            "average_index_report_request_latency_milliseconds": 25.0,
            "average_vulnerability_report_request_latency_milliseconds": 15.0,
        }
