from __future__ import annotations

import threading
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the run counters, safe to serialise."""

    total_index_report_requests: int = 0
    total_index_report_request_latency_milliseconds: int = 0
    non_2XX_index_report_responses: int = 0
    total_vulnerability_report_requests: int = 0
    total_vulnerability_report_request_latency_milliseconds: int = 0
    non_2XX_vulnerability_report_responses: int = 0

    @property
    def average_index_report_request_latency_milliseconds(self) -> float:
        return _average(
            self.total_index_report_request_latency_milliseconds,
            self.total_index_report_requests,
        )

    @property
    def average_vulnerability_report_request_latency_milliseconds(self) -> float:
        return _average(
            self.total_vulnerability_report_request_latency_milliseconds,
            self.total_vulnerability_report_requests,
        )

    def to_dict(self) -> dict[str, int | float]:
        payload: dict[str, int | float] = asdict(self)
        payload["average_index_report_request_latency_milliseconds"] = (
            self.average_index_report_request_latency_milliseconds
        )
        payload["average_vulnerability_report_request_latency_milliseconds"] = (
            self.average_vulnerability_report_request_latency_milliseconds
        )
        return payload


class StatsAggregator:
    """Thread-safe request counters shared by every task of one run.

    Each ``record_*`` call updates the request count, the summed latency and
    (on failure) the non-success counter under a single lock, so a snapshot
    never observes half of a record.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._index_requests = 0
        self._index_latency_ms = 0
        self._index_failures = 0
        self._vuln_requests = 0
        self._vuln_latency_ms = 0
        self._vuln_failures = 0

    def record_index_report(self, latency_ms: int, success: bool) -> None:
        _check_latency(latency_ms)
        with self._lock:
            self._index_requests += 1
            self._index_latency_ms += latency_ms
            if not success:
                self._index_failures += 1

    def record_vulnerability_report(self, latency_ms: int, success: bool) -> None:
        _check_latency(latency_ms)
        with self._lock:
            self._vuln_requests += 1
            self._vuln_latency_ms += latency_ms
            if not success:
                self._vuln_failures += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                total_index_report_requests=self._index_requests,
                total_index_report_request_latency_milliseconds=self._index_latency_ms,
                non_2XX_index_report_responses=self._index_failures,
                total_vulnerability_report_requests=self._vuln_requests,
                total_vulnerability_report_request_latency_milliseconds=self._vuln_latency_ms,
                non_2XX_vulnerability_report_responses=self._vuln_failures,
            )


def _check_latency(latency_ms: int) -> None:
    if latency_ms < 0:
        raise ValueError(f"latency must be non-negative, got {latency_ms}ms")


def _average(total: int, count: int) -> float:
    if count == 0:
        return 0.0
    return total / count


__all__ = ["StatsAggregator", "StatsSnapshot"]
