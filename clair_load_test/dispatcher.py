"""Bounded-concurrency feed loop that keeps a report pipeline busy until a deadline."""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterator, Protocol, Sequence

from .config import check_run_limits
from .pipeline import StageError
from .stats import StatsAggregator, StatsSnapshot

LOGGER = logging.getLogger("clair_load_test.dispatcher")

ACQUIRE_POLL_INTERVAL_S = 0.05


class AdmissionError(RuntimeError):
    """Raised when a concurrency slot can no longer be acquired because the run was cancelled."""


class Pipeline(Protocol):
    def run(
        self,
        artifact: str,
        stats: StatsAggregator,
        cancel_event: threading.Event | None = None,
    ) -> None: ...


def round_robin(artifacts: Sequence[str]) -> Iterator[str]:
    """Yield the artifacts in order, starting over after the last one, forever."""
    return itertools.cycle(tuple(artifacts))


class Dispatcher:
    """Feed artifacts round-robin into at most ``concurrency`` running pipelines.

    Feeding stops as soon as ``timeout_s`` elapses; tasks that were already
    admitted run to completion and are part of the returned snapshot. Stage
    failures are logged per artifact and otherwise ignored. Any other
    exception raised by a task cancels the run and is re-raised once every
    in-flight task has finished.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        concurrency: int,
        timeout_s: float,
        poll_interval_s: float = ACQUIRE_POLL_INTERVAL_S,
    ) -> None:
        self._pipeline = pipeline
        self._concurrency = concurrency
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._cancel_event = threading.Event()
        self._inflight_lock = threading.Lock()
        self._inflight: set[Future[None]] = set()
        self._launched = 0

    @property
    def launched(self) -> int:
        """Number of tasks started by the most recent run."""
        return self._launched

    def cancel(self) -> None:
        self._cancel_event.set()

    def run(self, artifacts: Sequence[str]) -> StatsSnapshot:
        check_run_limits(artifacts, self._concurrency, self._timeout_s)

        stats = StatsAggregator()
        slots = threading.BoundedSemaphore(self._concurrency)
        deadline = threading.Event()
        timer = threading.Timer(self._timeout_s, deadline.set)
        timer.daemon = True
        self._launched = 0

        LOGGER.info(
            "feeding %d container(s) with concurrency=%d for %.2fs",
            len(artifacts),
            self._concurrency,
            self._timeout_s,
        )
        executor = ThreadPoolExecutor(
            max_workers=self._concurrency,
            thread_name_prefix="clair-load-test",
        )
        admission_error: AdmissionError | None = None
        timer.start()
        try:
            for artifact in round_robin(artifacts):
                if not self._acquire(slots, deadline):
                    break
                self._launch(executor, slots, artifact, stats)
        except AdmissionError as exc:
            admission_error = exc
        finally:
            timer.cancel()
            LOGGER.info("draining %d in-flight task(s)", len(self._snapshot_inflight()))
            hard_error = self._drain()
            executor.shutdown(wait=True)
            # A hard failure or cancel must not leak into the next run.
            self._cancel_event.clear()

        # A task failure outranks the admission failure it caused.
        if hard_error is not None:
            raise hard_error
        if admission_error is not None:
            raise admission_error

        snapshot = stats.snapshot()
        LOGGER.info(
            "run finished: %d task(s), %d index report(s), %d vulnerability report(s)",
            self._launched,
            snapshot.total_index_report_requests,
            snapshot.total_vulnerability_report_requests,
        )
        return snapshot

    def _acquire(self, slots: threading.BoundedSemaphore, deadline: threading.Event) -> bool:
        """Wait for a free slot; ``False`` once the deadline has fired."""
        while True:
            if deadline.is_set():
                return False
            if self._cancel_event.is_set():
                raise AdmissionError("run cancelled while waiting for a concurrency slot")
            if slots.acquire(timeout=self._poll_interval_s):
                if deadline.is_set():
                    slots.release()
                    return False
                return True

    def _launch(
        self,
        executor: ThreadPoolExecutor,
        slots: threading.BoundedSemaphore,
        artifact: str,
        stats: StatsAggregator,
    ) -> None:
        try:
            future = executor.submit(self._run_task, slots, artifact, stats)
        except BaseException:
            slots.release()
            raise
        self._launched += 1
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._on_task_done)

    def _run_task(self, slots: threading.BoundedSemaphore, artifact: str, stats: StatsAggregator) -> None:
        try:
            self._pipeline.run(artifact, stats, self._cancel_event)
        except StageError as exc:
            LOGGER.error("container=%s stage=%s: %s", artifact, exc.stage, exc)
            return
        finally:
            slots.release()
        LOGGER.debug("container=%s: completed", artifact)

    def _on_task_done(self, future: Future[None]) -> None:
        if not future.cancelled() and future.exception() is not None:
            self._cancel_event.set()
            return
        with self._inflight_lock:
            self._inflight.discard(future)

    def _snapshot_inflight(self) -> list[Future[None]]:
        with self._inflight_lock:
            return list(self._inflight)

    def _drain(self) -> BaseException | None:
        """Wait for every launched task and return the first hard failure, if any."""
        pending = self._snapshot_inflight()
        wait(pending)
        hard_error: BaseException | None = None
        for future in pending:
            exc = future.exception()
            if exc is None:
                continue
            LOGGER.error("task failed unexpectedly", exc_info=exc)
            if hard_error is None:
                hard_error = exc
        with self._inflight_lock:
            self._inflight.clear()
        return hard_error


__all__ = ["AdmissionError", "Dispatcher", "Pipeline", "round_robin"]
