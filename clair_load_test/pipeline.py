from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests
from requests.adapters import HTTPAdapter

from .auth import TokenError, create_token
from .collector import RequestSample
from .manifest import ManifestError
from .stats import StatsAggregator

LOGGER = logging.getLogger("clair_load_test.pipeline")

STAGE_MANIFEST = "manifest"
STAGE_TOKEN = "token"
STAGE_INDEX_REPORT = "index_report"
STAGE_VULNERABILITY_REPORT = "vulnerability_report"
STAGE_DELETE = "delete"

STAGE_ACTIONS: dict[str, str] = {
    STAGE_MANIFEST: "generate manifest",
    STAGE_TOKEN: "create token",
    STAGE_INDEX_REPORT: "create index report",
    STAGE_VULNERABILITY_REPORT: "get vulnerability report",
    STAGE_DELETE: "delete index report",
}

INDEX_REPORT_PATH = "/indexer/api/v1/index_report"
VULNERABILITY_REPORT_PATH = "/matcher/api/v1/vulnerability_report"

ManifestSource = Callable[[str], bytes]
TokenFactory = Callable[[str], str]
SampleCallback = Callable[[RequestSample], None]


class StageError(Exception):
    """A single pipeline stage failed for one artifact."""

    def __init__(self, artifact: str, stage: str, reason: str) -> None:
        self.artifact = artifact
        self.stage = stage
        self.reason = reason
        super().__init__(f"could not {STAGE_ACTIONS.get(stage, stage)}: {reason}")


@dataclass(frozen=True)
class IndexReportResponse:
    manifest_hash: str

    @classmethod
    def from_payload(cls, payload: Any) -> "IndexReportResponse":
        if not isinstance(payload, dict):
            raise ValueError("index report response is not a JSON object")
        manifest_hash = payload.get("manifest_hash")
        if not isinstance(manifest_hash, str) or not manifest_hash:
            raise ValueError("index report response has no manifest_hash")
        return cls(manifest_hash=manifest_hash)


def create_session(pool_size: int) -> requests.Session:
    """Session whose connection pool can serve ``pool_size`` workers at once."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=0,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class ReportPipeline:
    """Runs manifest -> index report -> vulnerability report (-> delete) for one artifact."""

    def __init__(
        self,
        base_url: str,
        psk: str,
        session: requests.Session,
        manifest_source: ManifestSource,
        token_factory: TokenFactory = create_token,
        delete: bool = False,
        request_timeout_s: float = 60.0,
        sample_callback: SampleCallback | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._psk = psk
        self._session = session
        self._manifest_source = manifest_source
        self._token_factory = token_factory
        self._delete = delete
        self._request_timeout_s = request_timeout_s
        self._sample_callback = sample_callback

    def run(
        self,
        artifact: str,
        stats: StatsAggregator,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Raise :class:`StageError` on the first failing stage."""
        _check_cancelled(artifact, STAGE_MANIFEST, cancel_event)
        try:
            manifest = self._manifest_source(artifact)
        except ManifestError as exc:
            raise StageError(artifact, STAGE_MANIFEST, str(exc)) from exc
        LOGGER.debug("got manifest for %s (%d bytes)", artifact, len(manifest))

        _check_cancelled(artifact, STAGE_TOKEN, cancel_event)
        try:
            token = self._token_factory(self._psk)
        except TokenError as exc:
            raise StageError(artifact, STAGE_TOKEN, str(exc)) from exc

        _check_cancelled(artifact, STAGE_INDEX_REPORT, cancel_event)
        manifest_hash = self._create_index_report(artifact, manifest, token, stats)

        _check_cancelled(artifact, STAGE_VULNERABILITY_REPORT, cancel_event)
        self._get_vulnerability_report(artifact, manifest_hash, token, stats)

        if self._delete:
            _check_cancelled(artifact, STAGE_DELETE, cancel_event)
            self._delete_index_report(artifact, manifest_hash, token)

    def _create_index_report(
        self,
        artifact: str,
        manifest: bytes,
        token: str,
        stats: StatsAggregator,
    ) -> str:
        sent_ts = time.time()
        started = time.perf_counter()
        response = self._request(
            artifact,
            STAGE_INDEX_REPORT,
            "POST",
            INDEX_REPORT_PATH,
            token,
            data=manifest,
        )
        latency_ms = _elapsed_ms(started)
        try:
            success = response.status_code == requests.codes.created
            stats.record_index_report(latency_ms, success)
            self._emit(artifact, STAGE_INDEX_REPORT, response.status_code, latency_ms, success, sent_ts)
            if not success:
                raise StageError(
                    artifact,
                    STAGE_INDEX_REPORT,
                    f"non 201 response from indexer {response.status_code}",
                )
            try:
                report = IndexReportResponse.from_payload(response.json())
            except ValueError as exc:
                raise StageError(artifact, STAGE_INDEX_REPORT, str(exc)) from exc
        finally:
            response.close()
        return report.manifest_hash

    def _get_vulnerability_report(
        self,
        artifact: str,
        manifest_hash: str,
        token: str,
        stats: StatsAggregator,
    ) -> None:
        sent_ts = time.time()
        started = time.perf_counter()
        response = self._request(
            artifact,
            STAGE_VULNERABILITY_REPORT,
            "GET",
            f"{VULNERABILITY_REPORT_PATH}/{manifest_hash}",
            token,
        )
        latency_ms = _elapsed_ms(started)
        try:
            success = response.status_code == requests.codes.ok
            stats.record_vulnerability_report(latency_ms, success)
            self._emit(
                artifact, STAGE_VULNERABILITY_REPORT, response.status_code, latency_ms, success, sent_ts
            )
            if not success:
                raise StageError(
                    artifact,
                    STAGE_VULNERABILITY_REPORT,
                    f"non 200 response from matcher {response.status_code}",
                )
        finally:
            response.close()

    def _delete_index_report(self, artifact: str, manifest_hash: str, token: str) -> None:
        # Deletes are not part of the run statistics.
        LOGGER.debug("deleting index report %s for %s", manifest_hash, artifact)
        response = self._request(
            artifact,
            STAGE_DELETE,
            "DELETE",
            f"{INDEX_REPORT_PATH}/{manifest_hash}",
            token,
        )
        try:
            if response.status_code != requests.codes.no_content:
                raise StageError(
                    artifact,
                    STAGE_DELETE,
                    f"non 204 response from indexer while deleting {response.status_code}",
                )
        finally:
            response.close()

    def _request(
        self,
        artifact: str,
        stage: str,
        method: str,
        path: str,
        token: str,
        data: bytes | None = None,
    ) -> requests.Response:
        try:
            return self._session.request(
                method,
                self._base_url + path,
                data=data,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._request_timeout_s,
            )
        except requests.RequestException as exc:
            raise StageError(artifact, stage, f"request failed: {exc}") from exc

    def _emit(
        self,
        artifact: str,
        stage: str,
        status_code: int,
        latency_ms: int,
        success: bool,
        sent_ts: float,
    ) -> None:
        if self._sample_callback is None:
            return
        self._sample_callback(
            RequestSample(
                artifact=artifact,
                stage=stage,
                status_code=status_code,
                latency_ms=latency_ms,
                success=success,
                sent_ts=sent_ts,
            )
        )


def _check_cancelled(artifact: str, stage: str, cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise StageError(artifact, stage, "run cancelled")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "INDEX_REPORT_PATH",
    "IndexReportResponse",
    "ReportPipeline",
    "STAGE_ACTIONS",
    "STAGE_DELETE",
    "STAGE_INDEX_REPORT",
    "STAGE_MANIFEST",
    "STAGE_TOKEN",
    "STAGE_VULNERABILITY_REPORT",
    "StageError",
    "VULNERABILITY_REPORT_PATH",
    "create_session",
]
