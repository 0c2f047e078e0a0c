from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from pathlib import Path

import pandas as pd

SAMPLE_COLUMNS = [
    "artifact",
    "stage",
    "status_code",
    "latency_ms",
    "success",
    "sent_ts",
]


@dataclass(frozen=True)
class RequestSample:
    artifact: str
    stage: str
    status_code: int
    latency_ms: int
    success: bool
    sent_ts: float


class RequestSampleCollector:
    """Keeps every counted request of a run for CSV export and charting."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: list[RequestSample] = []

    def __call__(self, sample: RequestSample) -> None:
        self.register(sample)

    def register(self, sample: RequestSample) -> None:
        with self._lock:
            self._samples.append(sample)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def build_dataframe(self) -> pd.DataFrame:
        with self._lock:
            rows = [asdict(sample) for sample in self._samples]
        if not rows:
            return pd.DataFrame(columns=SAMPLE_COLUMNS)
        df = pd.DataFrame(rows, columns=SAMPLE_COLUMNS)
        start = df["sent_ts"].min()
        df["elapsed_s"] = df["sent_ts"] - start
        return df

    def summaries(self) -> dict[str, dict[str, float]]:
        """Latency percentiles per stage, in milliseconds."""
        df = self.build_dataframe()
        summary: dict[str, dict[str, float]] = {}
        if df.empty:
            return summary
        for stage, group in df.groupby("stage"):
            latencies = group["latency_ms"].astype(float)
            summary[str(stage)] = {
                "count": int(len(group)),
                "errors": int((~group["success"].astype(bool)).sum()),
                "p50_ms": float(latencies.quantile(0.50)),
                "p95_ms": float(latencies.quantile(0.95)),
                "p99_ms": float(latencies.quantile(0.99)),
                "max_ms": float(latencies.max()),
            }
        return summary

    def write_csv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.build_dataframe().to_csv(path, index=False)
        return path


__all__ = ["RequestSample", "RequestSampleCollector", "SAMPLE_COLUMNS"]
