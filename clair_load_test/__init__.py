"""
Load generator for Clair report endpoints.

This package feeds container references round-robin into a bounded pool of
report pipelines (manifest, index report, vulnerability report and optional
delete) until a deadline passes, and summarises request counts, latencies and
non-2XX responses per stage.
"""

from .dispatcher import AdmissionError, Dispatcher
from .pipeline import ReportPipeline, StageError
from .stats import StatsAggregator, StatsSnapshot

__all__ = [
    "AdmissionError",
    "Dispatcher",
    "ReportPipeline",
    "StageError",
    "StatsAggregator",
    "StatsSnapshot",
]
