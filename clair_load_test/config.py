from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

DEFAULT_HOST = "http://localhost:6060/"
DEFAULT_TIMEOUT = "1m"
DEFAULT_REQUEST_TIMEOUT = "1m"
DEFAULT_CLAIRCTL = "clairctl"

# Environment variables backing each command-line flag.
ENV_HOST = "CLAIR_API"
ENV_CONTAINERS = "CONTAINERS"
ENV_CONCURRENCY = "CONCURRENCY"
ENV_PSK = "PSK"
ENV_DELETE = "DELETE"
ENV_TIMEOUT = "TIMEOUT"
ENV_REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
ENV_CLAIRCTL = "CLAIRCTL"
ENV_OUTPUT_DIR = "LOAD_TEST_OUTPUT_DIR"
ENV_LOG_LEVEL = "LOG_LEVEL"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_TRUTHY = {"1", "t", "true", "y", "yes", "on"}
_FALSY = {"", "0", "f", "false", "n", "no", "off"}


class ConfigError(ValueError):
    """Raised when the run configuration cannot be used to start a run."""


@dataclass(frozen=True)
class RunConfig:
    """Validated input of a single load-test run."""

    artifacts: tuple[str, ...]
    concurrency: int
    timeout_s: float
    base_url: str = DEFAULT_HOST
    psk: str = ""
    delete: bool = False
    request_timeout_s: float = 60.0
    clairctl: str = DEFAULT_CLAIRCTL
    output_dir: Path | None = field(default=None)

    def validate(self) -> "RunConfig":
        check_run_limits(self.artifacts, self.concurrency, self.timeout_s)
        if self.request_timeout_s <= 0:
            raise ConfigError("request timeout must be greater than zero")
        if not self.base_url:
            raise ConfigError("the Clair API address must not be empty")
        return self


def check_run_limits(artifacts: Sequence[str], concurrency: int, timeout_s: float) -> None:
    if not artifacts:
        raise ConfigError("at least one container must be given")
    if concurrency < 1:
        raise ConfigError("concurrency must be at least 1")
    distinct = len(set(artifacts))
    if concurrency > distinct:
        raise ConfigError(
            "concurrency cannot exceed the number of containers to process "
            f"({concurrency} > {distinct} distinct)"
        )
    if timeout_s <= 0:
        raise ConfigError("timeout must be greater than zero")


def parse_artifacts(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_duration(raw: str) -> float:
    """Parse ``1m30s``-style durations (or bare seconds) into seconds."""

    value = raw.strip()
    if not value:
        raise ConfigError("empty duration")
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ConfigError(f"invalid duration {raw!r}")
        return seconds

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(value) or position == 0:
        raise ConfigError(f"invalid duration {raw!r}")
    return total


def parse_bool(raw: str | None) -> bool:
    value = (raw or "").strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"invalid boolean value {raw!r}")


__all__ = [
    "ConfigError",
    "RunConfig",
    "check_run_limits",
    "parse_artifacts",
    "parse_bool",
    "parse_duration",
]
