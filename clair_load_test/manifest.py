from __future__ import annotations

import logging
import subprocess

from .config import DEFAULT_CLAIRCTL

LOGGER = logging.getLogger("clair_load_test.manifest")


class ManifestError(Exception):
    """Raised when clairctl could not produce a manifest for a container."""


class ClairctlManifestSource:
    """Generate index manifests by shelling out to ``clairctl manifest``."""

    def __init__(self, executable: str = DEFAULT_CLAIRCTL) -> None:
        self._executable = executable

    def __call__(self, artifact: str) -> bytes:
        cmd = [self._executable, "manifest", artifact]
        LOGGER.debug("getting manifest: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, check=False)
        except OSError as exc:
            raise ManifestError(f"failed to run {self._executable}: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ManifestError(
                f"{self._executable} exited with status {result.returncode}: {stderr or '<no output>'}"
            )
        if not result.stdout:
            raise ManifestError(f"{self._executable} produced an empty manifest")
        return result.stdout


__all__ = ["ClairctlManifestSource", "ManifestError"]
