"""Unit tests for clairctl manifest generation."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from clair_load_test.manifest import ClairctlManifestSource, ManifestError


def completed(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestClairctlManifestSource:
    """Tests for ClairctlManifestSource."""

    def test_returns_stdout(self) -> None:
        """Test the manifest is clairctl's standard output."""
        with patch("clair_load_test.manifest.subprocess.run", return_value=completed(0, b'{"hash":"x"}')) as run:
            manifest = ClairctlManifestSource("/usr/bin/clairctl")("ubuntu:latest")

        assert manifest == b'{"hash":"x"}'
        assert run.call_args.args[0] == ["/usr/bin/clairctl", "manifest", "ubuntu:latest"]

    def test_non_zero_exit(self) -> None:
        """Test a failing clairctl raises ManifestError with its stderr."""
        with patch(
            "clair_load_test.manifest.subprocess.run",
            return_value=completed(1, stderr=b"unauthorized: authentication required\n"),
        ):
            with pytest.raises(ManifestError, match="unauthorized"):
                ClairctlManifestSource()("private/image:tag")

    def test_missing_executable(self) -> None:
        """Test a missing binary raises ManifestError."""
        with patch(
            "clair_load_test.manifest.subprocess.run",
            side_effect=FileNotFoundError("No such file or directory: 'clairctl'"),
        ):
            with pytest.raises(ManifestError, match="failed to run clairctl"):
                ClairctlManifestSource()("ubuntu:latest")

    def test_empty_output(self) -> None:
        """Test an empty manifest is treated as a failure."""
        with patch("clair_load_test.manifest.subprocess.run", return_value=completed(0)):
            with pytest.raises(ManifestError, match="empty manifest"):
                ClairctlManifestSource()("ubuntu:latest")
