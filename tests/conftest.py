"""Shared fixtures for the load test suite."""

from __future__ import annotations

import base64
from typing import Any
from unittest.mock import MagicMock

import pytest

PSK = base64.b64encode(b"k" * 32).decode("ascii")


def make_response(status_code: int, payload: Any = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class FakeSession:
    """Stands in for ``requests.Session`` and answers by HTTP method."""

    def __init__(
        self,
        create_status: int = 201,
        create_payload: Any = None,
        report_status: int = 200,
        delete_status: int = 204,
    ) -> None:
        self.create_status = create_status
        self.create_payload = {"manifest_hash": "h"} if create_payload is None else create_payload
        self.report_status = report_status
        self.delete_status = delete_status
        self.calls: list[tuple[str, str]] = []
        self.request = MagicMock(side_effect=self._respond)

    def _respond(self, method: str, url: str, **kwargs: Any) -> MagicMock:
        self.calls.append((method, url))
        if method == "POST":
            return make_response(self.create_status, self.create_payload)
        if method == "GET":
            return make_response(self.report_status)
        return make_response(self.delete_status)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def manifest_source() -> MagicMock:
    return MagicMock(return_value=b'{"hash": "sha256:abc"}')


@pytest.fixture
def token_factory() -> MagicMock:
    return MagicMock(return_value="token")
