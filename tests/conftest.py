import json

import httpx
import pytest

from blokmarket_bot.storage import CustomerStore, LicenseStore


@pytest.fixture
def license_store(tmp_path):
    return LicenseStore(tmp_path / "licenses.json")


@pytest.fixture
def customer_store(tmp_path):
    return CustomerStore(tmp_path / "customers.json")


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, status_code=200, body=None, exc=None):
        self.requests = []
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.exc = exc
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.body)

    def json_bodies(self):
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def recording_transport():
    return RecordingTransport
