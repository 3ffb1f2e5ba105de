import io
import json

import pytest
from urllib.error import HTTPError

from TheRockTrading import client as client_module
from TheRockTrading.client import TheRockTrading


class _FakeResponse:
    def __init__(self, body=b"", status=200):
        self._body = body
        self.status = status

    def read(self):
        return self._body


class FakeExchange:
    """Stands in for urlopen: records every Request and replays queued answers."""

    def __init__(self):
        self.requests = []
        self.timeouts = []
        self._answers = []

    def respond(self, body=b"", status=200):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._answers.append(_FakeResponse(body, status))

    def fail(self, status, body=b"", reason="Error"):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._answers.append(HTTPError("https://api.example.com/v1/", status, reason, {}, io.BytesIO(body)))

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        answer = self._answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    @property
    def last(self):
        return self.requests[-1]

    @property
    def last_headers(self):
        return {name.lower(): value for name, value in self.last.header_items()}

    @property
    def last_json(self):
        return json.loads(self.last.data.decode("utf-8"))


@pytest.fixture
def exchange(monkeypatch):
    fake = FakeExchange()
    monkeypatch.setattr(client_module, "urlopen", fake)
    return fake


@pytest.fixture
def api():
    return TheRockTrading(key="K", secret="S", url="https://api.example.com/v1/")
