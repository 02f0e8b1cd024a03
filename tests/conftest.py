"""Shared fakes: a scripted base adapter and a wait recorder."""
import io
from typing import List, Optional

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from utils.http import RetryableAdapter


class TrackedBody(io.BytesIO):
    """Response body that remembers whether its connection was released."""

    def __init__(self, data: bytes):
        super().__init__(data)
        self.released = False

    def release_conn(self):
        self.released = True


def make_response(status: int, body: bytes = b"", headers: Optional[dict] = None, request=None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.raw = TrackedBody(body)
    resp.encoding = "utf-8"
    resp.request = request
    resp.url = request.url if request is not None else ""
    return resp


class FakeAdapter(BaseAdapter):
    """Replays scripted outcomes; each item is a (status, body, headers) tuple or an exception."""

    def __init__(self, script: List):
        super().__init__()
        self.script = list(script)
        self.sent: List[requests.PreparedRequest] = []
        self.responses: List[requests.Response] = []
        self.closed = False

    def send(self, request, **kwargs):
        self.sent.append(request)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body, headers = item
        resp = make_response(status, body, headers, request)
        self.responses.append(resp)
        return resp

    def close(self):
        self.closed = True

    @property
    def bodies(self):
        return [r.body for r in self.sent]


class WaitRecorder:
    def __init__(self, interrupt: bool = False):
        self.calls: List[float] = []
        self.interrupt = interrupt

    def __call__(self, seconds: float) -> bool:
        self.calls.append(seconds)
        return self.interrupt


@pytest.fixture
def waits():
    return WaitRecorder()


@pytest.fixture
def make_session(waits):
    """Build a session whose retrying adapter sits on a FakeAdapter."""

    def build(script, wait_after_too_many_requests=0.0, log_warn=None):
        fake = FakeAdapter(script)
        adapter = RetryableAdapter(
            base=fake,
            wait_after_too_many_requests=wait_after_too_many_requests,
            log_warn=log_warn,
            wait=waits,
        )
        session = requests.Session()
        session.mount("http://", adapter)
        return session, fake

    return build
