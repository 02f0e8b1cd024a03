import threading
from typing import Callable, Optional, Tuple

import requests
from requests.adapters import BaseAdapter, HTTPAdapter

from errors import RequestCancelledError, RetryLimitError

RETRY_COUNT = 5
SERVER_ERROR_BACKOFF = 0.25  # seconds
SERVER_ERROR_STATUSES = (502, 503, 504)
TOO_MANY_REQUESTS = 429
RETRY_AFTER_HEADER = "Retry-After"
MAX_RETRY_AFTER = 24 * 60 * 60  # larger values count as unusable


def _noop(_: str) -> None:
    pass


def parse_retry_after(value: Optional[str]) -> int:
    """Whole seconds from a Retry-After value; anything unusable is 0."""
    if not value:
        return 0
    value = value.strip()
    if not value.isdecimal():
        return 0
    try:
        seconds = int(value)
    except ValueError:  # beyond the int digit limit
        return 0
    if seconds > MAX_RETRY_AFTER:
        return 0
    return seconds


def should_retry(resp: requests.Response, wait_after_too_many_requests: float = 0.0) -> Tuple[float, bool]:
    """Decide whether ``resp`` is worth another attempt and how long to wait first."""
    if resp.status_code in SERVER_ERROR_STATUSES:
        return SERVER_ERROR_BACKOFF, True
    if resp.status_code == TOO_MANY_REQUESTS:
        seconds = parse_retry_after(resp.headers.get(RETRY_AFTER_HEADER))
        if seconds == 0:
            return wait_after_too_many_requests, True
        return float(seconds), True
    return 0.0, False


def materialize_body(req: requests.PreparedRequest) -> Optional[bytes]:
    """Read the request body into bytes once so every attempt can resend it."""
    body = req.body
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        data = body.encode("utf-8")
    elif hasattr(body, "read"):
        data = body.read()
        if isinstance(data, str):
            data = data.encode("utf-8")
    else:
        data = b"".join(c.encode("utf-8") if isinstance(c, str) else c for c in body)
    req.headers.pop("Transfer-Encoding", None)
    req.headers["Content-Length"] = str(len(data))
    req.body = data
    return data


def drain(resp: requests.Response, log: Callable[[str], None] = _noop) -> None:
    # Read what is left so the pooled connection can be reused.
    try:
        resp.content
    except (requests.RequestException, OSError) as e:
        log(f"could not drain response body: {e}")
    finally:
        resp.close()


class RetryableAdapter(BaseAdapter):
    """Transport adapter that resubmits on 502/503/504 and 429 responses.

    Connection level failures raised by the base adapter are not retried.
    The adapter holds only configuration, so one instance can serve many
    threads; the retry counter lives inside ``send``.
    """

    def __init__(
        self,
        base: Optional[BaseAdapter] = None,
        wait_after_too_many_requests: float = 0.0,
        log_warn: Optional[Callable[[str], None]] = None,
        max_retries: int = RETRY_COUNT,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        super().__init__()
        self.base = base or HTTPAdapter()
        self.wait_after_too_many_requests = wait_after_too_many_requests
        self.log_warn = log_warn or _noop
        self.max_retries = max_retries
        self._closing = threading.Event()
        # wait(seconds) returns True when the wait was interrupted
        self._wait = wait or self._closing.wait

    def send(self, request: requests.PreparedRequest, **kwargs) -> requests.Response:
        body = materialize_body(request)
        resp = self.base.send(self._attempt(request, body), **kwargs)
        retries = 0
        while True:
            delay, retry = should_retry(resp, self.wait_after_too_many_requests)
            if not retry:
                return resp
            if retries >= self.max_retries:
                # keep the body readable on the error but give the connection back
                drain(resp, self.log_warn)
                raise RetryLimitError(
                    f"retry limit reached (status={resp.status_code})",
                    response=resp,
                    request=request,
                )
            if delay > 0:
                self.log_warn(f"server returned {resp.status_code}, retrying after {delay:g}s")
            else:
                self.log_warn(f"server returned {resp.status_code}, retrying right now")
            drain(resp, self.log_warn)
            if delay > 0 and self._wait(min(delay, threading.TIMEOUT_MAX)):
                raise RequestCancelledError("request cancelled while waiting to retry", request=request)
            resp = self.base.send(self._attempt(request, body), **kwargs)
            retries += 1

    @staticmethod
    def _attempt(request: requests.PreparedRequest, body: Optional[bytes]) -> requests.PreparedRequest:
        attempt = request.copy()
        attempt.body = body
        return attempt

    def close(self) -> None:
        self._closing.set()
        self.base.close()


def new_retryable_session(
    log_warn: Optional[Callable[[str], None]] = None,
    wait_after_too_many_requests: float = 0.0,
) -> requests.Session:
    session = requests.Session()
    adapter = RetryableAdapter(
        wait_after_too_many_requests=wait_after_too_many_requests,
        log_warn=log_warn,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
