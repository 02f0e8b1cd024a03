"""GraphQL over HTTP, sent through a retrying transport.

Queries go out as a JSON document by default, or as multipart/form-data when
the client is built with ``use_multipart_form=True`` (required for file
uploads). The first error reported by the server is raised as
:class:`errors.GraphQLError`.
"""
import json
import logging
import threading
from typing import IO, Any, Callable, Dict, List, NamedTuple, Optional, Type

import requests
from pydantic import BaseModel, ValidationError

from errors import GraphQLError, GraphQLStatusError, RequestCancelledError
from schemas import GraphRequestBody, GraphResponse
from utils.http import new_retryable_session

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

LogSink = Callable[[str], None]


def _noop(_: str) -> None:
    pass


def with_default_loggers(logger: logging.Logger) -> Dict[str, LogSink]:
    """Sinks for ``Client(**with_default_loggers(log))``."""
    return {"log_debug": logger.debug, "log_warn": logger.warning, "log_error": logger.error}


class File(NamedTuple):
    field: str
    name: str
    fileobj: IO[bytes]


class Request:
    """A single GraphQL query with its variables, files and extra headers."""

    def __init__(self, query: str):
        self.query = query
        self.vars: Dict[str, Any] = {}
        self.files: List[File] = []
        self.headers: Dict[str, str] = {}

    def var(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def file(self, field: str, name: str, fileobj: IO[bytes]) -> None:
        """Attach a file; only sent by a client using multipart form."""
        self.files.append(File(field, name, fileobj))


class Client:
    def __init__(
        self,
        endpoint: str,
        session: Optional[requests.Session] = None,
        use_multipart_form: bool = False,
        close_request: bool = False,
        wait_after_too_many_requests: float = 0.0,
        timeout: Optional[float] = None,
        log_debug: Optional[LogSink] = None,
        log_warn: Optional[LogSink] = None,
        log_error: Optional[LogSink] = None,
    ):
        self.endpoint = endpoint
        self.use_multipart_form = use_multipart_form
        self.close_request = close_request
        self.wait_after_too_many_requests = wait_after_too_many_requests
        self.timeout = timeout
        self.log_debug = log_debug or _noop
        self.log_warn = log_warn or _noop
        self.log_error = log_error or _noop
        self.session = session or new_retryable_session(self.log_warn, wait_after_too_many_requests)

    def run(
        self,
        req: Request,
        into: Optional[Type[BaseModel]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Execute ``req`` and return the ``data`` member of the response.

        When ``into`` is given the data is validated into that model. A set
        ``cancel`` event stops the call before anything is sent.
        """
        # Only checked here; a retry wait already under way is cut short by
        # closing the session instead.
        if cancel is not None and cancel.is_set():
            raise RequestCancelledError("request cancelled before it was sent")
        if req.files and not self.use_multipart_form:
            raise ValueError("cannot send files without use_multipart_form")
        if self.use_multipart_form:
            data = self._run_with_post_fields(req)
        else:
            data = self._run_with_json(req)
        if into is not None and data is not None:
            return into.model_validate(data)
        return data

    def _headers(self, req: Request, content_type: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": JSON_CONTENT_TYPE}
        if content_type:
            headers["Content-Type"] = content_type
        if self.close_request:
            headers["Connection"] = "close"
        headers.update(req.headers)
        return headers

    def _run_with_json(self, req: Request) -> Any:
        body = GraphRequestBody(query=req.query, variables=req.vars or None)
        self.log_debug(f">> variables: {req.vars}")
        self.log_debug(f">> query: {req.query}")
        headers = self._headers(req, JSON_CONTENT_TYPE)
        self.log_debug(f">> headers: {headers}")
        resp = self._post(data=body.model_dump_json().encode("utf-8"), headers=headers)
        text = resp.text
        if resp.status_code != 200:
            self.log_error(f"server returned a non-200 status code: {resp.status_code}")
            self.log_error(f"<< {text}")
            raise GraphQLStatusError(resp.status_code, text)
        self.log_debug(f"<< {text}")
        return self._first_error(self._parse(resp.content)).data

    def _run_with_post_fields(self, req: Request) -> Any:
        parts: List[tuple] = [("query", (None, req.query))]
        variables = ""
        if req.vars:
            variables = json.dumps(req.vars)
            parts.append(("variables", (None, variables, "application/json")))
        for f in req.files:
            parts.append((f.field, (f.name, f.fileobj)))
        self.log_debug(f">> variables: {variables}")
        self.log_debug(f">> files: {len(req.files)}")
        self.log_debug(f">> query: {req.query}")
        # requests fills in the multipart Content-Type with its boundary
        headers = self._headers(req, None)
        self.log_debug(f">> headers: {headers}")
        resp = self._post(files=parts, headers=headers)
        self.log_debug(f"<< {resp.text}")
        try:
            gr = self._parse(resp.content)
        except GraphQLError:
            if resp.status_code != 200:
                raise GraphQLStatusError(resp.status_code, resp.text)
            raise
        return self._first_error(gr).data

    def _post(self, **kwargs) -> requests.Response:
        try:
            resp = self.session.post(self.endpoint, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            self.log_error(f">> error: {e}")
            raise
        resp.close()
        return resp

    @staticmethod
    def _parse(content: bytes) -> GraphResponse:
        try:
            return GraphResponse.model_validate_json(content)
        except ValidationError as e:
            raise GraphQLError(f"decoding response: {e}") from e

    @staticmethod
    def _first_error(gr: GraphResponse) -> GraphResponse:
        if gr.errors:
            raise GraphQLError(gr.errors[0].message)
        return gr
