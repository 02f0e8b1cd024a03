import requests


class RetryLimitError(requests.RequestException):
    """Every allowed attempt ended in a retryable status."""

    @property
    def status_code(self):
        return self.response.status_code if self.response is not None else None


class RequestCancelledError(requests.RequestException):
    """The call was cancelled before it started or while waiting to retry."""


class GraphQLError(Exception):
    def __init__(self, message: str):
        super().__init__(f"graphql: {message}")
        self.message = message


class GraphQLStatusError(GraphQLError):
    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"server returned a non-200 status code: {status_code}")
        self.status_code = status_code
        self.body = body
