"""
Exception types shared by the controller client, the InfluxDB storage layer
and the query gateway
"""


class InsightsError(Exception):
    """Base class for all UniFi Insights errors."""


class AuthError(InsightsError):
    """Controller rejected the credentials or the login endpoint failed."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ResponseError(InsightsError):
    """A data endpoint answered with a non-success status."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RequestTimeoutError(InsightsError, TimeoutError):
    """An outbound request exceeded its deadline."""

    def __init__(self, message, timeout_ms=None):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class ValidationError(InsightsError):
    """The query gateway refused a statement. Never retried."""

    def __init__(self, reason, query=None):
        super().__init__(reason)
        self.reason = reason
        self.query = query


class WriteError(InsightsError):
    """InfluxDB rejected or failed to accept a batch of points."""

    def __init__(self, message, status_code=None, points=0):
        super().__init__(message)
        self.status_code = status_code
        self.points = points
