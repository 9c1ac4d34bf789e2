"""
Error taxonomy for connectors.

Every public connector operation raises a subclass of ConnectorError so that
callers can handle all connector failures with a single except clause:

    try:
        result = connector.resolve_by_url(url)
    except NotFoundError:
        ...
    except ConnectorError as exc:
        log(f"resolve failed: {exc}")
"""

from typing import Optional


class ConnectorError(Exception):
    """Base class for all connector failures."""


class InvalidInputError(ConnectorError):
    """Empty or malformed URL, query, or chapter number."""


class HostMismatchError(ConnectorError):
    """URL host is not in the connector's allow-list."""
    def __init__(self, connector_key: str, host: str):
        self.connector_key = connector_key
        self.host = host
        super().__init__(f"url host '{host}' does not belong to {connector_key}")


class FormatMismatchError(ConnectorError):
    """URL path does not match the site's item-path shape."""


class NotFoundError(ConnectorError):
    """Item absent from an otherwise successful response."""


class DecodeError(ConnectorError):
    """Malformed JSON/HTML or a missing required field."""


class HttpStatusError(ConnectorError):
    """Upstream answered with a non-2xx status."""
    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        message = f"unexpected status: {status_code}"
        if url:
            message += f" ({url})"
        super().__init__(message)


class RateLimitedError(HttpStatusError):
    """Still receiving 429 after exhausting the retry budget."""
    def __init__(self, url: str = "", attempts: int = 0):
        self.attempts = attempts
        super().__init__(429, url)
        self.args = (f"rate limited after {attempts} attempts ({url})",)

    def __str__(self) -> str:
        return self.args[0]


class RequestCancelled(ConnectorError):
    """Caller cancelled the request or its deadline passed."""
    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "request cancelled")


class ConfigValidationError(ConnectorError):
    """Declarative connector configuration is incomplete or invalid."""


class DuplicateConnectorError(ConnectorError):
    """A connector with the same key is already registered."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"connector '{key}' already registered")
