"""Errors raised by the mail transport.

    TransportError
    ├── TransportConnectionError   gateway unreachable
    ├── TransportTimeoutError      no answer within the timeout
    └── ProviderError              gateway answered with an error status or an unreadable body
        ├── ValidationError        422, payload rejected
        ├── NotFoundError          404, unknown message, thread or folder
        └── ServerError            5xx

The mutation engine turns any ``TransportError`` from a label call into a
remote-failure outcome; nothing here reaches the rendering layer.
"""

from typing import Any, Optional


class TransportError(Exception):
    """Base class for transport failures.

    Attributes:
        message: Human-readable description.
        url: Request URL, when known.
    """

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        self.message = message
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} (url: {self.url})"
        return self.message


class TransportConnectionError(TransportError):
    """The gateway could not be reached.

    Attributes:
        cause: Underlying httpx error.
    """

    def __init__(
        self, message: str, url: Optional[str] = None, cause: Optional[Exception] = None
    ) -> None:
        super().__init__(message, url)
        self.cause = cause


class TransportTimeoutError(TransportError):
    """The gateway did not answer in time.

    Attributes:
        timeout: Configured timeout in seconds.
    """

    def __init__(
        self, message: str, timeout: Optional[float] = None, url: Optional[str] = None
    ) -> None:
        super().__init__(message, url)
        self.timeout = timeout


class ProviderError(TransportError):
    """The gateway answered with an error status.

    Subclasses fix ``default_status`` and ``error_type`` for the statuses the
    transport distinguishes.

    Attributes:
        status_code: HTTP status of the answer.
        error_type: Error code from the body, or the subclass default.
        details: Structured detail from the body, if any.
    """

    default_status = 400
    error_type: Optional[str] = None

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code or self.default_status
        self.error_type = error_type or type(self).error_type
        self.details = details

    def __str__(self) -> str:
        prefix = f"[HTTP {self.status_code}]"
        if self.error_type:
            prefix += f" [{self.error_type}]"
        return f"{prefix} {self.message}"


class ValidationError(ProviderError):
    """The gateway rejected the request payload."""

    default_status = 422
    error_type = "validation_error"


class NotFoundError(ProviderError):
    """The message, thread or folder does not exist."""

    default_status = 404
    error_type = "not_found"


class ServerError(ProviderError):
    """Gateway-side failure; 502, 503 and 504 are retried first when enabled."""

    default_status = 500
    error_type = "server_error"
