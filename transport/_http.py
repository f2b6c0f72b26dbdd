"""Async HTTP plumbing for the gateway transport.

``AsyncHTTPClient`` sends JSON requests to the mail provider gateway, maps
error answers onto ``transport.exceptions`` and, when enabled, retries
gateway hiccups (502/503/504, connection drops, timeouts) with exponential
backoff. Only ``transport.http`` uses it.
"""

import asyncio
import logging
from typing import Any, Literal, Optional

import httpx

from transport.exceptions import (
    NotFoundError,
    ProviderError,
    ServerError,
    TransportConnectionError,
    TransportTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)


HttpMethod = Literal["GET", "POST"]

RETRYABLE_STATUS_CODES = frozenset({502, 503, 504})

DEFAULT_RETRY_BACKOFF_BASE = 0.5  # seconds
DEFAULT_RETRY_BACKOFF_MAX = 30.0  # seconds

# status -> exception for the statuses the transport distinguishes
STATUS_ERRORS: dict[int, type[ProviderError]] = {
    404: NotFoundError,
    422: ValidationError,
}


def _parse_error_response(
    response: httpx.Response,
) -> tuple[str, Optional[str], Optional[dict]]:
    """Pull a message, error type and details out of an error answer.

    Understands FastAPI-style ``detail`` bodies (string or validation list)
    and ``error``/``message`` bodies; anything else falls back to the raw
    text or the status code.

    Args:
        response: The error answer.

    Returns:
        A tuple of (message, error_type, details).
    """
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code} error", None, None

    if not isinstance(body, dict):
        return str(body), None, None

    detail = body.get("detail")
    if isinstance(detail, list):
        fields = (f"{e.get('loc', ['?'])[-1]}: {e.get('msg', 'invalid')}" for e in detail)
        return "; ".join(fields), "validation_error", {"errors": detail}

    message = next(
        (v for v in (detail, body.get("error"), body.get("message")) if isinstance(v, str)),
        None,
    )
    if message is None:
        return str(body), None, None
    return message, body.get("type"), body.get("details")


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the transport error matching an unsuccessful answer.

    Raises:
        NotFoundError: 404.
        ValidationError: 422.
        ServerError: 5xx.
        ProviderError: Any other error status.
    """
    if response.is_success:
        return

    message, error_type, details = _parse_error_response(response)
    status_code = response.status_code
    if status_code >= 500:
        error_class = ServerError
    else:
        error_class = STATUS_ERRORS.get(status_code, ProviderError)
    raise error_class(message, status_code=status_code, error_type=error_type, details=details)


def _decode_body(response: httpx.Response) -> Any:
    """Decode a successful answer; an empty body is None.

    Raises:
        ProviderError: The body is not JSON.
    """
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(
            "Gateway answered with a non-JSON body",
            status_code=response.status_code,
            error_type="invalid_response",
        ) from e


def _calculate_backoff(attempt: int, base: float = DEFAULT_RETRY_BACKOFF_BASE) -> float:
    """Delay before retry number ``attempt`` (0-indexed), capped."""
    return min(base * (2 ** attempt), DEFAULT_RETRY_BACKOFF_MAX)


class AsyncHTTPClient:
    """JSON client for the provider gateway.

    Attributes:
        base_url: Gateway root; request paths are appended to it.
        timeout: Request timeout in seconds.
        retry_enabled: Whether transient failures are retried.
        max_retries: Retries after the first attempt.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_enabled: bool = False,
        max_retries: int = 3,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Gateway root URL.
            timeout: Request timeout in seconds.
            retry_enabled: Retry transient failures.
            max_retries: Retries after the first attempt.
            headers: Headers sent with every request.
            transport: httpx transport override, e.g. ``httpx.MockTransport``.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_enabled = retry_enabled
        self.max_retries = max_retries

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncHTTPClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _send(
        self,
        method: HttpMethod,
        path: str,
        params: Optional[dict[str, Any]],
        json: Optional[dict[str, Any]],
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self._client.request(method, path, params=params, json=json)
        except httpx.ConnectError as e:
            raise TransportConnectionError(f"Failed to connect to {url}", url=url, cause=e) from e
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(
                f"Request to {url} timed out", timeout=self.timeout, url=url
            ) from e
        except httpx.HTTPError as e:
            raise TransportConnectionError(
                f"Request to {url} failed: {type(e).__name__}", url=url, cause=e
            ) from e

    async def request(
        self,
        method: HttpMethod,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON answer.

        Args:
            method: HTTP method.
            path: Path below ``base_url``.
            params: Query parameters; None values are dropped.
            json: JSON body.

        Returns:
            The decoded body, or None for an empty answer.

        Raises:
            TransportConnectionError: The gateway could not be reached.
            TransportTimeoutError: The gateway did not answer in time.
            ProviderError: The gateway answered with an error status or an
                unreadable body.
        """
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        retries_left = self.max_retries if self.retry_enabled else 0
        attempt = 0
        while True:
            try:
                response = await self._send(method, path, params, json)
                if response.status_code in RETRYABLE_STATUS_CODES and retries_left:
                    logger.warning(f"{method} {path} returned {response.status_code}, retrying")
                else:
                    _raise_for_status(response)
                    return _decode_body(response)
            except (TransportConnectionError, TransportTimeoutError) as e:
                if not retries_left:
                    raise
                logger.warning(f"{method} {path} failed ({e}), retrying")

            await asyncio.sleep(_calculate_backoff(attempt))
            attempt += 1
            retries_left -= 1

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        return await self.request("POST", path, params=params, json=json)

