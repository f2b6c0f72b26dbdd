"""Mail provider transport.

The mailbox engine talks to the mail provider only through the
``MailTransport`` protocol. Two implementations ship here:

    HTTPMailTransport      provider gateway over HTTP (httpx)
    InMemoryMailTransport  label-indexed in-process store

Exports:
    MailTransport: Async RPC protocol consumed by the engine.
    LabelUpdateResult: Answer to a label or read-state write.
    HTTPMailTransport: Gateway-backed transport.
    InMemoryMailTransport: In-process transport.

    Exceptions:
        TransportError: Base exception for all transport errors.
        TransportConnectionError: Failed to connect to the gateway.
        TransportTimeoutError: Request timed out.
        ProviderError: Gateway returned an error response.
        ValidationError: Request validation failed (HTTP 422).
        NotFoundError: Item not found (HTTP 404).
        ServerError: Gateway-side error (HTTP 5xx).
"""

from transport.base import LabelUpdateResult, MailTransport
from transport.exceptions import (
    NotFoundError,
    ProviderError,
    ServerError,
    TransportConnectionError,
    TransportError,
    TransportTimeoutError,
    ValidationError,
)
from transport.http import HTTPMailTransport
from transport.memory import InMemoryMailTransport

__all__ = [
    "MailTransport",
    "LabelUpdateResult",
    "HTTPMailTransport",
    "InMemoryMailTransport",
    "TransportError",
    "TransportConnectionError",
    "TransportTimeoutError",
    "ProviderError",
    "ValidationError",
    "NotFoundError",
    "ServerError",
]
