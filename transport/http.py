"""Mail transport backed by an HTTP provider gateway.

Endpoints used:

    POST /messages/{id}/labels        {"add_labels": [...], "remove_labels": [...]}
    POST /threads/{id}/labels         {"add_labels": [...], "remove_labels": [...]}
    POST /messages/labels:batch       {"ids": [...], "add_labels": [...], "remove_labels": [...]}
    POST /messages/read               {"ids": [...]}
    POST /messages/unread             {"ids": [...]}
    GET  /folders/{folder}/threads    ?labels=&q=&page_size=&cursor=

Write endpoints answer ``{"success": bool, "error": str | null}``; an empty
body counts as success. The feed endpoint answers
``{"threads": [...], "next_cursor": str | null}``.
"""

from typing import Any, Optional, Sequence, TypeVar
from urllib.parse import quote

import httpx
import pydantic

from models.session import Session
from models.thread import ThreadPage
from transport._http import AsyncHTTPClient
from transport.base import LabelUpdateResult
from transport.exceptions import ProviderError

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def _parse(model: type[ModelT], body: Any) -> ModelT:
    try:
        return model.model_validate(body)
    except pydantic.ValidationError as e:
        raise ProviderError(
            f"Unexpected gateway answer for {model.__name__}: {e.error_count()} invalid field(s)",
            status_code=200,
            error_type="invalid_response",
        ) from e


def _write_result(body: Any) -> LabelUpdateResult:
    if body is None:
        return LabelUpdateResult(success=True)
    return _parse(LabelUpdateResult, body)


class HTTPMailTransport:
    """``MailTransport`` implementation that talks to a provider gateway.

    Attributes:
        http: The underlying async HTTP client.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[Session] = None,
        timeout: float = 30.0,
        retry_enabled: bool = False,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Gateway base URL.
            session: Session whose identity is sent with every request.
            timeout: Request timeout in seconds.
            retry_enabled: Whether to retry on transient failures.
            max_retries: Maximum number of retry attempts.
            transport: Custom httpx transport (e.g., MockTransport for testing).
        """
        headers = {}
        if session is not None and session.is_active:
            headers = {
                "X-User-Id": session.user_id,
                "X-Connection-Id": session.connection_id,
            }
        self.http = AsyncHTTPClient(
            base_url=base_url,
            timeout=timeout,
            retry_enabled=retry_enabled,
            max_retries=max_retries,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.http.close()

    async def update_labels(
        self, item_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        body = await self.http.post(
            f"/messages/{quote(item_id, safe='')}/labels",
            json={"add_labels": list(add_labels), "remove_labels": list(remove_labels)},
        )
        return _write_result(body)

    async def update_thread_labels(
        self, thread_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        body = await self.http.post(
            f"/threads/{quote(thread_id, safe='')}/labels",
            json={"add_labels": list(add_labels), "remove_labels": list(remove_labels)},
        )
        return _write_result(body)

    async def batch_update_labels(
        self, item_ids: Sequence[str], add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        body = await self.http.post(
            "/messages/labels:batch",
            json={
                "ids": list(item_ids),
                "add_labels": list(add_labels),
                "remove_labels": list(remove_labels),
            },
        )
        return _write_result(body)

    async def mark_read(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        body = await self.http.post("/messages/read", json={"ids": list(item_ids)})
        return _write_result(body)

    async def mark_unread(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        body = await self.http.post("/messages/unread", json={"ids": list(item_ids)})
        return _write_result(body)

    async def fetch_page(
        self,
        folder: str,
        labels: Optional[Sequence[str]] = None,
        query: Optional[str] = None,
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> ThreadPage:
        body = await self.http.get(
            f"/folders/{quote(folder, safe='')}/threads",
            params={
                "labels": ",".join(labels) if labels else None,
                "q": query or None,
                "page_size": page_size,
                "cursor": cursor,
            },
        )
        return _parse(ThreadPage, body or {})
