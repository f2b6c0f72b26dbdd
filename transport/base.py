"""Transport contract consumed by the mailbox engine.

The transport performs label reads and writes against the mail provider.
Every call is asynchronous. A call either answers with a ``LabelUpdateResult``
or raises a ``TransportError``; the engine treats both a ``success=False``
answer and a raised error as a remote failure.
"""

from typing import Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from models.thread import ThreadPage


class LabelUpdateResult(BaseModel):
    """Answer to a label or read-state write.

    Args:
        success: Whether the provider applied the change.
        error: Provider error text when it did not.
    """

    success: bool = Field(description="Whether the provider applied the change")
    error: Optional[str] = Field(default=None, description="Provider error text")


@runtime_checkable
class MailTransport(Protocol):
    """Async RPC surface of the mail provider."""

    async def update_labels(
        self, item_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        """Change the labels of one message."""
        ...

    async def update_thread_labels(
        self, thread_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        """Change the labels of every message in one thread."""
        ...

    async def batch_update_labels(
        self, item_ids: Sequence[str], add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        """Change the labels of many items in one call."""
        ...

    async def mark_read(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        """Mark items as read."""
        ...

    async def mark_unread(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        """Mark items as unread."""
        ...

    async def fetch_page(
        self,
        folder: str,
        labels: Optional[Sequence[str]] = None,
        query: Optional[str] = None,
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> ThreadPage:
        """Fetch one page of a folder feed."""
        ...
