"""In-memory mail transport.

Keeps a label-indexed message store and answers feed and label calls the
way a provider gateway would. Used when no gateway URL is configured and as
the provider double in tests. Folder membership is computed from labels:

    inbox    INBOX present
    sent     SENT present
    spam     SPAM present
    trash    TRASH present
    drafts   DRAFT present
    archive  none of INBOX, SPAM, TRASH, DRAFT
    other    the upper-cased folder name is present as a label
"""

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from models.thread import (
    DRAFT,
    INBOX,
    SENT,
    SPAM,
    THREAD_MARKER,
    TRASH,
    ThreadPage,
    ThreadSummary,
    strip_thread_marker,
)
from transport.base import LabelUpdateResult

logger = logging.getLogger(__name__)


SYSTEM_FOLDERS = {
    "inbox": INBOX,
    "sent": SENT,
    "spam": SPAM,
    "trash": TRASH,
    "drafts": DRAFT,
}

ARCHIVE_EXCLUDES = frozenset({INBOX, SPAM, TRASH, DRAFT})


class InMemoryMailTransport:
    """``MailTransport`` over an in-process message store.

    Attributes:
        messages: Stored messages indexed by id.
        failing_ids: Ids whose label and read-state writes answer failure.
        latency: Seconds every call waits before answering.
        calls: Log of (method, payload) tuples, oldest first.
    """

    def __init__(
        self,
        messages: Optional[Iterable[ThreadSummary]] = None,
        failing_ids: Optional[Iterable[str]] = None,
        latency: float = 0.0,
        thread_marker: str = THREAD_MARKER,
    ) -> None:
        """Initialize the store.

        Args:
            messages: Initial messages.
            failing_ids: Ids whose writes answer failure.
            latency: Seconds every call waits before answering.
            thread_marker: Prefix that denotes thread-level ids.
        """
        self.messages: dict[str, ThreadSummary] = {}
        for message in messages or ():
            self.add(message)
        self.failing_ids: set[str] = set(failing_ids or ())
        self.latency = latency
        self.thread_marker = thread_marker
        self.calls: list[tuple[str, dict]] = []

    def add(self, message: ThreadSummary) -> None:
        """Store or replace a message.

        Args:
            message: Message to store; a copy is kept.
        """
        self.messages[message.id] = message.model_copy(deep=True)

    def in_folder(self, message: ThreadSummary, folder: str) -> bool:
        """Check folder membership from labels.

        Args:
            message: Stored message.
            folder: Folder name.

        Returns:
            True if the message belongs to the folder.
        """
        name = folder.lower()
        if name in SYSTEM_FOLDERS:
            return message.has_label(SYSTEM_FOLDERS[name])
        if name == "archive":
            return not (message.labels & ARCHIVE_EXCLUDES)
        return message.has_label(folder.upper())

    async def _answer(self, method: str, payload: dict) -> None:
        self.calls.append((method, payload))
        if self.latency:
            await asyncio.sleep(self.latency)

    def _resolve(self, item_id: str) -> list[ThreadSummary]:
        bare = strip_thread_marker(item_id, self.thread_marker)
        if item_id != bare:
            return [
                m for m in self.messages.values() if m.id == bare or m.thread_id == bare
            ]
        message = self.messages.get(item_id)
        return [message] if message else []

    def _write(
        self, item_ids: Sequence[str], add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        failing = [i for i in item_ids if i in self.failing_ids]
        if failing:
            return LabelUpdateResult(success=False, error=f"Provider rejected {failing}")

        targets = [m for item_id in item_ids for m in self._resolve(item_id)]
        if not targets:
            return LabelUpdateResult(success=False, error=f"Not found: {list(item_ids)}")
        for message in targets:
            message.apply_label_delta(add_labels, remove_labels)
        return LabelUpdateResult(success=True)

    async def update_labels(
        self, item_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        await self._answer(
            "update_labels",
            {"id": item_id, "add": list(add_labels), "remove": list(remove_labels)},
        )
        return self._write([item_id], add_labels, remove_labels)

    async def update_thread_labels(
        self, thread_id: str, add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        await self._answer(
            "update_thread_labels",
            {"id": thread_id, "add": list(add_labels), "remove": list(remove_labels)},
        )
        marked = thread_id if thread_id.startswith(self.thread_marker) else (
            f"{self.thread_marker}{thread_id}"
        )
        if thread_id in self.failing_ids:
            return LabelUpdateResult(success=False, error=f"Provider rejected {thread_id}")
        return self._write([marked], add_labels, remove_labels)

    async def batch_update_labels(
        self, item_ids: Sequence[str], add_labels: Sequence[str], remove_labels: Sequence[str]
    ) -> LabelUpdateResult:
        await self._answer(
            "batch_update_labels",
            {"ids": list(item_ids), "add": list(add_labels), "remove": list(remove_labels)},
        )
        return self._write(item_ids, add_labels, remove_labels)

    async def mark_read(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        await self._answer("mark_read", {"ids": list(item_ids)})
        return self._set_unread(item_ids, False)

    async def mark_unread(self, item_ids: Sequence[str]) -> LabelUpdateResult:
        await self._answer("mark_unread", {"ids": list(item_ids)})
        return self._set_unread(item_ids, True)

    def _set_unread(self, item_ids: Sequence[str], unread: bool) -> LabelUpdateResult:
        if any(i in self.failing_ids for i in item_ids):
            return LabelUpdateResult(success=False, error="Provider rejected read-state change")
        for item_id in item_ids:
            for message in self._resolve(item_id):
                message.unread = unread
        return LabelUpdateResult(success=True)

    async def fetch_page(
        self,
        folder: str,
        labels: Optional[Sequence[str]] = None,
        query: Optional[str] = None,
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> ThreadPage:
        await self._answer(
            "fetch_page",
            {
                "folder": folder,
                "labels": list(labels or []),
                "query": query,
                "page_size": page_size,
                "cursor": cursor,
            },
        )
        results = [m for m in self.messages.values() if self.in_folder(m, folder)]

        # Items must carry every label of the filter
        for label in labels or ():
            results = [m for m in results if m.has_label(label)]

        if query:
            needle = query.lower()
            results = [
                m
                for m in results
                if needle in m.subject.lower() or needle in m.sender.lower()
            ]

        results.sort(key=lambda m: m.received_at, reverse=True)

        offset = int(cursor) if cursor else 0
        window = results[offset : offset + page_size]
        next_offset = offset + page_size
        next_cursor = str(next_offset) if next_offset < len(results) else None

        return ThreadPage(
            threads=[m.model_copy(deep=True) for m in window],
            next_cursor=next_cursor,
        )
