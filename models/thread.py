"""Thread summary model and identity helpers."""

from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field


INBOX = "INBOX"
SENT = "SENT"
SPAM = "SPAM"
TRASH = "TRASH"
DRAFT = "DRAFT"
STARRED = "STARRED"
UNREAD = "UNREAD"

THREAD_MARKER = "thread:"


def is_thread_id(item_id: str, marker: str = THREAD_MARKER) -> bool:
    """Check whether an id targets a whole thread rather than one message.

    Args:
        item_id: Item identity as seen by the view.
        marker: Prefix that denotes a thread-level target.

    Returns:
        True if the id carries the thread marker.
    """
    return item_id.startswith(marker)


def strip_thread_marker(item_id: str, marker: str = THREAD_MARKER) -> str:
    """Return the bare id with any thread marker removed."""
    if item_id.startswith(marker):
        return item_id[len(marker):]
    return item_id


def matches_identity(
    item_id: str,
    targets: Iterable[str],
    marker: str = THREAD_MARKER,
    thread_id: Optional[str] = None,
) -> bool:
    """Check whether a cached item is named by a set of targets.

    A target may name the item bare, in its thread-marked form, or through
    the thread-marked form of the thread it belongs to.

    Args:
        item_id: The cached item's id.
        targets: Ids named by an operation.
        marker: Prefix that denotes a thread-level target.
        thread_id: The cached item's thread id, if distinct.

    Returns:
        True if the item is one of the targets.
    """
    target_set = set(targets)
    if item_id in target_set or f"{marker}{item_id}" in target_set:
        return True
    return thread_id is not None and f"{marker}{thread_id}" in target_set


class ThreadSummary(BaseModel):
    """One row of a mailbox list.

    Identity and ordering fields are fixed once fetched. Only ``labels`` and
    ``unread`` change afterwards, through mutation reconciliation or local
    read-state toggling.

    Args:
        id: Item identity (message id, or thread id when the row is a thread).
        thread_id: Distinct thread id when the row is a single message in a thread.
        labels: Unordered, unique label names.
        unread: Read/unread flag.
        received_at: Ordering timestamp.
        subject: Subject line for display.
        sender: Sender display name or address.
        total_replies: Number of messages in the conversation.
    """

    id: str = Field(description="Item identity")
    thread_id: Optional[str] = Field(
        default=None, description="Thread id when the item is a message inside a thread"
    )
    labels: set[str] = Field(default_factory=set, description="Applied labels")
    unread: bool = Field(default=False, description="Read/unread status")
    received_at: datetime = Field(description="Ordering timestamp")
    subject: str = Field(default="", description="Subject line")
    sender: str = Field(default="", description="Sender name or address")
    total_replies: int = Field(default=1, description="Messages in the conversation")

    @property
    def open_id(self) -> str:
        """Id used when the item is opened: the thread id if known, else the id."""
        return self.thread_id or self.id

    def has_label(self, label: str) -> bool:
        """Check whether a label is applied.

        Args:
            label: Label name.

        Returns:
            True if present.
        """
        return label in self.labels

    def apply_label_delta(
        self, add_labels: Iterable[str] = (), remove_labels: Iterable[str] = ()
    ) -> None:
        """Apply a label change in place.

        Removals are applied after additions, so a label named in both ends up
        absent.

        Args:
            add_labels: Labels to add.
            remove_labels: Labels to remove.
        """
        self.labels.update(add_labels)
        self.labels.difference_update(remove_labels)

    def mark_read(self) -> None:
        """Set the item as read."""
        self.unread = False

    def mark_unread(self) -> None:
        """Set the item as unread."""
        self.unread = True


class ThreadPage(BaseModel):
    """One page of a folder feed as returned by the transport.

    Args:
        threads: Items on this page, in arrival order.
        next_cursor: Continuation token, or None on the last page.
    """

    threads: list[ThreadSummary] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, description="Next-page cursor token")

    @property
    def has_more(self) -> bool:
        """Whether the page carries a continuation cursor."""
        return bool(self.next_cursor)
