"""Folder policy: label rules for folders and label transitions.

Folders are virtual views computed from labels. This module maps a folder
name to the labels it implies and decides which label transitions are legal
from which folder. Nothing here holds state; the mutation engine consults it
before any remote call is made.
"""

from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from models.outcome import MailOperation
from models.thread import DRAFT, INBOX, SENT, SPAM, STARRED, TRASH, ThreadSummary


DEFAULT_FOLDER_LABELS: dict[str, frozenset[str]] = {
    "inbox": frozenset({INBOX}),
    "sent": frozenset({SENT}),
    "spam": frozenset({SPAM}),
    "trash": frozenset({TRASH}),
    "drafts": frozenset({DRAFT}),
    "starred": frozenset({STARRED}),
    "archive": frozenset(),
}

# (labels to add, labels to remove)
LABEL_DELTAS: dict[MailOperation, tuple[tuple[str, ...], tuple[str, ...]]] = {
    MailOperation.ARCHIVE: ((), (INBOX,)),
    MailOperation.MARK_SPAM: ((SPAM,), (INBOX,)),
    MailOperation.MOVE_TO_INBOX: ((INBOX,), (SPAM,)),
}

INVALIDATES: dict[MailOperation, tuple[str, ...]] = {
    MailOperation.ARCHIVE: ("inbox", "archive"),
    MailOperation.MARK_SPAM: ("inbox", "spam"),
    MailOperation.MOVE_TO_INBOX: ("inbox", "spam", "archive"),
}


class FolderPolicy(BaseModel):
    """Static label rules for folders.

    Args:
        folder_labels: Folder name to the labels implied by that folder.
            Folder names are matched case-insensitively; unknown folders
            (user labels) imply no system labels.
    """

    folder_labels: dict[str, frozenset[str]] = Field(
        default_factory=lambda: dict(DEFAULT_FOLDER_LABELS),
        description="Folder name to implied labels",
    )

    def labels_implied_by(self, folder: str) -> frozenset[str]:
        """Return the label set implied by a folder.

        Args:
            folder: Folder name.

        Returns:
            Labels every item in that folder is expected to carry.
        """
        return self.folder_labels.get(folder.lower(), frozenset())

    def can_archive(self, current_labels: Iterable[str]) -> bool:
        """Archiving is refused for anything bearing SPAM."""
        return SPAM not in set(current_labels)

    def can_archive_from(self, folder: str) -> bool:
        """Check whether the folder itself allows archiving.

        Args:
            folder: Folder name.

        Returns:
            False when the folder's implied labels disallow archiving.
        """
        return self.can_archive(self.labels_implied_by(folder))

    def can_mark_spam(self, folder: str, current_labels: Iterable[str]) -> bool:
        """Only inbox items that were not sent by the user can become spam.

        Args:
            folder: Current folder name.
            current_labels: Labels of the targeted item.

        Returns:
            True if the item may be marked as spam.
        """
        return self.can_mark_spam_from(folder) and SENT not in set(current_labels)

    def can_mark_spam_from(self, folder: str) -> bool:
        """Check whether the folder itself allows marking spam."""
        return folder.lower() == "inbox"

    def can_move_to_inbox(self, current_labels: Iterable[str] = ()) -> bool:
        """Moving to the inbox is the recovery path and is never refused."""
        return True

    def label_delta(self, operation: MailOperation) -> tuple[list[str], list[str]]:
        """Return the labels an operation adds and removes.

        Args:
            operation: The mutation.

        Returns:
            Tuple of (labels to add, labels to remove).
        """
        add_labels, remove_labels = LABEL_DELTAS[operation]
        return list(add_labels), list(remove_labels)

    def invalidated_folders(self, operation: MailOperation) -> tuple[str, ...]:
        """Return the folders whose cached pages an operation makes stale."""
        return INVALIDATES[operation]

    def visible_in(self, folder: str, threads: Sequence[ThreadSummary]) -> list[ThreadSummary]:
        """Filter cached items down to what a folder view displays.

        The inbox hides items the user sent; the sent view shows only those.

        Args:
            folder: Folder name.
            threads: Cached items in order.

        Returns:
            Items to display, in the same order.
        """
        name = folder.lower()
        if name == "inbox":
            return [t for t in threads if not t.has_label(SENT)]
        if name == "sent":
            return [t for t in threads if t.has_label(SENT)]
        return list(threads)
