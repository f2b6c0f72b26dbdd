"""Shared page cache for folder feeds.

One entry per (user, folder, label filter, search query). The feed loader
appends pages to an entry; the mutation engine is the only other writer and
may only remove ids and mark entries stale. Removal is idempotent, so two
overlapping mutations on the same folder reconcile safely in either order.

All writes happen on the single event-loop thread, so entries carry no lock.
"""

import logging
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from models.thread import THREAD_MARKER, ThreadPage, ThreadSummary, matches_identity

logger = logging.getLogger(__name__)


class CacheKey(BaseModel):
    """Identity of one cached feed.

    Args:
        user_id: Owner of the mailbox.
        folder: Folder name, lower-cased.
        labels: Label filter, sorted.
        query: Search query, stripped.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    folder: str
    labels: tuple[str, ...] = ()
    query: str = ""

    @classmethod
    def build(
        cls,
        user_id: str,
        folder: str,
        labels: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
    ) -> "CacheKey":
        """Build a normalized key.

        Args:
            user_id: Owner of the mailbox.
            folder: Folder name.
            labels: Optional label filter.
            query: Optional search query.

        Returns:
            The key.
        """
        return cls(
            user_id=user_id,
            folder=folder.lower(),
            labels=tuple(sorted(set(labels or ()))),
            query=(query or "").strip(),
        )


class PageCacheEntry(BaseModel):
    """Accumulated pages of one feed.

    Args:
        key: Which feed this entry caches.
        ids: De-duplicated ids in arrival order.
        threads: Cached summaries indexed by id.
        next_cursor: Cursor for the next page, or None when exhausted.
        is_stale: Set when a mutation elsewhere made this entry outdated.
        pages_loaded: Number of pages merged since the last reset.
        removed_ids: Ids removed by mutations since the last reset; a late
            page carrying one of them does not bring it back.
    """

    key: CacheKey
    ids: list[str] = Field(default_factory=list)
    threads: dict[str, ThreadSummary] = Field(default_factory=dict)
    next_cursor: Optional[str] = None
    is_stale: bool = False
    pages_loaded: int = 0
    removed_ids: set[str] = Field(default_factory=set)

    @property
    def has_more(self) -> bool:
        """Whether a continuation cursor is held."""
        return bool(self.next_cursor)

    def ordered_threads(self) -> list[ThreadSummary]:
        """Return cached summaries in arrival order."""
        return [self.threads[i] for i in self.ids]

    def get(self, item_id: str) -> Optional[ThreadSummary]:
        """Look up a cached summary by id."""
        return self.threads.get(item_id)

    def reset(self, page: ThreadPage) -> None:
        """Replace everything with a fresh first page.

        Args:
            page: The first page of the feed.
        """
        self.ids = []
        self.threads = {}
        self.removed_ids = set()
        self.pages_loaded = 0
        self.merge(page)
        self.is_stale = False

    def merge(self, page: ThreadPage) -> int:
        """Append a page, skipping ids already present.

        The first arrival of an id keeps its position.

        Args:
            page: Page to merge.

        Returns:
            Number of ids actually appended.
        """
        added = 0
        for thread in page.threads:
            if thread.id in self.threads or thread.id in self.removed_ids:
                continue
            self.ids.append(thread.id)
            self.threads[thread.id] = thread
            added += 1
        self.next_cursor = page.next_cursor
        self.pages_loaded += 1
        return added

    def remove(self, item_ids: Sequence[str], marker: str = THREAD_MARKER) -> list[str]:
        """Remove ids named bare or in thread-marked form.

        Removing an id that is already gone is a no-op.

        Args:
            item_ids: Ids to remove.
            marker: Thread marker prefix.

        Returns:
            Cached ids that were actually removed.
        """
        removed = [
            i
            for i in self.ids
            if matches_identity(i, item_ids, marker, self.threads[i].thread_id)
        ]
        if not removed:
            return []
        gone = set(removed)
        self.ids = [i for i in self.ids if i not in gone]
        for item_id in removed:
            self.threads.pop(item_id, None)
        self.removed_ids.update(gone)
        return removed

    def validate_state(self) -> list[str]:
        """Return consistency issues (empty list if valid)."""
        issues = []
        if len(set(self.ids)) != len(self.ids):
            issues.append(f"Entry {self.key} has duplicate ids")
        for item_id in self.ids:
            if item_id not in self.threads:
                issues.append(f"Entry {self.key} lists id without summary: {item_id}")
        if len(self.threads) != len(self.ids):
            issues.append(f"Entry {self.key} holds summaries not in its id list")
        return issues


class PageCache:
    """Cache entries shared by every open view of a folder."""

    def __init__(self, thread_marker: str = THREAD_MARKER) -> None:
        """Initialize an empty cache.

        Args:
            thread_marker: Prefix that denotes thread-level ids.
        """
        self.thread_marker = thread_marker
        self._entries: dict[CacheKey, PageCacheEntry] = {}

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[PageCacheEntry]:
        """Return the entry for a key, if cached."""
        return self._entries.get(key)

    def entry(self, key: CacheKey) -> PageCacheEntry:
        """Return the entry for a key, creating an empty one if needed."""
        if key not in self._entries:
            self._entries[key] = PageCacheEntry(key=key)
        return self._entries[key]

    def needs_refresh(self, key: CacheKey) -> bool:
        """Whether reading this key must trigger a fetch (missing or stale)."""
        entry = self._entries.get(key)
        return entry is None or entry.is_stale or entry.pages_loaded == 0

    def store_first_page(self, key: CacheKey, page: ThreadPage) -> PageCacheEntry:
        """Reset an entry to a fresh first page.

        Args:
            key: Feed key.
            page: First page.

        Returns:
            The reset entry.
        """
        entry = self.entry(key)
        entry.reset(page)
        return entry

    def append_page(self, key: CacheKey, page: ThreadPage) -> int:
        """Merge a follow-up page into an entry.

        Args:
            key: Feed key.
            page: Page to merge.

        Returns:
            Number of ids appended.
        """
        added = self.entry(key).merge(page)
        logger.debug(
            f"Merged page into {key.folder}: {added} new of {len(page.threads)}, "
            f"more={page.has_more}"
        )
        return added

    def remove_from_folder(
        self, user_id: str, folder: str, item_ids: Sequence[str]
    ) -> list[str]:
        """Remove ids from every entry of one folder for one user.

        Args:
            user_id: Mailbox owner.
            folder: Folder name.
            item_ids: Ids to remove.

        Returns:
            Distinct cached ids removed across entries.
        """
        folder = folder.lower()
        removed: list[str] = []
        for key, entry in self._entries.items():
            if key.user_id == user_id and key.folder == folder:
                for item_id in entry.remove(item_ids, self.thread_marker):
                    if item_id not in removed:
                        removed.append(item_id)
        return removed

    def invalidate_folders(self, user_id: str, folders: Iterable[str]) -> int:
        """Mark every entry of the given folders stale.

        Args:
            user_id: Mailbox owner.
            folders: Folder names.

        Returns:
            Number of entries marked stale.
        """
        targets = {f.lower() for f in folders}
        count = 0
        for key, entry in self._entries.items():
            if key.user_id == user_id and key.folder in targets:
                entry.is_stale = True
                count += 1
        return count

    def find(self, user_id: str, folder: str, item_id: str) -> Optional[ThreadSummary]:
        """Find a cached summary of an item in any entry of a folder.

        Args:
            user_id: Mailbox owner.
            folder: Folder name.
            item_id: Id, bare or thread-marked.

        Returns:
            The first matching summary, or None if the item is not cached.
        """
        folder = folder.lower()
        for key, entry in self._entries.items():
            if key.user_id != user_id or key.folder != folder:
                continue
            for thread in entry.threads.values():
                if matches_identity(thread.id, [item_id], self.thread_marker, thread.thread_id):
                    return thread
        return None

    def is_folder_stale(self, user_id: str, folder: str) -> bool:
        """Whether any cached entry of a folder is stale."""
        folder = folder.lower()
        return any(
            entry.is_stale
            for key, entry in self._entries.items()
            if key.user_id == user_id and key.folder == folder
        )

    def apply_label_delta(
        self,
        user_id: str,
        item_ids: Sequence[str],
        add_labels: Iterable[str] = (),
        remove_labels: Iterable[str] = (),
    ) -> int:
        """Update the label set of every cached copy of the given items.

        Only entries of the given user are touched.

        Args:
            user_id: Owner of the entries to update.
            item_ids: Ids, bare or thread-marked.
            add_labels: Labels to add.
            remove_labels: Labels to remove.

        Returns:
            Number of cached summaries updated.
        """
        add_labels = list(add_labels)
        remove_labels = list(remove_labels)
        updated = 0
        for thread in self._matching(user_id, item_ids):
            thread.apply_label_delta(add_labels, remove_labels)
            updated += 1
        return updated

    def set_unread(self, user_id: str, item_ids: Sequence[str], unread: bool) -> int:
        """Set the unread flag of every cached copy of the given items.

        Args:
            user_id: Owner of the entries to update.
            item_ids: Ids, bare or thread-marked.
            unread: New flag value.

        Returns:
            Number of cached summaries updated.
        """
        updated = 0
        for thread in self._matching(user_id, item_ids):
            thread.unread = unread
            updated += 1
        return updated

    def _matching(self, user_id: str, item_ids: Sequence[str]) -> list[ThreadSummary]:
        targets = set(item_ids)
        return [
            thread
            for key, entry in self._entries.items()
            if key.user_id == user_id
            for thread in entry.threads.values()
            if matches_identity(thread.id, targets, self.thread_marker, thread.thread_id)
        ]

    def evict(self, key: CacheKey) -> None:
        """Drop one entry (view torn down)."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def validate_state(self) -> list[str]:
        """Return consistency issues across all entries."""
        issues = []
        for entry in self._entries.values():
            issues.extend(entry.validate_state())
        return issues
