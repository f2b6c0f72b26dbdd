"""Paginated feed loader.

Accumulates pages of one (user, folder, labels, query) feed in the shared
page cache and tracks the loading state of the active view:

    idle -> loading_first_page -> ready <-> loading_next_page

The next page is requested when the viewport comes within a configured
number of rows of the bottom, only while the feed has more pages and no load
is in flight. A response whose originating key is no longer active, or that
was overtaken by a reload of the same key, is discarded.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.folder_policy import FolderPolicy
from models.page_cache import CacheKey, PageCache, PageCacheEntry
from models.settings import MailboxSettings
from models.thread import ThreadPage, ThreadSummary
from transport.base import MailTransport

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    """Loading state of the active feed."""

    IDLE = "idle"
    LOADING_FIRST_PAGE = "loading_first_page"
    READY = "ready"
    LOADING_NEXT_PAGE = "loading_next_page"


class LoadResult(str, Enum):
    """What a load request ended up doing."""

    LOADED = "loaded"
    FROM_CACHE = "from_cache"
    SKIPPED = "skipped"
    STALE = "stale"
    FAILED = "failed"


class Viewport(BaseModel):
    """Scroll geometry reported by the rendering layer.

    Args:
        scroll_top: Pixels scrolled from the top.
        scroll_height: Total scrollable height in pixels.
        client_height: Visible height in pixels.
    """

    scroll_top: float = Field(ge=0)
    scroll_height: float = Field(ge=0)
    client_height: float = Field(ge=0)

    @property
    def distance_to_bottom(self) -> float:
        """Pixels between the visible bottom edge and the end of the list."""
        return self.scroll_height - (self.scroll_top + self.client_height)


class FeedLoader:
    """Loads pages for the active key into the shared cache.

    Attributes:
        key: The active feed key, or None before the first open.
        state: Loading state of the active feed.
        has_more: Whether another page may be requested.
        last_error: Error text of the last failed load.
    """

    def __init__(
        self,
        transport: MailTransport,
        cache: PageCache,
        policy: Optional[FolderPolicy] = None,
        settings: Optional[MailboxSettings] = None,
    ) -> None:
        """Initialize the loader.

        Args:
            transport: Source of pages.
            cache: Shared page cache.
            policy: Folder rules used for the display filter.
            settings: Page size and scroll threshold.
        """
        self.transport = transport
        self.cache = cache
        self.policy = policy or FolderPolicy()
        self.settings = settings or MailboxSettings()

        self.key: Optional[CacheKey] = None
        self.state = FeedState.IDLE
        self.has_more = False
        self.last_error: Optional[str] = None
        self._generation = 0

    @property
    def is_loading_more(self) -> bool:
        """Whether a next-page request is in flight."""
        return self.state == FeedState.LOADING_NEXT_PAGE

    @property
    def entry(self) -> Optional[PageCacheEntry]:
        """Cache entry of the active key."""
        if self.key is None:
            return None
        return self.cache.get(self.key)

    def threads(self) -> list[ThreadSummary]:
        """Every loaded item of the active feed, in arrival order."""
        entry = self.entry
        return entry.ordered_threads() if entry else []

    def visible_threads(self) -> list[ThreadSummary]:
        """Loaded items after the folder display filter."""
        if self.key is None:
            return []
        return self.policy.visible_in(self.key.folder, self.threads())

    def visible_ids(self) -> list[str]:
        return [t.id for t in self.visible_threads()]

    def loaded_ids(self) -> list[str]:
        entry = self.entry
        return list(entry.ids) if entry else []

    def is_stale(self, key: CacheKey, generation: int) -> bool:
        """Check whether a response for (key, generation) no longer applies."""
        return key != self.key or generation != self._generation

    # ===== Loading =====

    def switch(self, key: CacheKey) -> None:
        """Make a key active and orphan any in-flight response of the previous one.

        Args:
            key: The new active key.
        """
        if key != self.key:
            logger.info(f"Switching feed to {key.folder} (labels={list(key.labels)})")
        self.key = key
        self._generation += 1
        self.state = FeedState.IDLE
        self.has_more = False
        self.last_error = None

    async def open(self, key: CacheKey, force: bool = False) -> LoadResult:
        """Activate a key, serving it from cache when the entry is fresh.

        Args:
            key: Feed to show.
            force: Refetch the first page even if the cache is fresh.

        Returns:
            How the feed was served.
        """
        self.switch(key)
        if not force and not self.cache.needs_refresh(key):
            entry = self.cache.get(key)
            self.has_more = entry.has_more
            self.state = FeedState.READY
            return LoadResult.FROM_CACHE
        return await self.load_first_page()

    async def load_first_page(self) -> LoadResult:
        """Fetch the first page and replace the active entry with it.

        Returns:
            The load result.
        """
        if self.key is None:
            return LoadResult.SKIPPED

        key = self.key
        self._generation += 1
        generation = self._generation
        self.state = FeedState.LOADING_FIRST_PAGE

        try:
            page = await self._fetch(key, cursor=None)
        except Exception as e:
            return self._handle_error(key, generation, e)

        if self.is_stale(key, generation):
            logger.warning(f"Discarding first page for inactive feed {key.folder}")
            return LoadResult.STALE

        self.cache.store_first_page(key, page)
        self.has_more = page.has_more
        self.state = FeedState.READY
        logger.info(f"Loaded {len(page.threads)} items for {key.folder}, more={self.has_more}")
        return LoadResult.LOADED

    async def load_next_page(self) -> LoadResult:
        """Fetch and merge the next page of the active feed.

        Returns:
            The load result; SKIPPED when no page may be requested now.
        """
        if self.key is None or self.state != FeedState.READY or not self.has_more:
            return LoadResult.SKIPPED

        entry = self.cache.entry(self.key)
        if not entry.next_cursor:
            self.has_more = False
            return LoadResult.SKIPPED

        key = self.key
        generation = self._generation
        self.state = FeedState.LOADING_NEXT_PAGE

        try:
            page = await self._fetch(key, cursor=entry.next_cursor)
        except Exception as e:
            return self._handle_error(key, generation, e)

        if self.is_stale(key, generation):
            logger.warning(f"Discarding page for inactive feed {key.folder}")
            return LoadResult.STALE

        self.cache.append_page(key, page)
        self.has_more = page.has_more
        self.state = FeedState.READY
        return LoadResult.LOADED

    def near_bottom(self, viewport: Viewport) -> bool:
        """Check whether the viewport is within the load threshold of the end.

        Args:
            viewport: Current scroll geometry.

        Returns:
            True when the remaining distance is under the threshold.
        """
        threshold = self.settings.effective_row_height * self.settings.load_more_threshold_rows
        return viewport.distance_to_bottom < threshold

    async def on_scroll(self, viewport: Viewport) -> LoadResult:
        """Request the next page if the viewport is near the bottom.

        Args:
            viewport: Current scroll geometry.

        Returns:
            The load result; SKIPPED when nothing was requested.
        """
        if not self.near_bottom(viewport):
            return LoadResult.SKIPPED
        return await self.load_next_page()

    async def _fetch(self, key: CacheKey, cursor: Optional[str]) -> ThreadPage:
        return await self.transport.fetch_page(
            key.folder,
            labels=list(key.labels) or None,
            query=key.query or None,
            page_size=self.settings.page_size,
            cursor=cursor,
        )

    def _handle_error(self, key: CacheKey, generation: int, error: Exception) -> LoadResult:
        if self.is_stale(key, generation):
            logger.warning(f"Ignoring failed load for inactive feed {key.folder}: {error}")
            return LoadResult.STALE

        logger.error(f"Failed to load {key.folder}: {error}")
        entry = self.cache.get(key)
        self.state = FeedState.READY if entry and entry.pages_loaded else FeedState.IDLE
        self.has_more = False
        self.last_error = str(error)
        return LoadResult.FAILED
