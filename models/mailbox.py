"""Mailbox view: the single-writer context behind one rendered mailbox list.

A ``MailboxView`` owns the selection of one view and the feed loader of its
active folder, and shares the page cache with every other view of the same
user. The rendering layer drives it through the entry points below and reads
it back through ``snapshot()``:

    open_folder / refresh        switch or reload the active feed
    on_scroll                    load the next page near the bottom
    handle_key / set_mode        modifier stream for the selection machine
    activate                     click on a row
    select_all / clear_selection
    archive_selected / mark_spam_selected / move_to_inbox_selected
    archive / mark_spam / move_to_inbox      explicit targets
    mark_selected_read / mark_selected_unread

Every entry point that reaches the transport resolves to an ``Outcome`` and
never raises.
"""

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from models.feed import FeedLoader, FeedState, LoadResult, Viewport
from models.folder_policy import FolderPolicy
from models.mutation import OPERATION_TEXT, MutationContext, MutationEngine
from models.notifications import LoggingNotifier, NotificationSink, publish
from models.outcome import MailOperation, Outcome, OutcomeStatus
from models.page_cache import CacheKey, PageCache
from models.selection import (
    ActivationResult,
    KeyEvent,
    SelectionMode,
    SelectionState,
    SelectionStateMachine,
)
from models.session import Session
from models.settings import MailboxSettings
from models.thread import ThreadSummary, matches_identity
from transport.base import MailTransport

logger = logging.getLogger(__name__)


class FolderNotOpenError(Exception):
    """Raised when an operation needs an open folder and none is open.

    Args:
        message: Description of the operation that failed.
    """

    def __init__(self, message: str = "No folder is open"):
        self.message = message
        super().__init__(message)


class MailboxSnapshot(BaseModel):
    """Read-only state handed to the rendering layer.

    Args:
        folder: Active folder, or None before the first open.
        labels: Active label filter.
        query: Active search query.
        items: Visible items in display order.
        has_more: Whether another page may be loaded.
        is_loading_more: Whether a next-page load is in flight.
        state: Feed loading state.
        selection: Current selection state.
        row_height: Row height for the current density.
        last_error: Error text of the last failed load.
    """

    folder: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    query: str = ""
    items: list[ThreadSummary] = Field(default_factory=list)
    has_more: bool = False
    is_loading_more: bool = False
    state: FeedState = FeedState.IDLE
    selection: SelectionState = Field(default_factory=SelectionState)
    row_height: int = 96
    last_error: Optional[str] = None


LOAD_STATUS = {
    LoadResult.LOADED: OutcomeStatus.SUCCESS,
    LoadResult.FROM_CACHE: OutcomeStatus.SUCCESS,
    LoadResult.SKIPPED: OutcomeStatus.SUCCESS,
    LoadResult.STALE: OutcomeStatus.STALE_RESPONSE,
    LoadResult.FAILED: OutcomeStatus.REMOTE_FAILURE,
}


class MailboxView:
    """One mailbox list with its selection, feed and mutation engine.

    Attributes:
        settings: View configuration.
        session: Identity used for cache keys and remote calls.
        cache: Page cache, shared with other views of the same user.
        selection: Selection state machine of this view.
        feed: Feed loader of the active folder.
        engine: Mutation engine.
        notifier: Sink for user-facing messages.
    """

    def __init__(
        self,
        transport: MailTransport,
        session: Optional[Session] = None,
        settings: Optional[MailboxSettings] = None,
        cache: Optional[PageCache] = None,
        policy: Optional[FolderPolicy] = None,
        notifier: Optional[NotificationSink] = None,
    ) -> None:
        """Initialize the view.

        Args:
            transport: Remote mail provider.
            session: Session; built from settings if omitted.
            settings: Configuration; defaults if omitted.
            cache: Shared page cache; a private one if omitted.
            policy: Folder rules.
            notifier: Notification sink; logs if omitted.
        """
        self.settings = settings or MailboxSettings()
        self.session = session or Session(
            user_id=self.settings.user_id, connection_id=self.settings.connection_id
        )
        self.transport = transport
        self.cache = cache or PageCache(self.settings.thread_marker)
        self.policy = policy or FolderPolicy()
        self.notifier = notifier or LoggingNotifier()

        self.selection = SelectionStateMachine()
        self.feed = FeedLoader(transport, self.cache, self.policy, self.settings)
        self.engine = MutationEngine(transport, self.cache, self.policy, self.settings)
        self._background: set[asyncio.Task] = set()

    @property
    def folder(self) -> Optional[str]:
        """Active folder, if one is open."""
        return self.feed.key.folder if self.feed.key else None

    def require_folder(self) -> str:
        """Return the active folder.

        Raises:
            FolderNotOpenError: If no folder has been opened.
        """
        if self.folder is None:
            raise FolderNotOpenError()
        return self.folder

    def _context(self) -> MutationContext:
        return MutationContext(session=self.session, folder=self.folder or "")

    # ===== Feed =====

    async def open_folder(
        self,
        folder: str,
        labels: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
        force: bool = False,
    ) -> Outcome:
        """Show a folder, serving it from cache when fresh.

        Switching to another key resets the selection and orphans any page
        still in flight for the previous key.

        Args:
            folder: Folder name.
            labels: Optional label filter.
            query: Optional search query.
            force: Refetch even if the cache entry is fresh.

        Returns:
            Outcome of the load.
        """
        if not self.session.is_active:
            return Outcome.failure(
                MailOperation.LOAD_PAGE, OutcomeStatus.UNAUTHENTICATED, "Not signed in"
            )

        key = CacheKey.build(self.session.user_id, folder, labels, query)
        if key != self.feed.key:
            self.selection.reset()
        result = await self.feed.open(key, force=force)
        return self._load_outcome(result)

    async def refresh(self) -> Outcome:
        """Refetch the first page of the active folder."""
        key = self.feed.key
        if key is None:
            raise FolderNotOpenError("Open a folder before refreshing it")
        return await self.open_folder(key.folder, key.labels, key.query, force=True)

    async def on_scroll(self, viewport: Viewport) -> Outcome:
        """Load the next page if the viewport is near the bottom.

        Args:
            viewport: Current scroll geometry.

        Returns:
            Outcome of the load; a success with no message when nothing was loaded.
        """
        if not self.session.is_active:
            return Outcome.failure(
                MailOperation.LOAD_PAGE, OutcomeStatus.UNAUTHENTICATED, "Not signed in"
            )
        result = await self.feed.on_scroll(viewport)
        return self._load_outcome(result)

    def _load_outcome(self, result: LoadResult) -> Outcome:
        status = LOAD_STATUS[result]
        message = ""
        if result == LoadResult.LOADED:
            message = f"{len(self.feed.loaded_ids())} items loaded"
        elif result == LoadResult.FAILED:
            message = "Failed to load messages"
        return Outcome(
            operation=MailOperation.LOAD_PAGE,
            status=status,
            message=message,
            error=self.feed.last_error if result == LoadResult.FAILED else None,
        )

    # ===== Selection =====

    def set_mode(self, mode: SelectionMode) -> SelectionMode:
        self.selection.set_mode(mode)
        return self.selection.mode

    def handle_key(self, event: KeyEvent) -> SelectionMode:
        return self.selection.handle_key(event)

    async def activate(self, item_id: str) -> ActivationResult:
        """Handle a click on a row.

        Opening an unread item in single mode clears its unread flag locally
        at once and sends the mark-read call in the background. A failed
        mark-read is logged and not surfaced.

        Args:
            item_id: Id of the clicked row.

        Returns:
            What the activation did.
        """
        visible = self.feed.visible_threads()
        thread = next((t for t in visible if t.id == item_id), None)
        thread_id = thread.thread_id if thread else None

        result = self.selection.activate(item_id, [t.id for t in visible], thread_id)

        if result.opened_id and thread is not None and thread.unread:
            self.cache.set_unread(self.session.user_id or "", [item_id], False)
            if self.session.is_active:
                self._spawn(self._mark_read_on_open(item_id, self._context()))
        return result

    async def _mark_read_on_open(self, item_id: str, context: MutationContext) -> None:
        try:
            outcome = await self.engine.set_read_state([item_id], False, context)
        except Exception as e:
            logger.exception(f"Mark read on open failed for {item_id}")
            outcome = Outcome.failure(
                MailOperation.MARK_READ, OutcomeStatus.REMOTE_FAILURE, "", error=str(e)
            )

        if outcome.success:
            return
        logger.warning(f"Could not mark {item_id} as read: {outcome.error}")
        if self.settings.rollback_read_on_failure:
            self.cache.set_unread(self.session.user_id or "", [item_id], True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def select_all(self) -> Outcome:
        """Select every loaded item, or deselect all when something is selected.

        Loaded rows the folder filter hides (sent items in the inbox) are
        selected too.
        """
        self.selection.reset_mode()
        outcome = self.selection.select_all(self.feed.loaded_ids())
        publish(self.notifier, outcome)
        return outcome

    def clear_selection(self) -> SelectionState:
        """Drop the bulk selection and return to single mode."""
        self.selection.clear_bulk()
        self.selection.reset_mode()
        return self.selection.state

    def selected_targets(self) -> list[str]:
        """Ids a "selected" operation acts on.

        The bulk selection when it is non-empty; otherwise the open item, in
        thread-marked form when it is a thread.

        Returns:
            Target ids, possibly empty.
        """
        state = self.selection.state
        if state.bulk_selected:
            return list(state.bulk_selected)
        if state.selected_id is None:
            return []

        selected = state.selected_id
        for thread in self.feed.threads():
            if thread.thread_id == selected and thread.id != selected:
                return [f"{self.settings.thread_marker}{selected}"]
        return [selected]

    # ===== Mutations =====

    async def archive_selected(self) -> Outcome:
        return await self._mutate(MailOperation.ARCHIVE, self.selected_targets())

    async def mark_spam_selected(self) -> Outcome:
        return await self._mutate(MailOperation.MARK_SPAM, self.selected_targets())

    async def move_to_inbox_selected(self) -> Outcome:
        return await self._mutate(MailOperation.MOVE_TO_INBOX, self.selected_targets())

    async def archive(self, item_ids: Sequence[str]) -> Outcome:
        return await self._mutate(MailOperation.ARCHIVE, item_ids)

    async def mark_spam(self, item_ids: Sequence[str]) -> Outcome:
        return await self._mutate(MailOperation.MARK_SPAM, item_ids)

    async def move_to_inbox(self, item_ids: Sequence[str]) -> Outcome:
        return await self._mutate(MailOperation.MOVE_TO_INBOX, item_ids)

    async def mark_selected_read(self) -> Outcome:
        return await self._set_selected_read_state(unread=False)

    async def mark_selected_unread(self) -> Outcome:
        return await self._set_selected_read_state(unread=True)

    async def _mutate(self, operation: MailOperation, item_ids: Sequence[str]) -> Outcome:
        if self.folder is None:
            outcome = Outcome.failure(
                operation, OutcomeStatus.POLICY_VIOLATION, "No folder is open"
            )
            publish(self.notifier, outcome)
            return outcome

        key = self.feed.key
        try:
            outcome = await self.engine.run(operation, item_ids, self._context())
        except Exception as e:
            logger.exception(f"Unexpected error during {operation.value}")
            outcome = Outcome.failure(
                operation,
                OutcomeStatus.REMOTE_FAILURE,
                OPERATION_TEXT[operation][1],
                error=str(e),
            )

        # The selection belongs to the active key; a result for an older key
        # has already been reconciled into its own folder's cache.
        if outcome.success and self.feed.key == key:
            self.selection.clear_bulk()
            self._forget(outcome.affected_ids)

        publish(self.notifier, outcome)
        return outcome

    def _forget(self, item_ids: Sequence[str]) -> None:
        marker = self.settings.thread_marker
        state = self.selection.state
        gone = [i for i in state.bulk_selected if matches_identity(i, item_ids, marker)]
        if state.selected_id is not None and matches_identity(
            state.selected_id, item_ids, marker
        ):
            gone.append(state.selected_id)
        self.selection.forget(gone)

    async def _set_selected_read_state(self, unread: bool) -> Outcome:
        self.selection.reset_mode()
        operation = MailOperation.MARK_UNREAD if unread else MailOperation.MARK_READ
        key = self.feed.key
        try:
            outcome = await self.engine.set_read_state(
                self.selected_targets(), unread, self._context()
            )
        except Exception as e:
            logger.exception(f"Unexpected error during {operation.value}")
            outcome = Outcome.failure(
                operation, OutcomeStatus.REMOTE_FAILURE, OPERATION_TEXT[operation][1], error=str(e)
            )

        if outcome.success and self.feed.key == key:
            self.selection.clear_bulk()
        publish(self.notifier, outcome)
        return outcome

    # ===== Read side =====

    def snapshot(self) -> MailboxSnapshot:
        """Return the state the rendering layer draws."""
        key = self.feed.key
        return MailboxSnapshot(
            folder=key.folder if key else None,
            labels=list(key.labels) if key else [],
            query=key.query if key else "",
            items=[t.model_copy(deep=True) for t in self.feed.visible_threads()],
            has_more=self.feed.has_more,
            is_loading_more=self.feed.is_loading_more,
            state=self.feed.state,
            selection=self.selection.state.model_copy(deep=True),
            row_height=self.settings.effective_row_height,
            last_error=self.feed.last_error,
        )

    def validate_state(self) -> list[str]:
        """Return consistency issues of the selection and the cache."""
        return self.selection.state.validate_state() + self.cache.validate_state()

    # ===== Lifecycle =====

    async def drain(self) -> None:
        """Wait for background work (mark-read on open) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Finish background work and release the transport."""
        await self.drain()
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
