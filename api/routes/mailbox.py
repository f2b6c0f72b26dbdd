"""Mailbox endpoints.

Exposes the shared MailboxView to a rendering client: the visible list and
selection, folder switching, scrolling, the modifier-key stream, row clicks,
selection commands, and the label and read-state operations.
"""

from fastapi import APIRouter

from api.dependencies import MailboxViewDep
from api.models import (
    ActivateRequest,
    ActivationResponse,
    ModeRequest,
    OpenFolderRequest,
    OutcomeResponse,
    SelectionResponse,
    TargetsRequest,
)
from models.feed import Viewport
from models.mailbox import MailboxSnapshot, MailboxView
from models.outcome import Outcome
from models.selection import KeyEvent

router = APIRouter(
    prefix="/mailbox",
    tags=["mailbox"],
)


def _outcome_response(view: MailboxView, outcome: Outcome) -> OutcomeResponse:
    return OutcomeResponse(
        outcome=outcome,
        success=outcome.success,
        has_more=view.feed.has_more,
        state=view.feed.state,
    )


def _selection_response(view: MailboxView) -> SelectionResponse:
    return SelectionResponse(mode=view.selection.mode, selection=view.selection.state)


# ============================================================================
# Feed
# ============================================================================


@router.get("/view", response_model=MailboxSnapshot)
async def get_view(view: MailboxViewDep):
    """Get the visible list, paging flags and selection.

    Returns:
        The current mailbox snapshot.
    """
    return view.snapshot()


@router.post("/open", response_model=OutcomeResponse)
async def open_folder(request: OpenFolderRequest, view: MailboxViewDep):
    """Open a folder, serving it from cache when fresh.

    Args:
        request: Folder, label filter and query to show.

    Returns:
        Outcome of the load.
    """
    outcome = await view.open_folder(
        request.folder, request.labels, request.query, force=request.force
    )
    return _outcome_response(view, outcome)


@router.post("/scroll", response_model=OutcomeResponse)
async def scroll(request: Viewport, view: MailboxViewDep):
    """Report the scroll position; loads the next page near the bottom.

    Args:
        request: Current scroll geometry.

    Returns:
        Outcome of the load, if one happened.
    """
    view.require_folder()
    outcome = await view.on_scroll(request)
    return _outcome_response(view, outcome)


# ============================================================================
# Selection
# ============================================================================


@router.post("/keys", response_model=SelectionResponse)
async def handle_keys(events: list[KeyEvent], view: MailboxViewDep):
    """Feed key and focus events to the selection machine, in order.

    Args:
        events: Key-down, key-up and blur events.

    Returns:
        The selection after the last event.
    """
    for event in events:
        view.handle_key(event)
    return _selection_response(view)


@router.post("/mode", response_model=SelectionResponse)
async def set_mode(request: ModeRequest, view: MailboxViewDep):
    """Enter a selection mode directly."""
    view.set_mode(request.mode)
    return _selection_response(view)


@router.post("/activate", response_model=ActivationResponse)
async def activate(request: ActivateRequest, view: MailboxViewDep):
    """Click a row in the active selection mode.

    Args:
        request: The clicked row.

    Returns:
        What the click did and the resulting selection.
    """
    view.require_folder()
    result = await view.activate(request.id)
    return ActivationResponse(
        mode=result.mode,
        opened_id=result.opened_id,
        closed=result.closed,
        selection=view.selection.state,
    )


@router.post("/select-all", response_model=OutcomeResponse)
async def select_all(view: MailboxViewDep):
    """Select every loaded row, or deselect all when something is selected."""
    view.require_folder()
    outcome = await view.select_all()
    return _outcome_response(view, outcome)


@router.post("/clear-selection", response_model=SelectionResponse)
async def clear_selection(view: MailboxViewDep):
    """Drop the bulk selection."""
    view.clear_selection()
    return _selection_response(view)


# ============================================================================
# Mutations
# ============================================================================


@router.post("/archive", response_model=OutcomeResponse)
async def archive(request: TargetsRequest, view: MailboxViewDep):
    """Archive the given ids, or the current selection.

    Args:
        request: Optional explicit targets.

    Returns:
        Outcome of the archive.
    """
    view.require_folder()
    if request.ids is None:
        outcome = await view.archive_selected()
    else:
        outcome = await view.archive(request.ids)
    return _outcome_response(view, outcome)


@router.post("/spam", response_model=OutcomeResponse)
async def mark_spam(request: TargetsRequest, view: MailboxViewDep):
    """Mark the given ids, or the current selection, as spam."""
    view.require_folder()
    if request.ids is None:
        outcome = await view.mark_spam_selected()
    else:
        outcome = await view.mark_spam(request.ids)
    return _outcome_response(view, outcome)


@router.post("/inbox", response_model=OutcomeResponse)
async def move_to_inbox(request: TargetsRequest, view: MailboxViewDep):
    """Move the given ids, or the current selection, to the inbox."""
    view.require_folder()
    if request.ids is None:
        outcome = await view.move_to_inbox_selected()
    else:
        outcome = await view.move_to_inbox(request.ids)
    return _outcome_response(view, outcome)


@router.post("/read", response_model=OutcomeResponse)
async def mark_read(view: MailboxViewDep):
    """Mark the current selection as read."""
    view.require_folder()
    outcome = await view.mark_selected_read()
    return _outcome_response(view, outcome)


@router.post("/unread", response_model=OutcomeResponse)
async def mark_unread(view: MailboxViewDep):
    """Mark the current selection as unread."""
    view.require_folder()
    outcome = await view.mark_selected_unread()
    return _outcome_response(view, outcome)
