"""Shared request and response models for the mailbox endpoints."""

from pydantic import BaseModel, Field

from models.feed import FeedState
from models.outcome import Outcome
from models.selection import SelectionMode, SelectionState


class OpenFolderRequest(BaseModel):
    """Request model for opening a folder.

    Attributes:
        folder: Folder name (e.g., "inbox", "spam", "archive").
        labels: Optional label filter.
        query: Optional search query.
        force: Refetch even when the cached pages are fresh.
    """

    folder: str = Field(min_length=1, description="Folder name")
    labels: list[str] = Field(default_factory=list, description="Label filter")
    query: str | None = Field(default=None, description="Search query")
    force: bool = Field(default=False, description="Bypass the page cache")


class ActivateRequest(BaseModel):
    """Request model for clicking a row.

    Attributes:
        id: Id of the clicked row.
    """

    id: str = Field(min_length=1, description="Row id")


class ModeRequest(BaseModel):
    """Request model for setting the selection mode directly.

    Attributes:
        mode: Mode to enter.
    """

    mode: SelectionMode


class TargetsRequest(BaseModel):
    """Request model for label operations.

    Attributes:
        ids: Explicit targets; the current selection is used when omitted.
    """

    ids: list[str] | None = Field(
        default=None, description="Explicit targets, bare or thread-marked"
    )


class ActivationResponse(BaseModel):
    """Response model for a row click.

    Attributes:
        mode: Mode the click was handled in.
        opened_id: Id that became the open item, if any.
        closed: Whether the open item was closed.
        selection: Selection after the click.
    """

    mode: SelectionMode
    opened_id: str | None = None
    closed: bool = False
    selection: SelectionState


class SelectionResponse(BaseModel):
    """Response model for selection changes.

    Attributes:
        mode: Active mode.
        selection: Current selection.
    """

    mode: SelectionMode
    selection: SelectionState


class OutcomeResponse(BaseModel):
    """Response model wrapping an engine outcome.

    Attributes:
        outcome: The outcome of the operation.
        success: Whether the outcome counts as a success.
        has_more: Whether another page may be loaded afterwards.
        state: Feed state afterwards.
    """

    outcome: Outcome
    success: bool
    has_more: bool
    state: FeedState
