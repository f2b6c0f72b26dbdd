"""Selection state machine for a mailbox list.

Tracks the open item, the bulk selection and the active selection mode.
Modes are driven by an explicit stream of key events rather than by
window-level listeners:

    single            no modifier held
    mass              Ctrl or Cmd held        click toggles membership
    range             Shift held              click selects anchor..target
    selectAllBelow    Alt+Shift held          click selects target..end

Only one mode is active at a time and the last modifier pressed wins.
Releasing the modifier of the active mode, or losing window focus, returns
to ``single``. Every transition is synchronous.
"""

import logging
from enum import Enum
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, Field

from models.outcome import MailOperation, Outcome, OutcomeStatus

logger = logging.getLogger(__name__)


class SelectionMode(str, Enum):
    """Exclusive selection modes."""

    SINGLE = "single"
    MASS = "mass"
    RANGE = "range"
    SELECT_ALL_BELOW = "selectAllBelow"


MASS_KEYS = frozenset({"Control", "Meta"})


class KeyEvent(BaseModel):
    """One keyboard or focus event.

    Args:
        type: "keydown", "keyup", or "blur" (window lost focus).
        key: Key name as reported by the host, e.g. "Control", "Shift", "Alt".
        ctrl: Ctrl held when the event fired.
        meta: Cmd/Meta held when the event fired.
        shift: Shift held when the event fired.
        alt: Alt held when the event fired.
    """

    type: Literal["keydown", "keyup", "blur"]
    key: str = ""
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    alt: bool = False


class SelectionState(BaseModel):
    """Selection of one mailbox view.

    Args:
        selected_id: The single open item, or None.
        bulk_selected: Bulk-selected ids; insertion order matters for range anchors.
        mode: Active selection mode.
    """

    selected_id: Optional[str] = Field(default=None, description="Open item")
    bulk_selected: list[str] = Field(default_factory=list, description="Bulk-selected ids in order")
    mode: SelectionMode = Field(default=SelectionMode.SINGLE, description="Active mode")

    def is_bulk_selected(self, item_id: str) -> bool:
        """Check whether an id is in the bulk selection."""
        return item_id in self.bulk_selected

    def validate_state(self) -> list[str]:
        """Return consistency issues (empty list if valid)."""
        issues = []
        if len(set(self.bulk_selected)) != len(self.bulk_selected):
            issues.append("bulk_selected contains duplicate ids")
        return issues


class ActivationResult(BaseModel):
    """What an activation did.

    Args:
        mode: Mode the activation was handled in.
        opened_id: Id that became the open item, if any.
        closed: Whether the open item was closed by this activation.
        changed: Whether the selection state changed at all.
    """

    mode: SelectionMode
    opened_id: Optional[str] = None
    closed: bool = False
    changed: bool = True


def _dedupe(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for item_id in ids:
        if item_id not in seen:
            seen.add(item_id)
            ordered.append(item_id)
    return ordered


class SelectionStateMachine:
    """Owns one ``SelectionState`` and applies events to it.

    Attributes:
        state: The current selection state.
    """

    def __init__(self, state: Optional[SelectionState] = None) -> None:
        """Initialize the machine.

        Args:
            state: Initial state; a fresh one if omitted.
        """
        self.state = state or SelectionState()

    @property
    def mode(self) -> SelectionMode:
        """Active selection mode."""
        return self.state.mode

    # ===== Modes =====

    def set_mode(self, mode: SelectionMode) -> None:
        """Enter a mode, dropping whichever mode was active."""
        if mode != self.state.mode:
            logger.debug(f"Selection mode {self.state.mode.value} -> {mode.value}")
        self.state.mode = mode

    def reset_mode(self) -> None:
        """Return to single mode."""
        self.set_mode(SelectionMode.SINGLE)

    def handle_key(self, event: KeyEvent) -> SelectionMode:
        """Apply a key or focus event to the active mode.

        Args:
            event: The event.

        Returns:
            The mode after the event.
        """
        if event.type == "blur":
            self.reset_mode()
        elif event.type == "keydown":
            if event.key in MASS_KEYS:
                self.set_mode(SelectionMode.MASS)
            elif event.key == "Shift":
                self.set_mode(
                    SelectionMode.SELECT_ALL_BELOW if event.alt else SelectionMode.RANGE
                )
            elif event.key == "Alt" and event.shift:
                self.set_mode(SelectionMode.SELECT_ALL_BELOW)
        elif event.type == "keyup":
            if event.key in MASS_KEYS and self.mode == SelectionMode.MASS:
                self.reset_mode()
            elif event.key == "Shift" and self.mode == SelectionMode.RANGE:
                self.reset_mode()
            elif event.key == "Alt" and self.mode == SelectionMode.SELECT_ALL_BELOW:
                self.reset_mode()
        return self.mode

    # ===== Activation =====

    def activate(
        self,
        item_id: str,
        ordered_ids: Sequence[str],
        thread_id: Optional[str] = None,
    ) -> ActivationResult:
        """Handle a click on an item in the active mode.

        Args:
            item_id: Id of the activated item.
            ordered_ids: Ids of the visible list, in display order.
            thread_id: Thread id of the activated item, if it has a distinct one.

        Returns:
            What the activation did.
        """
        mode = self.mode
        if mode == SelectionMode.MASS:
            self._toggle(item_id)
            return ActivationResult(mode=mode)
        if mode == SelectionMode.RANGE:
            return ActivationResult(mode=mode, changed=self._select_range(item_id, ordered_ids))
        if mode == SelectionMode.SELECT_ALL_BELOW:
            return ActivationResult(mode=mode, changed=self._select_below(item_id, ordered_ids))
        return self._open_or_close(item_id, thread_id)

    def _toggle(self, item_id: str) -> None:
        if item_id in self.state.bulk_selected:
            self.state.bulk_selected = [i for i in self.state.bulk_selected if i != item_id]
        else:
            self.state.bulk_selected = [*self.state.bulk_selected, item_id]

    def _select_range(self, item_id: str, ordered_ids: Sequence[str]) -> bool:
        if self.state.bulk_selected:
            anchor = self.state.bulk_selected[-1]
        else:
            anchor = self.state.selected_id or item_id

        ids = list(ordered_ids)
        if anchor not in ids or item_id not in ids:
            return False

        start, end = sorted((ids.index(anchor), ids.index(item_id)))
        self.state.bulk_selected = _dedupe(ids[start : end + 1])
        return True

    def _select_below(self, item_id: str, ordered_ids: Sequence[str]) -> bool:
        ids = list(ordered_ids)
        if item_id not in ids:
            return False
        self.state.bulk_selected = _dedupe(ids[ids.index(item_id) :])
        return True

    def _open_or_close(self, item_id: str, thread_id: Optional[str]) -> ActivationResult:
        current = self.state.selected_id
        if current is not None and current in (item_id, thread_id):
            self.state.selected_id = None
            self.state.bulk_selected = []
            return ActivationResult(mode=SelectionMode.SINGLE, closed=True)

        opened = thread_id or item_id
        self.state.selected_id = opened
        self.state.bulk_selected = []
        return ActivationResult(mode=SelectionMode.SINGLE, opened_id=opened)

    # ===== Commands =====

    def select_all(self, loaded_ids: Sequence[str]) -> Outcome:
        """Select every loaded id, or deselect all when something is selected.

        Args:
            loaded_ids: Every id currently loaded in the view.

        Returns:
            Outcome carrying the notification text.
        """
        if self.state.bulk_selected:
            self.state.bulk_selected = []
            return Outcome(
                operation=MailOperation.SELECT_ALL,
                status=OutcomeStatus.SUCCESS,
                message="Deselected all emails",
            )
        if not loaded_ids:
            return Outcome(
                operation=MailOperation.SELECT_ALL,
                status=OutcomeStatus.SUCCESS,
                message="No emails to select",
            )
        self.state.bulk_selected = _dedupe(loaded_ids)
        return Outcome(
            operation=MailOperation.SELECT_ALL,
            status=OutcomeStatus.SUCCESS,
            message=f"Selected {len(self.state.bulk_selected)} emails",
            affected_ids=list(self.state.bulk_selected),
        )

    def clear_bulk(self) -> None:
        """Empty the bulk selection."""
        self.state.bulk_selected = []

    def close(self) -> None:
        """Close the open item."""
        self.state.selected_id = None

    def forget(self, item_ids: Sequence[str]) -> None:
        """Drop ids that left the view from the selection.

        Args:
            item_ids: Ids no longer in the view.
        """
        gone = set(item_ids)
        self.state.bulk_selected = [i for i in self.state.bulk_selected if i not in gone]
        if self.state.selected_id in gone:
            self.state.selected_id = None

    def reset(self) -> None:
        """Start over: used on folder change."""
        self.state = SelectionState()
