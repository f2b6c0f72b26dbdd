"""Notification sinks for operation outcomes.

The mailbox view hands every user-facing outcome to a sink. Stale responses
are never published.
"""

import logging
from typing import Protocol, runtime_checkable

from models.outcome import Outcome, OutcomeStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Receives success and failure messages."""

    def success(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingNotifier:
    """Sink that writes notifications to the log."""

    def success(self, message: str) -> None:
        logger.info(f"Notify: {message}")

    def error(self, message: str) -> None:
        logger.warning(f"Notify error: {message}")


class RecordingNotifier:
    """Sink that keeps notifications in memory.

    Attributes:
        messages: (kind, message) tuples, oldest first; kind is "success" or "error".
    """

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    @property
    def last(self) -> tuple[str, str] | None:
        """Most recent notification, if any."""
        return self.messages[-1] if self.messages else None

    def clear(self) -> None:
        self.messages.clear()


def publish(sink: NotificationSink, outcome: Outcome) -> bool:
    """Send an outcome's message to a sink.

    Args:
        sink: Destination.
        outcome: Outcome to publish.

    Returns:
        True if something was sent.
    """
    if outcome.status == OutcomeStatus.STALE_RESPONSE or not outcome.message:
        return False
    if outcome.success:
        sink.success(outcome.message)
    else:
        sink.error(outcome.message)
    return True
