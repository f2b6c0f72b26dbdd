"""Outcome values returned by every mailbox entry point.

Entry points never raise past their boundary. Success and every kind of
failure travel through the same ``Outcome`` value so the caller can hand it
straight to a notification sink.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class MailOperation(str, Enum):
    """Operations that resolve to an ``Outcome``."""

    ARCHIVE = "archive"
    MARK_SPAM = "mark_spam"
    MOVE_TO_INBOX = "move_to_inbox"
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    SELECT_ALL = "select_all"
    LOAD_PAGE = "load_page"


class OutcomeStatus(str, Enum):
    """Result kinds.

    SUCCESS and PARTIAL are successes. The rest are failures:
    POLICY_VIOLATION and EMPTY_BATCH are decided before any network activity,
    REMOTE_FAILURE after the transport answered, STALE_RESPONSE when an answer
    arrived for a view that is no longer active, UNAUTHENTICATED when no
    session was available.
    """

    SUCCESS = "success"
    PARTIAL = "partial"
    POLICY_VIOLATION = "policy_violation"
    EMPTY_BATCH = "empty_batch"
    REMOTE_FAILURE = "remote_failure"
    STALE_RESPONSE = "stale_response"
    UNAUTHENTICATED = "unauthenticated"


SUCCESS_STATUSES = frozenset({OutcomeStatus.SUCCESS, OutcomeStatus.PARTIAL})


class Outcome(BaseModel):
    """Result of one entry point call.

    Args:
        operation: Which operation produced this outcome.
        status: Result kind.
        message: User-facing text for the notification sink.
        affected_ids: Ids the operation actually changed.
        skipped_ids: Ids removed from the target set by policy.
        failed_ids: Ids whose remote call failed while others succeeded.
        error: Transport error text for remote failures.
    """

    operation: MailOperation = Field(description="Operation that produced this outcome")
    status: OutcomeStatus = Field(description="Result kind")
    message: str = Field(default="", description="User-facing message")
    affected_ids: list[str] = Field(default_factory=list, description="Ids actually changed")
    skipped_ids: list[str] = Field(default_factory=list, description="Ids excluded by policy")
    failed_ids: list[str] = Field(default_factory=list, description="Ids the provider rejected")
    error: Optional[str] = Field(default=None, description="Transport error detail")

    @property
    def success(self) -> bool:
        """Whether the outcome counts as a success."""
        return self.status in SUCCESS_STATUSES

    @property
    def affected_count(self) -> int:
        """Number of items actually affected."""
        return len(self.affected_ids)

    @property
    def skipped_count(self) -> int:
        """Number of items skipped by policy."""
        return len(self.skipped_ids)

    @classmethod
    def failure(
        cls,
        operation: MailOperation,
        status: OutcomeStatus,
        message: str,
        error: Optional[str] = None,
        skipped_ids: Optional[list[str]] = None,
    ) -> "Outcome":
        """Build a failure outcome.

        Args:
            operation: Operation that failed.
            status: Failure kind.
            message: User-facing message.
            error: Transport error detail, if any.
            skipped_ids: Ids excluded by policy, if any.

        Returns:
            The failure outcome.
        """
        return cls(
            operation=operation,
            status=status,
            message=message,
            error=error,
            skipped_ids=skipped_ids or [],
        )
