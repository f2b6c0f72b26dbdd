"""Optimistic mutation engine.

Runs label-changing operations (archive, mark spam, move to inbox) and
read-state changes against the transport, then reconciles the shared page
cache. Every operation follows the same steps:

1. Check the session and the folder policy. A refusal never reaches the
   transport.
2. Drop items the policy excludes; an emptied target set fails.
3. Issue one call for a single item, or one batched call for several.
   With the "per_item" strategy, issue one concurrent call per item and
   report success only if every call succeeded.
4. On success, remove the targets from the originating folder's cached list,
   update cached labels everywhere, and mark related folders stale. On
   failure, leave the cache untouched.

Operations never raise; they resolve to an ``Outcome``.
"""

import asyncio
import logging
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from models.folder_policy import FolderPolicy
from models.outcome import MailOperation, Outcome, OutcomeStatus
from models.page_cache import PageCache
from models.session import Session
from models.settings import MailboxSettings
from models.thread import is_thread_id, strip_thread_marker
from transport.base import LabelUpdateResult, MailTransport
from transport.exceptions import TransportError

logger = logging.getLogger(__name__)


# operation -> (past participle, failure message)
OPERATION_TEXT: dict[MailOperation, tuple[str, str]] = {
    MailOperation.ARCHIVE: ("archived", "Error archiving selected items"),
    MailOperation.MARK_SPAM: ("marked as spam", "Error marking selected items as spam"),
    MailOperation.MOVE_TO_INBOX: ("moved to inbox", "Error moving selected items to inbox"),
    MailOperation.MARK_READ: ("Marked as read", "Failed to mark as read"),
    MailOperation.MARK_UNREAD: ("Marked as unread", "Failed to mark as unread"),
}


class MutationContext(BaseModel):
    """Where an operation was issued from.

    Captured when the operation starts, so a result that arrives after the
    view moved to another folder still reconciles the folder it came from.

    Args:
        session: Session of the issuing view.
        folder: Folder the targets were selected in.
    """

    session: Session = Field(default_factory=Session)
    folder: str = "inbox"

    @property
    def user_id(self) -> str:
        return self.session.user_id or ""


def _dedupe(ids: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class MutationEngine:
    """Validates, sends and reconciles mail mutations.

    Attributes:
        transport: Remote label and read-state calls.
        cache: Shared page cache reconciled on success.
        policy: Folder rules consulted before any call.
        settings: Bulk strategy and thread marker.
    """

    def __init__(
        self,
        transport: MailTransport,
        cache: PageCache,
        policy: Optional[FolderPolicy] = None,
        settings: Optional[MailboxSettings] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            transport: Remote label and read-state calls.
            cache: Shared page cache.
            policy: Folder rules.
            settings: Engine settings.
        """
        self.transport = transport
        self.cache = cache
        self.policy = policy or FolderPolicy()
        self.settings = settings or MailboxSettings()

    # ===== Label operations =====

    async def archive(self, item_ids: Sequence[str], context: MutationContext) -> Outcome:
        """Remove INBOX from the targets; refused for anything bearing SPAM."""
        return await self.run(MailOperation.ARCHIVE, item_ids, context)

    async def mark_spam(self, item_ids: Sequence[str], context: MutationContext) -> Outcome:
        """Add SPAM and remove INBOX; inbox only, sent items are skipped."""
        return await self.run(MailOperation.MARK_SPAM, item_ids, context)

    async def move_to_inbox(self, item_ids: Sequence[str], context: MutationContext) -> Outcome:
        """Add INBOX and remove SPAM; never refused."""
        return await self.run(MailOperation.MOVE_TO_INBOX, item_ids, context)

    async def run(
        self,
        operation: MailOperation,
        item_ids: Sequence[str],
        context: MutationContext,
    ) -> Outcome:
        """Validate, send and reconcile one label operation.

        Args:
            operation: ARCHIVE, MARK_SPAM or MOVE_TO_INBOX.
            item_ids: Targets, bare or thread-marked.
            context: Issuing session and folder.

        Returns:
            The outcome of the operation.
        """
        verb, failure_message = OPERATION_TEXT[operation]
        targets = _dedupe(item_ids)

        if not targets:
            return Outcome.failure(operation, OutcomeStatus.EMPTY_BATCH, "No items selected")

        if not context.session.is_active:
            logger.warning(f"Refusing {operation.value}: no active session")
            return Outcome.failure(operation, OutcomeStatus.UNAUTHENTICATED, "Not signed in")

        refusal = self._check_folder(operation, context.folder)
        if refusal:
            logger.warning(f"Refusing {operation.value} in {context.folder}: {refusal}")
            return Outcome.failure(
                operation, OutcomeStatus.POLICY_VIOLATION, refusal, skipped_ids=targets
            )

        eligible, skipped = self._filter_eligible(operation, targets, context)
        if not eligible:
            if len(targets) == 1:
                message = f"This item cannot be {verb}"
                status = OutcomeStatus.POLICY_VIOLATION
            else:
                message = f"No eligible items to be {verb}"
                status = OutcomeStatus.EMPTY_BATCH
            logger.warning(f"Refusing {operation.value}: {message}")
            return Outcome.failure(operation, status, message, skipped_ids=skipped)

        add_labels, remove_labels = self.policy.label_delta(operation)
        succeeded, failed, error = await self._send(eligible, add_labels, remove_labels)

        if failed and not (succeeded and self.settings.reconcile_partial_success):
            logger.error(f"{operation.value} failed for {len(eligible)} items: {error}")
            return Outcome(
                operation=operation,
                status=OutcomeStatus.REMOTE_FAILURE,
                message=failure_message,
                skipped_ids=skipped,
                failed_ids=failed,
                error=error,
            )

        self.reconcile(operation, succeeded, context)

        count = len(succeeded)
        if skipped or failed:
            parts = [f"{count} items {verb}"]
            if skipped:
                parts.append(f"{len(skipped)} skipped")
            if failed:
                parts.append(f"{len(failed)} failed")
            status = OutcomeStatus.PARTIAL
            message = ", ".join(parts)
        else:
            status = OutcomeStatus.SUCCESS
            message = f"{count} item(s) {verb}"

        logger.info(f"{operation.value} in {context.folder}: {message}")
        return Outcome(
            operation=operation,
            status=status,
            message=message,
            affected_ids=succeeded,
            skipped_ids=skipped,
            failed_ids=failed,
            error=error,
        )

    def reconcile(
        self, operation: MailOperation, item_ids: Sequence[str], context: MutationContext
    ) -> list[str]:
        """Apply a confirmed operation to the cache.

        Removes the items from every cached list of the originating folder,
        updates the labels of every cached copy, and marks related folders
        stale. Safe to apply more than once.

        Args:
            operation: The confirmed operation.
            item_ids: Ids the provider confirmed.
            context: Issuing session and folder.

        Returns:
            Cached ids removed from the originating folder.
        """
        add_labels, remove_labels = self.policy.label_delta(operation)
        removed = self.cache.remove_from_folder(context.user_id, context.folder, item_ids)
        self.cache.apply_label_delta(context.user_id, item_ids, add_labels, remove_labels)
        self.cache.invalidate_folders(
            context.user_id, self.policy.invalidated_folders(operation)
        )
        return removed

    # ===== Read state =====

    async def set_read_state(
        self, item_ids: Sequence[str], unread: bool, context: MutationContext
    ) -> Outcome:
        """Mark items read or unread and update cached flags on success.

        Args:
            item_ids: Targets.
            unread: True to mark unread, False to mark read.
            context: Issuing session and folder.

        Returns:
            The outcome of the operation.
        """
        operation = MailOperation.MARK_UNREAD if unread else MailOperation.MARK_READ
        success_message, failure_message = OPERATION_TEXT[operation]
        targets = _dedupe(item_ids)

        if not targets:
            return Outcome.failure(operation, OutcomeStatus.EMPTY_BATCH, "No items selected")
        if not context.session.is_active:
            return Outcome.failure(operation, OutcomeStatus.UNAUTHENTICATED, "Not signed in")

        try:
            if unread:
                result = await self.transport.mark_unread(targets)
            else:
                result = await self.transport.mark_read(targets)
        except TransportError as e:
            result = LabelUpdateResult(success=False, error=str(e))

        if not result.success:
            logger.error(f"{operation.value} failed for {len(targets)} items: {result.error}")
            return Outcome(
                operation=operation,
                status=OutcomeStatus.REMOTE_FAILURE,
                message=failure_message,
                failed_ids=targets,
                error=result.error,
            )

        self.cache.set_unread(context.user_id, targets, unread)
        return Outcome(
            operation=operation,
            status=OutcomeStatus.SUCCESS,
            message=success_message,
            affected_ids=targets,
        )

    # ===== Internals =====

    def _check_folder(self, operation: MailOperation, folder: str) -> Optional[str]:
        if operation == MailOperation.ARCHIVE and not self.policy.can_archive_from(folder):
            return "Items in spam cannot be archived"
        if operation == MailOperation.MARK_SPAM and not self.policy.can_mark_spam_from(folder):
            return "Only inbox items can be marked as spam"
        return None

    def _current_labels(self, item_id: str, context: MutationContext) -> frozenset[str]:
        thread = self.cache.find(context.user_id, context.folder, item_id)
        if thread is None:
            return self.policy.labels_implied_by(context.folder)
        return frozenset(thread.labels)

    def _filter_eligible(
        self, operation: MailOperation, item_ids: list[str], context: MutationContext
    ) -> tuple[list[str], list[str]]:
        eligible, skipped = [], []
        for item_id in item_ids:
            labels = self._current_labels(item_id, context)
            if operation == MailOperation.ARCHIVE:
                allowed = self.policy.can_archive(labels)
            elif operation == MailOperation.MARK_SPAM:
                allowed = self.policy.can_mark_spam(context.folder, labels)
            else:
                allowed = self.policy.can_move_to_inbox(labels)
            (eligible if allowed else skipped).append(item_id)
        return eligible, skipped

    async def _send_one(
        self, item_id: str, add_labels: list[str], remove_labels: list[str]
    ) -> LabelUpdateResult:
        marker = self.settings.thread_marker
        if is_thread_id(item_id, marker):
            return await self.transport.update_thread_labels(
                strip_thread_marker(item_id, marker), add_labels, remove_labels
            )
        return await self.transport.update_labels(item_id, add_labels, remove_labels)

    async def _send(
        self, item_ids: list[str], add_labels: list[str], remove_labels: list[str]
    ) -> tuple[list[str], list[str], Optional[str]]:
        """Issue the remote calls for an eligible target set.

        Returns:
            Tuple of (succeeded ids, failed ids, first error text).
        """
        if len(item_ids) > 1 and self.settings.bulk_strategy == "per_item":
            return await self._send_per_item(item_ids, add_labels, remove_labels)

        try:
            if len(item_ids) == 1:
                result = await self._send_one(item_ids[0], add_labels, remove_labels)
            else:
                result = await self.transport.batch_update_labels(
                    item_ids, add_labels, remove_labels
                )
        except TransportError as e:
            return [], list(item_ids), str(e)

        if result.success:
            return list(item_ids), [], None
        return [], list(item_ids), result.error or "Provider rejected the change"

    async def _send_per_item(
        self, item_ids: list[str], add_labels: list[str], remove_labels: list[str]
    ) -> tuple[list[str], list[str], Optional[str]]:
        results = await asyncio.gather(
            *(self._send_one(i, add_labels, remove_labels) for i in item_ids),
            return_exceptions=True,
        )

        succeeded, failed = [], []
        error = None
        for item_id, result in zip(item_ids, results):
            if isinstance(result, LabelUpdateResult) and result.success:
                succeeded.append(item_id)
                continue
            if isinstance(result, BaseException) and not isinstance(result, TransportError):
                raise result
            failed.append(item_id)
            if error is None:
                error = str(result) if isinstance(result, BaseException) else result.error
        return succeeded, failed, error
