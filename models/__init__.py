"""Mailview data models package.

This package contains the mailbox state engine: thread summaries, folder
policy, the selection state machine, the shared page cache, the paginated
feed loader, the optimistic mutation engine and the mailbox view that
composes them.

The transport-facing modules (feed, mutation, mailbox) are imported from
their own modules.
"""

from models.thread import ThreadPage, ThreadSummary
from models.outcome import MailOperation, Outcome, OutcomeStatus
from models.folder_policy import FolderPolicy
from models.selection import KeyEvent, SelectionMode, SelectionState, SelectionStateMachine
from models.page_cache import CacheKey, PageCache, PageCacheEntry
from models.session import Session
from models.settings import MailboxSettings
from models.notifications import LoggingNotifier, NotificationSink, RecordingNotifier

__all__ = [
    "ThreadSummary",
    "ThreadPage",
    "MailOperation",
    "Outcome",
    "OutcomeStatus",
    "FolderPolicy",
    "KeyEvent",
    "SelectionMode",
    "SelectionState",
    "SelectionStateMachine",
    "CacheKey",
    "PageCache",
    "PageCacheEntry",
    "Session",
    "MailboxSettings",
    "NotificationSink",
    "LoggingNotifier",
    "RecordingNotifier",
]
