"""Unit tests for the optimistic mutation engine.

This module tests policy refusals before any remote call, per-item policy
filtering, single, batched and per-item remote calls, cache reconciliation
on success, and untouched caches on failure.
"""

import asyncio

import httpx
import pytest

from models.mutation import MutationContext, MutationEngine
from models.outcome import MailOperation, OutcomeStatus
from models.page_cache import CacheKey, PageCache
from models.settings import MailboxSettings
from models.thread import INBOX, SENT, SPAM, ThreadPage
from tests.fixtures.mailbox import USER_ID, create_mock_transport, create_session
from tests.fixtures.threads import create_page, create_thread
from transport.base import LabelUpdateResult
from transport.exceptions import TransportConnectionError
from transport.http import HTTPMailTransport

INBOX_KEY = CacheKey.build(USER_ID, "inbox")
SPAM_KEY = CacheKey.build(USER_ID, "spam")
ARCHIVE_KEY = CacheKey.build(USER_ID, "archive")


def context(folder: str = "inbox") -> MutationContext:
    return MutationContext(session=create_session(), folder=folder)


@pytest.fixture
def seeded_cache():
    """Cache with inbox [A,B,C,D], spam [X,Y] and an archive entry."""
    cache = PageCache()
    cache.store_first_page(INBOX_KEY, create_page(["A", "B", "C", "D"]))
    cache.store_first_page(SPAM_KEY, create_page(["X", "Y"], labels={SPAM}))
    cache.store_first_page(ARCHIVE_KEY, create_page(["Z"], labels=set()))
    return cache


def create_engine(transport, cache, **settings) -> MutationEngine:
    return MutationEngine(transport=transport, cache=cache, settings=MailboxSettings(**settings))


class TestPolicyRefusals:
    """Test refusals that never reach the transport."""

    async def test_archive_in_spam_is_refused(self, seeded_cache):
        """Verify archive from the spam folder is a policy violation with no call."""
        transport = create_mock_transport()
        engine = create_engine(transport, seeded_cache)

        outcome = await engine.archive(["X"], context("spam"))

        assert outcome.status == OutcomeStatus.POLICY_VIOLATION
        assert not outcome.success
        transport.update_labels.assert_not_awaited()
        transport.batch_update_labels.assert_not_awaited()
        assert seeded_cache.get(SPAM_KEY).ids == ["X", "Y"]

    @pytest.mark.parametrize("ids", [["X"], ["X", "Y"], ["thread:X"]])
    async def test_archive_in_spam_refused_for_any_target(self, seeded_cache, ids):
        """Verify archive from spam never calls the transport."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache).archive(ids, context("spam"))

        assert outcome.status == OutcomeStatus.POLICY_VIOLATION
        assert transport.method_calls == []

    async def test_spam_outside_inbox_is_refused(self, seeded_cache):
        """Verify mark-spam requires the inbox."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache).mark_spam(["Z"], context("archive"))

        assert outcome.status == OutcomeStatus.POLICY_VIOLATION
        assert transport.method_calls == []

    async def test_single_spam_labelled_item_cannot_be_archived(self):
        """Verify a single SPAM-bearing item outside the spam folder is refused."""
        cache = PageCache()
        cache.store_first_page(CacheKey.build(USER_ID, "starred"), create_page(["S"], labels={SPAM}))
        transport = create_mock_transport()

        outcome = await create_engine(transport, cache).archive(["S"], context("starred"))

        assert outcome.status == OutcomeStatus.POLICY_VIOLATION
        assert outcome.skipped_ids == ["S"]
        assert transport.method_calls == []

    async def test_all_sent_batch_is_empty(self):
        """Verify a batch emptied by the SENT exclusion fails as an empty batch."""
        cache = PageCache()
        cache.store_first_page(INBOX_KEY, create_page(["S1", "S2"], labels={INBOX, SENT}))
        transport = create_mock_transport()

        outcome = await create_engine(transport, cache).mark_spam(["S1", "S2"], context())

        assert outcome.status == OutcomeStatus.EMPTY_BATCH
        assert outcome.skipped_count == 2
        assert transport.method_calls == []

    async def test_no_targets(self, seeded_cache):
        """Verify an empty target list is an empty batch."""
        outcome = await create_engine(create_mock_transport(), seeded_cache).archive([], context())

        assert outcome.status == OutcomeStatus.EMPTY_BATCH

    async def test_unauthenticated(self, seeded_cache):
        """Verify no session means no remote call."""
        transport = create_mock_transport()
        ctx = MutationContext(session=create_session(connection_id=None), folder="inbox")

        outcome = await create_engine(transport, seeded_cache).archive(["A"], ctx)

        assert outcome.status == OutcomeStatus.UNAUTHENTICATED
        assert transport.method_calls == []


class TestArchive:
    """Test successful archive reconciliation."""

    async def test_single_archive_uses_update_labels(self, seeded_cache):
        """Verify one bare id goes through the single-message call."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache).archive(["B"], context())

        transport.update_labels.assert_awaited_once_with("B", [], [INBOX])
        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.affected_count == 1
        assert outcome.message == "1 item(s) archived"

    async def test_thread_marked_id_uses_thread_call(self, seeded_cache):
        """Verify a thread-marked id goes through the thread call without its marker."""
        transport = create_mock_transport()

        await create_engine(transport, seeded_cache).archive(["thread:B"], context())

        transport.update_thread_labels.assert_awaited_once_with("B", [], [INBOX])
        transport.update_labels.assert_not_awaited()
        assert seeded_cache.get(INBOX_KEY).ids == ["A", "C", "D"]

    async def test_batch_archive_reconciles(self, seeded_cache):
        """Verify archiving [A,B] removes them and marks archive stale."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache).archive(["A", "B"], context())

        transport.batch_update_labels.assert_awaited_once_with(["A", "B"], [], [INBOX])
        assert outcome.success
        assert outcome.affected_ids == ["A", "B"]
        assert seeded_cache.get(INBOX_KEY).ids == ["C", "D"]
        assert seeded_cache.get(ARCHIVE_KEY).is_stale
        assert seeded_cache.needs_refresh(ARCHIVE_KEY)
        assert seeded_cache.get(INBOX_KEY).is_stale
        assert not seeded_cache.get(SPAM_KEY).is_stale

    async def test_spam_items_skipped_from_batch(self):
        """Verify SPAM-bearing items are dropped from a batch with partial success."""
        cache = PageCache()
        starred = CacheKey.build(USER_ID, "starred")
        cache.store_first_page(
            starred,
            ThreadPage(
                threads=[
                    create_thread("A", labels={"STARRED", INBOX}),
                    create_thread("B", labels={"STARRED", SPAM}),
                    create_thread("C", labels={"STARRED"}),
                ]
            ),
        )
        transport = create_mock_transport()

        outcome = await create_engine(transport, cache).archive(["A", "B", "C"], context("starred"))

        transport.batch_update_labels.assert_awaited_once_with(["A", "C"], [], [INBOX])
        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.message == "2 items archived, 1 skipped"
        assert cache.get(starred).ids == ["B"]

    async def test_duplicate_targets_collapse(self, seeded_cache):
        """Verify repeated ids are sent once."""
        transport = create_mock_transport()

        await create_engine(transport, seeded_cache).archive(["A", "A"], context())

        transport.update_labels.assert_awaited_once_with("A", [], [INBOX])


class TestMarkSpam:
    """Test mark-spam filtering and reconciliation."""

    async def test_sent_item_excluded_from_batch(self, mixed_inbox):
        """Verify one SENT item among four leaves three sent with partial success."""
        cache = PageCache()
        cache.store_first_page(INBOX_KEY, ThreadPage(threads=mixed_inbox))
        transport = create_mock_transport()

        outcome = await create_engine(transport, cache).mark_spam(["A", "S", "B", "C"], context())

        transport.batch_update_labels.assert_awaited_once_with(["A", "B", "C"], [SPAM], [INBOX])
        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.success
        assert outcome.affected_count == 3
        assert outcome.skipped_ids == ["S"]
        assert cache.get(INBOX_KEY).ids == ["S"]

    async def test_spam_leaves_every_inbox_entry_and_invalidates(self, seeded_cache):
        """Verify the item leaves every inbox entry and inbox/spam go stale."""
        other = CacheKey.build(USER_ID, "inbox", query="a")
        seeded_cache.store_first_page(other, create_page(["A"]))
        transport = create_mock_transport()

        await create_engine(transport, seeded_cache).mark_spam(["A"], context())

        assert seeded_cache.get(INBOX_KEY).get("A") is None
        assert seeded_cache.get(other).ids == []
        assert seeded_cache.get(SPAM_KEY).is_stale
        assert seeded_cache.get(INBOX_KEY).is_stale
        assert not seeded_cache.get(ARCHIVE_KEY).is_stale

    async def test_unknown_item_judged_by_folder_labels(self):
        """Verify an uncached item falls back to the folder's implied labels."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, PageCache()).mark_spam(["Q"], context())

        assert outcome.success
        transport.update_labels.assert_awaited_once_with("Q", [SPAM], [INBOX])


class TestMoveToInbox:
    """Test move-to-inbox from spam."""

    async def test_move_from_spam(self, seeded_cache):
        """Verify move-to-inbox removes from spam and invalidates three folders."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache).move_to_inbox(["X"], context("spam"))

        transport.update_labels.assert_awaited_once_with("X", [INBOX], [SPAM])
        assert outcome.message == "1 item(s) moved to inbox"
        assert seeded_cache.get(SPAM_KEY).ids == ["Y"]
        assert seeded_cache.get(INBOX_KEY).is_stale
        assert seeded_cache.get(ARCHIVE_KEY).is_stale

    async def test_move_twice_is_idempotent(self, seeded_cache):
        """Verify a repeated move succeeds and never duplicates the id."""
        transport = create_mock_transport()
        engine = create_engine(transport, seeded_cache)

        first = await engine.move_to_inbox(["A"], context())
        second = await engine.move_to_inbox(["A"], context())

        assert first.success and second.success
        assert seeded_cache.get(INBOX_KEY).ids.count("A") <= 1
        assert seeded_cache.validate_state() == []


class TestRemoteFailure:
    """Test that failures leave the cache untouched."""

    async def test_rejected_batch_touches_nothing(self, seeded_cache):
        """Verify a failed call keeps ids, labels and validity."""
        transport = create_mock_transport(success=False)

        outcome = await create_engine(transport, seeded_cache).archive(["A", "B"], context())

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.message == "Error archiving selected items"
        assert outcome.error == "rejected"
        assert seeded_cache.get(INBOX_KEY).ids == ["A", "B", "C", "D"]
        assert seeded_cache.get(INBOX_KEY).get("A").labels == {INBOX}
        assert not seeded_cache.get(ARCHIVE_KEY).is_stale

    async def test_transport_error_becomes_outcome(self, seeded_cache):
        """Verify a raised transport error resolves to a remote failure."""
        transport = create_mock_transport()
        transport.update_labels.side_effect = TransportConnectionError(message="offline")

        outcome = await create_engine(transport, seeded_cache).archive(["A"], context())

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.error == "offline"
        assert "A" in seeded_cache.get(INBOX_KEY).ids


class TestPerItemStrategy:
    """Test concurrent per-item calls with the every reduction."""

    async def test_all_succeed(self, seeded_cache):
        """Verify one call per item and a success when all succeed."""
        transport = create_mock_transport()

        outcome = await create_engine(transport, seeded_cache, bulk_strategy="per_item").archive(
            ["A", "thread:B"], context()
        )

        assert outcome.success
        transport.update_labels.assert_awaited_once_with("A", [], [INBOX])
        transport.update_thread_labels.assert_awaited_once_with("B", [], [INBOX])
        transport.batch_update_labels.assert_not_awaited()
        assert seeded_cache.get(INBOX_KEY).ids == ["C", "D"]

    async def test_calls_are_concurrent(self, seeded_cache):
        """Verify every item call is in flight before any answers."""
        in_flight = 0
        peak = 0

        async def update_labels(item_id, add_labels, remove_labels):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return LabelUpdateResult(success=True)

        transport = create_mock_transport()
        transport.update_labels.side_effect = update_labels

        await create_engine(transport, seeded_cache, bulk_strategy="per_item").archive(
            ["A", "B", "C"], context()
        )

        assert peak == 3

    async def test_one_failure_fails_everything(self, seeded_cache):
        """Verify a single failing item reports total failure and leaves the cache."""
        transport = create_mock_transport()
        transport.update_labels.side_effect = lambda item_id, add, remove: LabelUpdateResult(
            success=item_id != "B", error=None if item_id != "B" else "nope"
        )

        outcome = await create_engine(transport, seeded_cache, bulk_strategy="per_item").archive(
            ["A", "B", "C"], context()
        )

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.failed_ids == ["B"]
        assert transport.update_labels.await_count == 3
        assert seeded_cache.get(INBOX_KEY).ids == ["A", "B", "C", "D"]

    async def test_reconcile_partial_success(self, seeded_cache):
        """Verify the opt-in reconcile removes only the items that succeeded."""
        transport = create_mock_transport()
        transport.update_labels.side_effect = lambda item_id, add, remove: LabelUpdateResult(
            success=item_id != "B"
        )
        engine = create_engine(
            transport, seeded_cache, bulk_strategy="per_item", reconcile_partial_success=True
        )

        outcome = await engine.archive(["A", "B", "C"], context())

        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.affected_ids == ["A", "C"]
        assert outcome.failed_ids == ["B"]
        assert outcome.message == "2 items archived, 1 failed"
        assert seeded_cache.get(INBOX_KEY).ids == ["B", "D"]


class TestOverlappingMutations:
    """Test overlapping operations on the same folder."""

    async def test_overlapping_archives_reconcile_in_any_order(self, seeded_cache):
        """Verify two in-flight archives both apply and removal stays idempotent."""
        first_gate = asyncio.Event()
        transport = create_mock_transport()

        async def batch_update_labels(item_ids, add_labels, remove_labels):
            if "A" in item_ids:
                await first_gate.wait()
            return LabelUpdateResult(success=True)

        transport.batch_update_labels.side_effect = batch_update_labels
        engine = create_engine(transport, seeded_cache)

        first = asyncio.create_task(engine.archive(["A", "B"], context()))
        await asyncio.sleep(0)
        second = await engine.archive(["B", "C"], context())
        first_gate.set()
        first_outcome = await first

        assert second.success and first_outcome.success
        assert seeded_cache.get(INBOX_KEY).ids == ["D"]
        assert seeded_cache.validate_state() == []


class TestReadState:
    """Test mark read and unread."""

    async def test_mark_read_updates_cache(self):
        """Verify a confirmed mark-read clears cached unread flags."""
        cache = PageCache()
        cache.store_first_page(INBOX_KEY, create_page(["A", "B"], unread=True))
        transport = create_mock_transport()

        outcome = await create_engine(transport, cache).set_read_state(["A"], False, context())

        transport.mark_read.assert_awaited_once_with(["A"])
        assert outcome.message == "Marked as read"
        assert not cache.get(INBOX_KEY).get("A").unread
        assert cache.get(INBOX_KEY).get("B").unread

    async def test_mark_unread_failure(self):
        """Verify a failed mark-unread leaves flags alone."""
        cache = PageCache()
        cache.store_first_page(INBOX_KEY, create_page(["A"]))
        transport = create_mock_transport(success=False)

        outcome = await create_engine(transport, cache).set_read_state(["A"], True, context())

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.message == "Failed to mark as unread"
        assert outcome.operation == MailOperation.MARK_UNREAD
        assert not cache.get(INBOX_KEY).get("A").unread

    async def test_mark_read_stays_within_user(self):
        """Verify another user's cached copy of the item keeps its flag."""
        cache = PageCache()
        other_key = CacheKey.build("other-user", "inbox")
        cache.store_first_page(INBOX_KEY, create_page(["A"], unread=True))
        cache.store_first_page(other_key, create_page(["A"], unread=True))

        outcome = await create_engine(create_mock_transport(), cache).set_read_state(
            ["A"], False, context()
        )

        assert outcome.success
        assert not cache.get(INBOX_KEY).get("A").unread
        assert cache.get(other_key).get("A").unread


class TestMalformedGatewayAnswers:
    """Test that unreadable gateway answers resolve to remote failures."""

    @staticmethod
    def gateway_transport(**answer) -> HTTPMailTransport:
        return HTTPMailTransport(
            base_url="http://gateway.test",
            session=create_session(),
            transport=httpx.MockTransport(lambda request: httpx.Response(200, **answer)),
        )

    async def test_unexpected_body_on_archive(self, seeded_cache):
        """Verify a 200 answer without a success field fails the archive."""
        transport = self.gateway_transport(json={"ok": True})

        outcome = await create_engine(transport, seeded_cache).archive(["A"], context())
        await transport.close()

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.failed_ids == ["A"]
        assert "A" in seeded_cache.get(INBOX_KEY).ids

    async def test_non_json_body_on_mark_read(self):
        """Verify a 200 answer that is not JSON fails the read-state change."""
        cache = PageCache()
        cache.store_first_page(INBOX_KEY, create_page(["A"], unread=True))
        transport = self.gateway_transport(text="<html>oops</html>")

        outcome = await create_engine(transport, cache).set_read_state(["A"], False, context())
        await transport.close()

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert cache.get(INBOX_KEY).get("A").unread

    async def test_per_item_unexpected_body(self, seeded_cache):
        """Verify the per-item strategy also resolves instead of raising."""
        transport = self.gateway_transport(json=["not", "an", "object"])

        outcome = await create_engine(transport, seeded_cache, bulk_strategy="per_item").archive(
            ["A", "B"], context()
        )
        await transport.close()

        assert outcome.status == OutcomeStatus.REMOTE_FAILURE
        assert outcome.failed_ids == ["A", "B"]
