"""Integration tests for the Queue store on in-memory SQLite."""
from quickquote.models.draft import DraftSyncStatus
from quickquote.models.queue import QueueItemStatus, QueueItemType


class TestEnqueue:
    def test_creates_pending_item(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)

        item_id = queue.enqueue("d1", QueueItemType.STT)

        item = queue.get(item_id)
        assert item_id.startswith("queue_")
        assert item.draft_id == "d1"
        assert item.type == "stt"
        assert item.status == QueueItemStatus.PENDING.value
        assert item.retry_count == 0

    def test_marks_draft_queued(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        queue.enqueue("d1")
        assert drafts.get("d1").sync_status == DraftSyncStatus.QUEUED.value

    def test_synced_draft_stays_synced(self, queue, drafts, invoice_factory):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        drafts.set_invoice("d1", invoice_factory().model_dump_json(), 0.9)

        queue.enqueue("d1", QueueItemType.PARSE)

        assert drafts.get("d1").sync_status == DraftSyncStatus.SYNCED.value

    def test_duplicate_returns_existing_item(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        first = queue.enqueue("d1")
        second = queue.enqueue("d1")

        assert first == second
        assert len(queue.list_pending()) == 1

    def test_duplicate_with_other_stage_widens_to_both(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        item_id = queue.enqueue("d1", QueueItemType.STT)

        assert queue.enqueue("d1", QueueItemType.PARSE) == item_id
        assert queue.get(item_id).type == QueueItemType.BOTH.value

    def test_duplicate_of_failed_item_returns_it(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        item_id = queue.enqueue("d1")
        queue.mark_failed(item_id, "boom", 3)

        assert queue.enqueue("d1") == item_id
        assert queue.get(item_id).status == QueueItemStatus.FAILED.value

    def test_completed_item_does_not_block_new_one(self, queue, drafts):
        drafts.create_draft_stub("d1", "a.m4a", 1000)
        first = queue.enqueue("d1")
        queue.mark_completed(first)

        assert queue.enqueue("d1") != first

    def test_fifo_within_same_millisecond(self, queue):
        ids = [queue.enqueue(f"d{n}") for n in range(5)]
        assert [item.id for item in queue.list_pending()] == ids


class TestListing:
    def test_list_pending_excludes_completed(self, queue):
        done = queue.enqueue("d1")
        failed = queue.enqueue("d2")
        pending = queue.enqueue("d3")
        queue.mark_completed(done)
        queue.mark_failed(failed, "boom", 3)

        assert [i.id for i in queue.list_pending()] == [failed, pending]

    def test_list_runnable_respects_backoff(self, queue):
        waiting = queue.enqueue("d1")
        ready = queue.enqueue("d2")
        queue.mark_pending_for_retry(waiting, "boom", 1, next_eligible_at=5_000)

        assert [i.id for i in queue.list_runnable(now=4_999)] == [ready]
        assert [i.id for i in queue.list_runnable(now=5_000)] == [waiting, ready]

    def test_list_runnable_excludes_processing_and_failed(self, queue):
        processing = queue.enqueue("d1")
        failed = queue.enqueue("d2")
        queue.mark_processing(processing)
        queue.mark_failed(failed, "boom", 3)

        assert queue.list_runnable() == []

    def test_get_active_for_draft(self, queue):
        assert queue.get_active_for_draft("d1") is None
        item_id = queue.enqueue("d1")
        assert queue.get_active_for_draft("d1").id == item_id


class TestTransitions:
    def test_failed_keeps_error_and_count(self, queue):
        item_id = queue.enqueue("d1")
        queue.mark_failed(item_id, "Network request failed", 3)

        item = queue.get(item_id)
        assert item.status == QueueItemStatus.FAILED.value
        assert item.last_error == "Network request failed"
        assert item.retry_count == 3

    def test_reset_to_pending_keeps_retry_count(self, queue):
        item_id = queue.enqueue("d1")
        queue.mark_failed(item_id, "boom", 3)

        queue.reset_to_pending(item_id)

        item = queue.get(item_id)
        assert item.status == QueueItemStatus.PENDING.value
        assert item.retry_count == 3
        assert item.last_error is None
        assert item.next_eligible_at is None

    def test_transitions_on_missing_item_are_noops(self, queue):
        assert queue.mark_processing("queue_missing") is None
        queue.heartbeat("queue_missing")
        queue.mark_completed("queue_missing")
        queue.mark_failed("queue_missing", "x", 1)
        assert queue.get("queue_missing") is None

    def test_recover_stale_processing(self, queue):
        stale = queue.enqueue("d1")
        live = queue.enqueue("d2")
        idle = queue.enqueue("d3")
        queue.mark_processing(stale, now=1_000)
        queue.mark_processing(live, now=9_000)

        assert queue.recover_stale_processing(stale_before=5_000) == 1
        assert queue.get(stale).status == QueueItemStatus.PENDING.value
        assert queue.get(stale).claimed_at is None
        assert queue.get(live).status == QueueItemStatus.PROCESSING.value
        assert queue.get(idle).status == QueueItemStatus.PENDING.value


class TestClaim:
    def test_claim_sets_status_and_lease(self, queue):
        item_id = queue.enqueue("d1")

        item = queue.mark_processing(item_id, now=1_234)

        assert item.status == QueueItemStatus.PROCESSING.value
        assert item.claimed_at == 1_234

    def test_second_claim_loses(self, queue):
        item_id = queue.enqueue("d1")

        assert queue.mark_processing(item_id) is not None
        assert queue.mark_processing(item_id) is None

    def test_failed_item_cannot_be_claimed(self, queue):
        item_id = queue.enqueue("d1")
        queue.mark_failed(item_id, "boom", 3)

        assert queue.mark_processing(item_id) is None

    def test_heartbeat_extends_lease(self, queue):
        item_id = queue.enqueue("d1")
        queue.mark_processing(item_id, now=1_000)

        queue.heartbeat(item_id, now=8_000)

        assert queue.get(item_id).claimed_at == 8_000
        assert queue.recover_stale_processing(stale_before=5_000) == 0

    def test_heartbeat_ignores_unclaimed_item(self, queue):
        item_id = queue.enqueue("d1")

        queue.heartbeat(item_id, now=8_000)

        assert queue.get(item_id).claimed_at is None

    def test_terminal_transitions_release_lease(self, queue):
        item_id = queue.enqueue("d1")
        queue.mark_processing(item_id, now=1_000)

        queue.mark_pending_for_retry(item_id, "boom", 1)

        assert queue.get(item_id).claimed_at is None


class TestPurge:
    def test_purge_completed_only(self, queue):
        done = queue.enqueue("d1")
        kept = queue.enqueue("d2")
        queue.mark_completed(done)

        assert queue.purge_completed() == 1
        assert queue.get(done) is None
        assert queue.get(kept) is not None

    def test_purge_all(self, queue):
        queue.enqueue("d1")
        queue.enqueue("d2")
        assert queue.purge_all() == 2
        assert queue.list_pending() == []
