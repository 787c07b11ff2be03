"""
Queue: durable list of pipeline work items.

State machine per item:
    pending -> processing (claimed) -> completed
                          -> pending (retry, gated by next_eligible_at)
                          -> failed  (retry ceiling reached or fatal error)

A failed item stays failed until reset_to_pending() is called for it.
All status transitions are no-ops when the item no longer exists.

Several processes may share one database (API server and CLI worker).
mark_processing() claims an item with a single conditional UPDATE, so exactly
one worker wins it; the winner refreshes claimed_at between stages
and only items whose lease has expired are treated as interrupted.
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, func, select

from quickquote.models.clock import now_ms
from quickquote.models.draft import Draft, DraftSyncStatus
from quickquote.models.queue import QueueItem, QueueItemStatus, QueueItemType

logger = logging.getLogger(__name__)


def _generate_id() -> str:
    return f"queue_{uuid.uuid4().hex}"


class Queue:
    """SQLModel-backed processing queue."""

    def __init__(self, engine):
        self.engine = engine

    def enqueue(self, draft_id: str, stage: QueueItemType = QueueItemType.BOTH) -> str:
        """
        Queue work for a draft and return the queue item id.

        A draft has at most one active (non-completed) item: enqueueing again
        returns the existing id, widening its stage to "both" if the requested
        stage differs.
        """
        stage = QueueItemType(stage).value
        with Session(self.engine) as s:
            existing = s.exec(
                select(QueueItem).where(
                    QueueItem.draft_id == draft_id,
                    QueueItem.status != QueueItemStatus.COMPLETED.value,
                )
            ).first()
            if existing is not None:
                if existing.type != stage:
                    existing.type = QueueItemType.BOTH.value
                    s.add(existing)
                    s.commit()
                logger.info(
                    "Draft %s already queued as %s (%s)", draft_id, existing.id, existing.type
                )
                return existing.id

            # Strictly increasing created_at keeps FIFO order within one millisecond
            newest = s.exec(select(func.max(QueueItem.created_at))).one()
            created_at = now_ms() if newest is None else max(now_ms(), newest + 1)
            item = QueueItem(
                id=_generate_id(), draft_id=draft_id, type=stage, created_at=created_at
            )
            s.add(item)

            draft = s.get(Draft, draft_id)
            if draft is not None and draft.sync_status != DraftSyncStatus.SYNCED.value:
                draft.sync_status = DraftSyncStatus.QUEUED.value
                draft.updated_at = now_ms()
                s.add(draft)

            s.commit()
            item_id = item.id

        logger.info("Added item %s for draft %s (%s)", item_id, draft_id, stage)
        return item_id

    def get(self, item_id: str) -> Optional[QueueItem]:
        with Session(self.engine) as s:
            return s.get(QueueItem, item_id)

    def get_active_for_draft(self, draft_id: str) -> Optional[QueueItem]:
        with Session(self.engine) as s:
            return s.exec(
                select(QueueItem).where(
                    QueueItem.draft_id == draft_id,
                    QueueItem.status != QueueItemStatus.COMPLETED.value,
                )
            ).first()

    def list_pending(self) -> List[QueueItem]:
        """All non-completed items, oldest first."""
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(QueueItem)
                    .where(QueueItem.status != QueueItemStatus.COMPLETED.value)
                    .order_by(QueueItem.created_at, QueueItem.id)
                ).all()
            )

    def list_runnable(self, now: Optional[int] = None) -> List[QueueItem]:
        """Pending items whose backoff window has elapsed, oldest first."""
        now = now_ms() if now is None else now
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(QueueItem)
                    .where(
                        QueueItem.status == QueueItemStatus.PENDING.value,
                        or_(
                            QueueItem.next_eligible_at.is_(None),
                            QueueItem.next_eligible_at <= now,
                        ),
                    )
                    .order_by(QueueItem.created_at, QueueItem.id)
                ).all()
            )

    def mark_processing(self, item_id: str, now: Optional[int] = None) -> Optional[QueueItem]:
        """
        Atomically move a pending item to "processing".

        Returns the claimed item, or None when another worker got there
        first (or the item is gone or no longer pending).
        """
        now = now_ms() if now is None else now
        stmt = (
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueItemStatus.PENDING.value,
            )
            .values(status=QueueItemStatus.PROCESSING.value, claimed_at=now)
        )
        with self.engine.begin() as conn:
            claimed = conn.execute(stmt).rowcount == 1
        if not claimed:
            logger.info("Item %s is no longer pending (claimed elsewhere or gone), skipping", item_id)
            return None
        return self.get(item_id)

    def heartbeat(self, item_id: str, now: Optional[int] = None) -> None:
        """Extend the processing lease of a claimed item."""
        now = now_ms() if now is None else now
        stmt = (
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueItemStatus.PROCESSING.value,
            )
            .values(claimed_at=now)
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def mark_completed(self, item_id: str) -> None:
        self._transition(
            item_id,
            QueueItemStatus.COMPLETED,
            last_error=None,
            next_eligible_at=None,
            claimed_at=None,
        )

    def mark_failed(self, item_id: str, error: str, retry_count: int) -> None:
        self._transition(
            item_id,
            QueueItemStatus.FAILED,
            last_error=error,
            retry_count=retry_count,
            next_eligible_at=None,
            claimed_at=None,
        )

    def mark_pending_for_retry(
        self,
        item_id: str,
        error: str,
        retry_count: int,
        next_eligible_at: Optional[int] = None,
    ) -> None:
        self._transition(
            item_id,
            QueueItemStatus.PENDING,
            last_error=error,
            retry_count=retry_count,
            next_eligible_at=next_eligible_at,
            claimed_at=None,
        )

    def reset_to_pending(self, item_id: str) -> None:
        """Make an item runnable now. Keeps retry_count."""
        self._transition(
            item_id,
            QueueItemStatus.PENDING,
            last_error=None,
            next_eligible_at=None,
            claimed_at=None,
        )

    def recover_stale_processing(self, stale_before: int) -> int:
        """
        Return "processing" items whose lease is older than ``stale_before``
        (ms) to "pending". Items claimed by a live worker are left alone.
        """
        with Session(self.engine) as s:
            stale = s.exec(
                select(QueueItem).where(
                    QueueItem.status == QueueItemStatus.PROCESSING.value,
                    or_(
                        QueueItem.claimed_at.is_(None),
                        QueueItem.claimed_at < stale_before,
                    ),
                )
            ).all()
            for item in stale:
                item.status = QueueItemStatus.PENDING.value
                item.claimed_at = None
                s.add(item)
            s.commit()
            recovered = len(stale)
        if recovered:
            logger.info("Recovered %d items interrupted mid-processing", recovered)
        return recovered

    def purge_completed(self) -> int:
        return self._delete_where(QueueItem.status == QueueItemStatus.COMPLETED.value)

    def purge_all(self) -> int:
        deleted = self._delete_where(None)
        logger.info("Cleared all %d queue items", deleted)
        return deleted

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _transition(self, item_id: str, status: QueueItemStatus, **fields) -> None:
        with Session(self.engine) as s:
            item = s.get(QueueItem, item_id)
            if item is None:
                return
            item.status = status.value
            for k, v in fields.items():
                setattr(item, k, v)
            s.add(item)
            s.commit()

    def _delete_where(self, clause) -> int:
        with Session(self.engine) as s:
            stmt = select(QueueItem)
            if clause is not None:
                stmt = stmt.where(clause)
            items = s.exec(stmt).all()
            for item in items:
                s.delete(item)
            s.commit()
            return len(items)
