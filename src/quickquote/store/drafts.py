"""
DraftStore: persistence for voice-note drafts.

Every mutation runs in its own session and commits before returning, so a
reader never sees a transcript without its confidence (or an invoice
without its parse confidence).
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import or_
from sqlmodel import Session, func, select

from quickquote.models.clock import now_ms
from quickquote.models.draft import Draft, DraftSyncStatus, ShareMethod

logger = logging.getLogger(__name__)


class DraftStore:
    """Reads and writes Draft rows."""

    def __init__(self, engine):
        self.engine = engine

    def get(self, draft_id: str) -> Optional[Draft]:
        with Session(self.engine) as s:
            return s.get(Draft, draft_id)

    def create_draft_stub(
        self,
        draft_id: str,
        audio_path: Optional[str],
        audio_duration: Optional[int],
    ) -> Draft:
        now = now_ms()
        draft = Draft(
            id=draft_id,
            created_at=now,
            updated_at=now,
            audio_path=audio_path,
            audio_duration=audio_duration,
        )
        with Session(self.engine) as s:
            s.add(draft)
            s.commit()
            s.refresh(draft)
        return draft

    def create_draft(
        self,
        audio_path: Optional[str],
        audio_duration: Optional[int] = None,
    ) -> Draft:
        """Create a draft with a freshly generated id."""
        return self.create_draft_stub(str(uuid.uuid4()), audio_path, audio_duration)

    def set_transcript(self, draft_id: str, transcript: str, confidence: float) -> None:
        self._update(draft_id, transcript=transcript, transcript_confidence=confidence)

    def set_invoice(self, draft_id: str, invoice_json: str, confidence: float) -> None:
        self._update(
            draft_id,
            invoice_data=invoice_json,
            parse_confidence=confidence,
            sync_status=DraftSyncStatus.SYNCED.value,
        )

    def set_sync_status(self, draft_id: str, status: DraftSyncStatus) -> None:
        """Update sync_status. A draft holding an invoice stays "synced"."""
        status = DraftSyncStatus(status)
        with Session(self.engine) as s:
            draft = s.get(Draft, draft_id)
            if draft is None or draft.sync_status == status.value:
                return
            if draft.invoice_data is not None and status != DraftSyncStatus.SYNCED:
                return
            draft.sync_status = status.value
            draft.updated_at = max(now_ms(), draft.updated_at + 1)
            s.add(draft)
            s.commit()

    def mark_shared(self, draft_id: str, method: ShareMethod) -> None:
        self._update(draft_id, shared_at=now_ms(), share_method=ShareMethod(method).value)

    def list_drafts(self) -> List[Draft]:
        """All drafts, most recently updated first."""
        with Session(self.engine) as s:
            return list(s.exec(select(Draft).order_by(Draft.updated_at.desc())).all())

    def search(self, query: str) -> List[Draft]:
        """Drafts whose transcript or invoice JSON contains the query."""
        pattern = f"%{query}%"
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(Draft)
                    .where(or_(Draft.transcript.like(pattern), Draft.invoice_data.like(pattern)))
                    .order_by(Draft.updated_at.desc())
                ).all()
            )

    def count(self) -> int:
        with Session(self.engine) as s:
            return s.exec(select(func.count()).select_from(Draft)).one()

    def delete(self, draft_id: str) -> None:
        with Session(self.engine) as s:
            draft = s.get(Draft, draft_id)
            if draft is not None:
                s.delete(draft)
                s.commit()

    def delete_all(self) -> None:
        with Session(self.engine) as s:
            for draft in s.exec(select(Draft)).all():
                s.delete(draft)
            s.commit()

    def clear_old_audio(self, before_ms: int) -> List[str]:
        """
        Drop audio references for transcribed drafts created before ``before_ms``.

        Returns the released audio paths so the caller can remove the files.
        """
        with Session(self.engine) as s:
            drafts = s.exec(
                select(Draft).where(
                    Draft.audio_path.is_not(None),
                    Draft.transcript.is_not(None),  # never drop untranscribed audio
                    Draft.created_at < before_ms,
                )
            ).all()
            released = [draft.audio_path for draft in drafts]
            for draft in drafts:
                draft.audio_path = None
                draft.audio_duration = None
                s.add(draft)
            s.commit()
        if released:
            logger.info("Released audio for %d drafts older than %d", len(released), before_ms)
        return released

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _update(self, draft_id: str, **fields) -> None:
        with Session(self.engine) as s:
            draft = s.get(Draft, draft_id)
            if draft is None:
                return
            for k, v in fields.items():
                setattr(draft, k, v)
            draft.updated_at = max(now_ms(), draft.updated_at + 1)
            s.add(draft)
            s.commit()
