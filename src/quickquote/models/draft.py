"""Draft model: one voice note and everything derived from it."""
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from quickquote.models.clock import now_ms


class DraftSyncStatus(str, Enum):
    LOCAL = "local"
    QUEUED = "queued"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class ShareMethod(str, Enum):
    WHATSAPP_TEXT = "whatsapp_text"
    WHATSAPP_PDF = "whatsapp_pdf"
    EMAIL = "email"
    CLIPBOARD = "clipboard"


class Draft(SQLModel, table=True):
    """
    One row per recorded voice note.

    transcript/transcript_confidence and invoice_data/parse_confidence are
    written in pairs; sync_status == "synced" implies invoice_data is set.
    """

    id: str = Field(primary_key=True)
    created_at: int = Field(default_factory=now_ms)  # ms since epoch
    updated_at: int = Field(default_factory=now_ms, index=True)

    audio_path: Optional[str] = None
    audio_duration: Optional[int] = None  # ms

    transcript: Optional[str] = None
    transcript_confidence: Optional[float] = None

    invoice_data: Optional[str] = None  # ParsedInvoice JSON
    parse_confidence: Optional[float] = None

    sync_status: str = Field(default=DraftSyncStatus.LOCAL.value, index=True)

    shared_at: Optional[int] = None
    share_method: Optional[str] = None
