"""Processing queue model."""
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from quickquote.models.clock import now_ms


class QueueItemType(str, Enum):
    STT = "stt"
    PARSE = "parse"
    BOTH = "both"


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueItem(SQLModel, table=True):
    """One unit of pipeline work bound to a draft."""

    id: str = Field(primary_key=True)
    draft_id: str = Field(index=True)
    type: str = QueueItemType.BOTH.value
    retry_count: int = 0
    last_error: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)  # FIFO ordering key
    status: str = Field(default=QueueItemStatus.PENDING.value, index=True)

    # Earliest time (ms) a retried item may be picked up again; None = now
    next_eligible_at: Optional[int] = None

    # Lease timestamp (ms) of the worker processing the item; refreshed between stages
    claimed_at: Optional[int] = None

    @property
    def needs_transcription(self) -> bool:
        return self.type in (QueueItemType.STT.value, QueueItemType.BOTH.value)

    @property
    def needs_extraction(self) -> bool:
        return self.type in (QueueItemType.PARSE.value, QueueItemType.BOTH.value)
