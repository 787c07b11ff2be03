"""Shared test fixtures."""
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from quickquote.models.draft import Draft  # noqa: F401
from quickquote.models.queue import QueueItem  # noqa: F401
from quickquote.models.setting import AppSetting  # noqa: F401
from quickquote.ai.whisper_client import TranscriptionResult
from quickquote.config import Settings
from quickquote.models.invoice import InvoiceItem, ParsedInvoice
from quickquote.store.drafts import DraftStore
from quickquote.store.queue import Queue
from quickquote.store.settings import SettingsStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="test-openai",
        anthropic_api_key="test-anthropic",
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def drafts(engine) -> DraftStore:
    return DraftStore(engine)


@pytest.fixture
def queue(engine) -> Queue:
    return Queue(engine)


@pytest.fixture
def settings_store(engine, settings) -> SettingsStore:
    return SettingsStore(engine, settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_invoice(transcript: str = "2 hours at 500") -> ParsedInvoice:
    """Invoice for "2 hours at 500": one line, total 1000."""
    return ParsedInvoice(
        items=[
            InvoiceItem(
                description="Labour",
                quantity=2,
                unit_price=500,
                amount=1000,
                confidence=0.9,
            )
        ],
        subtotal=1000,
        total=1000,
        original_transcript=transcript,
    )


@pytest.fixture
def transcriber():
    """Transcription client stub returning a fixed transcript."""
    client = AsyncMock()
    client.transcribe = AsyncMock(
        return_value=TranscriptionResult(transcript="2 hours at 500", confidence=0.9)
    )
    return client


@pytest.fixture
def extractor():
    """Extraction client stub returning a one-line invoice."""
    client = AsyncMock()
    client.extract = AsyncMock(side_effect=lambda transcript, options=None: make_invoice(transcript))
    return client


@pytest.fixture
def invoice_factory():
    return make_invoice
