"""Pytest configuration and shared fixtures for tests."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from doculens.core.config import settings
from doculens.core.database import create_tables
from doculens.core.errors import provider_error
from doculens.documents.models import DetectedIssue, DocumentAnalysis, OCRResult, RiskLevel
from doculens.documents.store import StatusStore
from doculens.integrations.storage import BlobStore
from doculens.main import app
from doculens.models.document import Document
from doculens.orchestration.processor import DocumentProcessor
from doculens.orchestration.scheduler import ProcessingScheduler

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF\n"

W2_TEXT = (
    "Form W-2 Wage and Tax Statement 2024\n"
    "Employee SSN 123-45-6789\n"
    "Employer EIN 12-3456789\n"
    "Wages, tips $52,340.00  Federal income tax withheld $6,120.50\n"
    "Date 01/31/2025\n"
)


class FakeAnalysisProvider:
    """In-memory analysis provider recording every call."""

    name = "fake"

    def __init__(
        self,
        analysis: DocumentAnalysis | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.analysis = analysis or DocumentAnalysis(
            form_type="W2",
            confidence=0.93,
            extracted_fields={"employee_ssn": "123-45-6789", "wages": 52340.0},
            detected_issues=[
                DetectedIssue(
                    type="missing_field",
                    severity="low",
                    field="state_wages",
                    description="State wages box is empty",
                    suggestion="Confirm with the employer",
                )
            ],
            simplified_summary="W-2 from Acme Corp for tax year 2024.",
            completeness_score=0.9,
            risk_level=RiskLevel.LOW,
        )
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    def is_configured(self) -> bool:
        return True

    async def analyze(self, content: bytes, mime_type: str, filename: str) -> DocumentAnalysis:
        self.calls.append((mime_type, filename))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.analysis


class FakeOCRProvider:
    """In-memory OCR provider returning fixed text."""

    def __init__(self, text: str = W2_TEXT, error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0

    async def extract(self, content: bytes, mime_type: str) -> OCRResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return OCRResult(
            text=self.text,
            confidence=0.88,
            method="tesseract_ocr",
            page_count=1,
        )


@pytest.fixture
def analysis_provider() -> FakeAnalysisProvider:
    """Analysis provider returning a W-2 analysis."""
    return FakeAnalysisProvider()


@pytest.fixture
def ocr_provider() -> FakeOCRProvider:
    """OCR provider returning W-2 text; tests may replace `.text` or `.error`."""
    return FakeOCRProvider()


@pytest.fixture
def failing_analysis() -> FakeAnalysisProvider:
    """Analysis provider that always fails."""
    return FakeAnalysisProvider(error=provider_error("fake", "AI analysis failed: 503"))


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a file-backed sqlite session factory with the documents table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'doculens.db'}")
    await create_tables(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def blob_store(tmp_path: Path) -> BlobStore:
    return BlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def create_document(
    session_factory: async_sessionmaker[AsyncSession],
    upload_dir: Path,
) -> Callable[..., Awaitable[Document]]:
    """Factory that writes a temp upload and inserts a pending record."""

    async def _create(
        document_id: str = "doc-1",
        file_name: str = "w2.pdf",
        content: bytes = PDF_BYTES,
        file_type: str = "application/pdf",
    ) -> Document:
        path = upload_dir / f"{document_id}{Path(file_name).suffix}"
        path.write_bytes(content)
        async with session_factory() as session:
            document = await StatusStore(session).create(
                document_id,
                file_name=file_name,
                file_size=len(content),
                file_type=file_type,
                temp_file_path=str(path),
            )
            await session.commit()
            return document

    return _create


@pytest_asyncio.fixture
async def make_processor(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
) -> AsyncGenerator[Callable[..., DocumentProcessor], None]:
    """Factory for processors with their own scheduler; schedulers are stopped after the test."""
    schedulers: list[ProcessingScheduler] = []

    def _make(
        analysis: FakeAnalysisProvider | None = None,
        ocr: FakeOCRProvider | None = None,
        concurrency: int = 2,
        queue_limit: int = 10,
        **kwargs,
    ) -> DocumentProcessor:
        scheduler = ProcessingScheduler(concurrency=concurrency, queue_limit=queue_limit)
        schedulers.append(scheduler)
        return DocumentProcessor(
            session_factory,
            scheduler,
            blob_store,
            analysis or FakeAnalysisProvider(),
            ocr or FakeOCRProvider(),
            **kwargs,
        )

    yield _make
    for scheduler in schedulers:
        await scheduler.stop()


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis connection that succeeds."""
    redis_mock = AsyncMock()
    redis_mock.ping.return_value = True
    return redis_mock


@pytest.fixture
def mock_redis_failing() -> AsyncMock:
    """Create a mock Redis connection that fails."""
    redis_mock = AsyncMock()
    redis_mock.ping.side_effect = Exception("Redis connection refused")
    return redis_mock


@pytest_asyncio.fixture
async def api_app(
    make_processor,
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
    upload_dir: Path,
    analysis_provider: FakeAnalysisProvider,
    ocr_provider: FakeOCRProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[FastAPI, None]:
    """Application wired to test services; lifespan is not run under ASGITransport."""
    monkeypatch.setattr(settings, "upload_dir", str(upload_dir))
    processor = make_processor(analysis_provider, ocr_provider)
    processor.scheduler.start()

    app.state.async_session = session_factory
    app.state.redis = None
    app.state.blob_store = blob_store
    app.state.analysis_provider = analysis_provider
    app.state.scheduler = processor.scheduler
    app.state.processor = processor
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(api_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the test application."""
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
    ) as client:
        yield client
