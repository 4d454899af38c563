"""FastAPI application entry point with lifespan management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from doculens.api.documents import router as documents_router
from doculens.api.errors import register_error_handlers
from doculens.api.health import router as health_router
from doculens.api.middleware import RequestContextMiddleware
from doculens.core.config import settings
from doculens.core.database import create_engine, create_session_factory, create_tables
from doculens.core.logging import configure_logging, get_logger
from doculens.core.redis import check_redis_health, create_redis_pool
from doculens.core.sentry import init_sentry
from doculens.documents.analyzer import VisionAnalysisProvider
from doculens.documents.ocr import TesseractOCRProvider
from doculens.integrations.storage import BlobStore
from doculens.orchestration.circuit_breaker import ProviderCircuitBreaker
from doculens.orchestration.processor import DocumentProcessor
from doculens.orchestration.recovery import recover_interrupted_documents
from doculens.orchestration.scheduler import ProcessingScheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle resources.

    Startup:
        - Configure structured logging and Sentry
        - Create database engine and session factory
        - Establish Redis connection pool (optional)
        - Build providers, circuit breaker, scheduler and processor
        - Fail records left in processing by a previous process
        - Start scheduler workers

    Shutdown:
        - Stop scheduler workers
        - Close Redis connections
        - Dispose database engine
    """
    configure_logging()
    logger.info("Starting application", environment=settings.environment)

    init_sentry()

    app.state.db_engine = create_engine()
    app.state.async_session = create_session_factory(app.state.db_engine)
    if settings.database_url.startswith("sqlite"):
        await create_tables(app.state.db_engine)
    logger.info("Database engine created")

    app.state.redis = await create_redis_pool()
    if not await check_redis_health(app.state.redis):
        logger.warning("Redis unavailable; circuit breaker state kept in process")
        await app.state.redis.aclose()
        app.state.redis = None

    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    app.state.blob_store = BlobStore(settings.storage_url)

    app.state.analysis_provider = VisionAnalysisProvider()
    app.state.breaker = ProviderCircuitBreaker(
        app.state.analysis_provider.name,
        app.state.redis,
        fail_max=settings.circuit_fail_max,
        reset_timeout=settings.circuit_reset_timeout,
    )
    app.state.scheduler = ProcessingScheduler(
        concurrency=settings.processing_concurrency,
        queue_limit=settings.processing_queue_limit,
    )
    app.state.processor = DocumentProcessor(
        app.state.async_session,
        app.state.scheduler,
        app.state.blob_store,
        app.state.analysis_provider,
        TesseractOCRProvider(),
        breaker=app.state.breaker,
    )

    await recover_interrupted_documents(app.state.async_session)
    app.state.scheduler.start()

    yield

    logger.info("Shutting down application")

    await app.state.scheduler.stop()

    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis pool closed")

    await app.state.db_engine.dispose()
    logger.info("Database engine disposed")


app = FastAPI(
    title="DocuLens",
    description="Tax document analysis with AI and OCR fallback",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)

register_error_handlers(app)

app.include_router(health_router)
app.include_router(documents_router)
