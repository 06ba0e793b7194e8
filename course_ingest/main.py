"""Course ingestion service entry point.

Wires providers, services, queues and worker pools into a
:class:`~course_ingest.pipeline.context.PipelineContext`, and exposes a
FastAPI application whose lifespan initialises storage and (optionally)
runs the worker pools in-process.

``build_context`` is also used by the CLI so both surfaces assemble the
same pipeline.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

from course_ingest import __version__
from course_ingest.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from course_ingest.api.routes import router as api_router
from course_ingest.api.websocket import stream_job_progress
from course_ingest.config.loader import load_queue_configs
from course_ingest.config.settings import Settings
from course_ingest.interfaces.content_structurer import IContentStructurer
from course_ingest.interfaces.embedding_provider import IEmbeddingProvider
from course_ingest.interfaces.llm_provider import ILLMProvider
from course_ingest.interfaces.notification_sink import INotificationSink
from course_ingest.interfaces.vector_store_provider import IVectorStoreProvider
from course_ingest.models.jobs import JobType, QueueConfig
from course_ingest.pipeline.context import PipelineContext
from course_ingest.pipeline.handlers import DocumentProcessingHandler, EmbeddingGenerationHandler
from course_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from course_ingest.pipeline.job_submitter import JobSubmitter
from course_ingest.pipeline.progress_emitter import ProgressEmitter
from course_ingest.pipeline.worker_pool import WorkerPool
from course_ingest.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from course_ingest.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from course_ingest.providers.llm.openai_provider import OpenAILLMProvider
from course_ingest.providers.notification.log_sink import LogNotificationSink
from course_ingest.providers.notification.webhook_sink import WebhookNotificationSink
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.providers.queue.sqlite_job_tracker import SQLiteJobTracker
from course_ingest.providers.storage.sqlite_course_repository import SQLiteCourseRepository
from course_ingest.providers.vector_store.chromadb_provider import ChromaDBProvider
from course_ingest.services.chapter_aggregator import ChapterAggregator
from course_ingest.services.ingestion.chunker import TextChunker
from course_ingest.services.ingestion.content_structurer import (
    LLMContentStructurer,
    NullContentStructurer,
)
from course_ingest.services.ingestion.embedding_generator import EmbeddingGenerator
from course_ingest.services.ingestion.extractor import DocumentExtractor
from course_ingest.utils.concurrency import KeyedLock
from course_ingest.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """OpenAI when configured with a key, otherwise the local hashing embedder."""
    if app_settings.use_openai_embeddings():
        return OpenAIEmbeddingProvider(settings=app_settings)
    _logger.warning(
        "embedding_provider_fallback",
        provider="hash",
        dimension=app_settings.hash_embedding_dimension,
    )
    return HashEmbeddingProvider(dimension=app_settings.hash_embedding_dimension)


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return None


def _build_structurer(app_settings: Settings, llm: ILLMProvider | None) -> IContentStructurer:
    if not app_settings.structurer_enabled or llm is None:
        return NullContentStructurer()
    return LLMContentStructurer(
        llm=llm,
        max_input_chars=app_settings.structurer_max_input_chars,
        min_input_chars=app_settings.structurer_min_input_chars,
        timeout_seconds=app_settings.llm_timeout_seconds,
        temperature=app_settings.structurer_temperature,
        max_tokens=app_settings.structurer_max_tokens,
    )


def _build_sinks(app_settings: Settings) -> list[INotificationSink]:
    sinks: list[INotificationSink] = [LogNotificationSink()]
    if app_settings.notification_webhook_url:
        sinks.append(
            WebhookNotificationSink(
                url=app_settings.notification_webhook_url,
                timeout=app_settings.notification_timeout_seconds,
            )
        )
    return sinks


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_context(
    app_settings: Settings,
    *,
    queue_configs: dict[str, QueueConfig] | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
    structurer: IContentStructurer | None = None,
    sinks: list[INotificationSink] | None = None,
    extractor: DocumentExtractor | None = None,
) -> PipelineContext:
    """Assemble every component of the ingestion pipeline.

    Keyword overrides replace the providers that would otherwise be built
    from *app_settings*; tests use them to swap in in-memory doubles.
    """
    configs = queue_configs if queue_configs is not None else load_queue_configs(app_settings.queue_config_path)

    repository = SQLiteCourseRepository(db_path=app_settings.database_path)
    queue = SQLiteJobQueue(configs, db_path=app_settings.database_path)
    tracker = SQLiteJobTracker(db_path=app_settings.database_path)
    aggregator = ChapterAggregator(repository)

    notification_sinks = sinks if sinks is not None else _build_sinks(app_settings)
    emitter = ProgressEmitter(sinks=notification_sinks, sink_timeout=app_settings.notification_timeout_seconds)
    submitter = JobSubmitter(queue, tracker, repository, aggregator)

    generator = EmbeddingGenerator(
        chunker=TextChunker(chunk_size=app_settings.chunk_size, overlap=app_settings.chunk_overlap),
        embedding_provider=embedding_provider or _build_embedding_provider(app_settings),
        vector_store=vector_store or ChromaDBProvider(persist_directory=app_settings.chromadb_persist_dir),
        batch_size=app_settings.embedding_batch_size,
        concurrency=app_settings.embedding_concurrency,
        max_chunks=app_settings.max_embedding_chunks,
        timeout_seconds=app_settings.embedding_timeout_seconds,
        collection_prefix=app_settings.chromadb_collection_prefix,
        material_locks=KeyedLock(),
    )

    document_handler = DocumentProcessingHandler(
        repository=repository,
        extractor=extractor
        or DocumentExtractor(
            min_text_length=app_settings.min_extracted_chars,
            max_pages=app_settings.extractor_max_pages,
        ),
        structurer=structurer or _build_structurer(app_settings, _build_llm_provider(app_settings)),
        submitter=submitter,
        aggregator=aggregator,
        emitter=emitter,
        max_text_length=app_settings.max_extracted_chars,
        min_text_length=app_settings.min_extracted_chars,
    )
    embedding_handler = EmbeddingGenerationHandler(repository=repository, generator=generator, emitter=emitter)

    pools: dict[str, WorkerPool] = {}
    for handler in (document_handler, embedding_handler):
        config = queue.config_for(handler.job_type)
        pools[config.name] = WorkerPool(
            queue,
            tracker,
            config,
            handler,
            poll_interval=app_settings.queue_poll_interval_seconds,
        )

    def _wake(job_type: JobType) -> None:
        pool = pools.get(queue.config_for(job_type).name)
        if pool is not None:
            pool.notify()

    submitter.add_enqueue_listener(_wake)

    closers = [sink.aclose for sink in notification_sinks if isinstance(sink, WebhookNotificationSink)]

    return PipelineContext(
        settings=app_settings,
        repository=repository,
        queue=queue,
        tracker=tracker,
        aggregator=aggregator,
        emitter=emitter,
        submitter=submitter,
        embedding_generator=generator,
        pools=pools,
        closers=closers,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise storage and start workers on startup, stop them on shutdown."""
    context: PipelineContext | None = getattr(application.state, "context", None)
    if context is None:
        app_settings = Settings()
        configure_logging(log_level=app_settings.log_level, json_output=(app_settings.app_env == "production"))
        context = build_context(app_settings)

    pipeline = IngestionPipeline(context)
    application.state.context = context
    application.state.pipeline = pipeline

    await context.initialize()
    if context.settings.run_workers_in_app:
        await pipeline.start_workers()

    _logger.info(
        "app_startup",
        version=__version__,
        environment=context.settings.app_env,
        queues=sorted(context.pools),
        workers_in_app=context.settings.run_workers_in_app,
    )

    yield

    await context.aclose()
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(context: PipelineContext | None = None) -> FastAPI:
    """Build the FastAPI application, optionally around a prebuilt context."""
    application = FastAPI(
        title="course-ingest API",
        version=__version__,
        description=(
            "Queue text extraction and embedding generation for uploaded course "
            "materials, track job progress and inspect queue health."
        ),
        lifespan=_lifespan,
    )
    if context is not None:
        application.state.context = context

    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)

    # -- WebSocket --
    @application.websocket("/ws/jobs/{job_id}")
    async def ws_job_progress(websocket: WebSocket, job_id: str) -> None:
        await stream_job_progress(websocket, job_id, websocket.app.state.context.emitter)

    return application


def main() -> None:
    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level, json_output=(app_settings.app_env == "production"))
    uvicorn.run(
        create_app(),
        host=app_settings.app_host,
        port=app_settings.app_port,
    )


if __name__ == "__main__":
    main()
