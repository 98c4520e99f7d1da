"""Builds every store and service once per process.

Handles are passed explicitly to whatever needs them (the HTTP app keeps them
on ``app.state``, the MCP tools close over them); nothing here is a global.
"""

import asyncio
from dataclasses import dataclass

from ..config import EllipsaMemorySettings, settings
from ..db.graph import GraphStore
from ..db.relational import Database
from ..db.vector import VectorIndex
from ..logging import get_logger
from ..schemas.retrieval import ScoringWeights
from ..stores.entities import EntityStore
from ..stores.events import EventStore
from ..stores.tasks import TaskStore
from .embedding import EmbeddingService
from .extraction import ExtractionService
from .pipeline import EventProcessingService
from .retrieval import RetrievalService
from .transcription import TranscriptionService

logger = get_logger("services.factory")


@dataclass
class MemoryServices:
    database: Database
    graph: GraphStore | None
    vectors: VectorIndex | None
    embeddings: EmbeddingService
    entities: EntityStore
    events: EventStore
    tasks: TaskStore
    pipeline: EventProcessingService
    retrieval: RetrievalService

    async def close(self) -> None:
        await self.pipeline.stop()
        if self.graph is not None:
            await self.graph.close()
        if self.vectors is not None:
            await self.vectors.close()
        await self.database.close()
        logger.info("Memory services closed")


def build_services(
    config: EllipsaMemorySettings,
    *,
    database: Database,
    embeddings: EmbeddingService,
    graph: GraphStore | None = None,
    vectors: VectorIndex | None = None,
    extractor: ExtractionService | None = None,
    transcriber: TranscriptionService | None = None,
) -> MemoryServices:
    """Wire stores and services around already-constructed backends."""
    entities = EntityStore(
        database,
        embeddings,
        graph,
        vectors,
        collection=config.entity_collection,
        duplicate_threshold=config.duplicate_similarity_threshold,
        duplicate_limit=config.duplicate_candidate_limit,
        similarity_threshold=config.similar_entity_threshold,
    )
    events = EventStore(database, embeddings, graph, vectors, collection=config.event_collection)
    tasks = TaskStore(database, embeddings, graph)

    pipeline = EventProcessingService(
        extractor
        or ExtractionService(
            host=config.ollama_base_url,
            model=config.extraction_model,
            timeout=config.extraction_timeout,
        ),
        entity_store=entities,
        event_store=events,
        task_store=tasks,
        transcriber=transcriber,
        max_content_chars=config.extraction_max_chars,
    )
    retrieval = RetrievalService(
        embeddings,
        event_store=events,
        entity_store=entities,
        task_store=tasks,
        default_limit=config.retrieval_default_limit,
        default_weights=ScoringWeights(
            semantic=config.retrieval_semantic_weight,
            temporal=config.retrieval_temporal_weight,
            relational=config.retrieval_relational_weight,
        ),
        decay_rate=config.retrieval_decay_rate,
        event_oversample=config.event_oversample_factor,
        entity_oversample=config.entity_oversample_factor,
        task_oversample=config.task_oversample_factor,
    )
    return MemoryServices(
        database=database,
        graph=graph,
        vectors=vectors,
        embeddings=embeddings,
        entities=entities,
        events=events,
        tasks=tasks,
        pipeline=pipeline,
        retrieval=retrieval,
    )


async def create_services(config: EllipsaMemorySettings | None = None) -> MemoryServices:
    """Connect to every backend described by ``config`` and build the services.

    The relational store must come up. The graph and vector backends are
    secondary: if they are unreachable the services still start and their
    writes are logged as degraded until the backend returns.
    """
    config = config or settings

    database = Database(config.database_url, echo=config.database_echo)
    await database.create_schema()

    graph = GraphStore(
        config.graph_uri,
        user=config.graph_user,
        password=config.graph_password,
        database=config.graph_database,
    )
    try:
        await graph.connect()
    except Exception as e:
        logger.warning("Graph store unavailable at startup", uri=config.graph_uri, error=str(e))

    vectors = VectorIndex(
        config.qdrant_url, dimensions=config.embedding_dimensions, api_key=config.qdrant_api_key
    )
    for collection in (config.entity_collection, config.event_collection):
        try:
            await vectors.ensure_collection(collection)
        except Exception as e:
            logger.warning(
                "Vector index unavailable at startup",
                url=config.qdrant_url,
                collection=collection,
                error=str(e),
            )

    embeddings = EmbeddingService(
        config.embedding_model,
        dimensions=config.embedding_dimensions,
        device=config.inference_device,
        timeout=config.embedding_timeout,
    )
    transcriber = TranscriptionService(
        config.transcription_url,
        model=config.transcription_model,
        api_key=config.transcription_api_key,
        timeout=config.transcription_timeout,
    )

    services = build_services(
        config,
        database=database,
        embeddings=embeddings,
        graph=graph,
        vectors=vectors,
        transcriber=transcriber,
    )
    logger.info(
        "Memory services ready",
        database_url=config.database_url,
        graph_uri=config.graph_uri,
        qdrant_url=config.qdrant_url,
    )
    return services


class ServiceHandle:
    """Builds the services on first use and hands the same instance out after.

    MCP tools receive a handle rather than the services because FastMCP owns
    the event loop the backends have to be connected on.
    """

    def __init__(
        self,
        services: MemoryServices | None = None,
        config: EllipsaMemorySettings | None = None,
    ):
        self._services = services
        self._config = config
        self._lock = asyncio.Lock()

    async def get(self) -> MemoryServices:
        if self._services is None:
            async with self._lock:
                if self._services is None:
                    self._services = await create_services(self._config)
                    await self._services.pipeline.start()
        return self._services

    async def close(self) -> None:
        if self._services is not None:
            await self._services.close()
            self._services = None
