"""Hybrid retrieval across events, entities and tasks.

The query is embedded once. Each source then scores its candidate pool by
cosine similarity and keeps an oversampled slice (events ``limit * 3``,
entities and tasks ``limit * 2`` by default). Every surviving candidate gets a
temporal score ``exp(-decay * age_days)`` and a relational score, the share of
the caller's entity context that the candidate is linked to. The composite

    score = w_semantic * semantic + w_temporal * temporal + w_relational * relational

orders the merged list. Ties break on source order (event, entity, task) and
then on id, so the ranking is deterministic for a given store state.

Retrieval never writes. Provider failures degrade scores, they never fail the
call: an unembeddable query scores every candidate 0 on the semantic axis, and
a candidate with no stored embedding that cannot be embedded now is skipped.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import ProviderError
from ..logging import get_logger
from ..schemas.records import Entity, Event, Task, TimeWindow
from ..schemas.retrieval import (
    RetrievalOptions,
    RetrievalResult,
    ScoreBreakdown,
    ScoringWeights,
    SourceType,
)
from ..stores.entities import EntityStore
from ..stores.events import EventStore
from ..stores.tasks import TaskStore
from ..utils.time import age_in_days, utc_now
from ..utils.vectors import cosine_similarity
from .embedding import EmbeddingService

logger = get_logger("services.retrieval")

SOURCE_ORDER = {SourceType.EVENT: 0, SourceType.ENTITY: 1, SourceType.TASK: 2}


@dataclass
class Candidate:
    """A record normalized into the shape shared by all three sources."""

    id: str
    type: SourceType
    content: str
    metadata: dict[str, Any]
    semantic_score: float
    timestamp: datetime | None = None
    related_entity_ids: set[str] = field(default_factory=set)


def temporal_score(timestamp: datetime | None, decay_rate: float, now: datetime) -> float:
    if timestamp is None:
        return 0.0
    return math.exp(-decay_rate * age_in_days(timestamp, now))


def relational_score(entity_context: set[str], related_entity_ids: set[str]) -> float:
    if not entity_context:
        return 0.0
    return len(entity_context & related_entity_ids) / len(entity_context)


def _content(title: str, description: str | None) -> str:
    return f"{title}\n{description}" if description else title


def _public_fields(record: Event | Entity | Task) -> dict[str, Any]:
    return record.model_dump(mode="json", exclude={"embedding"})


class RetrievalService:
    def __init__(
        self,
        embeddings: EmbeddingService,
        event_store: EventStore,
        entity_store: EntityStore,
        task_store: TaskStore,
        default_limit: int = 10,
        default_weights: ScoringWeights | None = None,
        decay_rate: float = 0.1,
        event_oversample: int = 3,
        entity_oversample: int = 2,
        task_oversample: int = 2,
    ):
        self.embeddings = embeddings
        self.event_store = event_store
        self.entity_store = entity_store
        self.task_store = task_store
        self.default_limit = default_limit
        self.default_weights = default_weights or ScoringWeights()
        self.decay_rate = decay_rate
        self.event_oversample = event_oversample
        self.entity_oversample = entity_oversample
        self.task_oversample = task_oversample

    def pool_sizes(self, limit: int) -> dict[SourceType, int]:
        """How many candidates each source keeps before the merged re-rank."""
        return {
            SourceType.EVENT: limit * self.event_oversample,
            SourceType.ENTITY: limit * self.entity_oversample,
            SourceType.TASK: limit * self.task_oversample,
        }

    async def retrieve(
        self, query: str, options: RetrievalOptions | dict[str, Any] | None = None
    ) -> list[RetrievalResult]:
        if not isinstance(options, RetrievalOptions):
            options = RetrievalOptions.model_validate(options or {})

        start_time = time.perf_counter()
        limit = options.limit or self.default_limit
        weights = options.weights or self.default_weights
        decay_rate = self.decay_rate if options.decay_rate is None else options.decay_rate
        entity_context = set(options.entity_context)
        types = set(options.types) if options.types else set(SourceType)
        sizes = self.pool_sizes(limit)
        now = utc_now()

        query_embedding = await self._embed_query(query)

        searches = []
        if SourceType.EVENT in types:
            searches.append(
                self._search_events(query_embedding, options.time_window, sizes[SourceType.EVENT])
            )
        if SourceType.ENTITY in types and entity_context:
            searches.append(
                self._search_entities(
                    query_embedding, options.entity_context, sizes[SourceType.ENTITY]
                )
            )
        if SourceType.TASK in types:
            searches.append(self._search_tasks(query_embedding, sizes[SourceType.TASK]))

        pools = await asyncio.gather(*searches)
        candidates = [candidate for pool in pools for candidate in pool]

        results = []
        for candidate in candidates:
            breakdown = ScoreBreakdown(
                semantic=candidate.semantic_score,
                temporal=temporal_score(candidate.timestamp, decay_rate, now),
                relational=relational_score(entity_context, candidate.related_entity_ids),
            )
            score = (
                weights.semantic * breakdown.semantic
                + weights.temporal * breakdown.temporal
                + weights.relational * breakdown.relational
            )
            results.append(
                RetrievalResult(
                    id=candidate.id,
                    type=candidate.type,
                    content=candidate.content,
                    metadata={
                        **candidate.metadata,
                        "timestamp": candidate.timestamp.isoformat() if candidate.timestamp else None,
                        "related_entities": sorted(candidate.related_entity_ids),
                    },
                    score=score,
                    score_breakdown=breakdown,
                )
            )

        results.sort(key=lambda r: (-r.score, SOURCE_ORDER[r.type], r.id))
        results = results[:limit]

        logger.info(
            "Retrieval completed",
            query_length=len(query),
            limit=limit,
            candidates=len(candidates),
            returned=len(results),
            entity_context=len(entity_context),
            time_window=options.time_window is not None,
            retrieval_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return results

    async def _embed_query(self, query: str) -> list[float]:
        try:
            return await self.embeddings.embed(query)
        except ProviderError as e:
            logger.warning(
                "Query embedding failed, semantic scores will be zero", error=str(e)
            )
            return self.embeddings.placeholder()

    async def _candidate_embeddings(
        self, records: list[Event | Entity | Task], source: SourceType
    ) -> dict[str, list[float]]:
        """Stored embeddings, with missing ones generated in one batch.

        Records whose embedding is missing and cannot be generated are left
        out, which drops them from this call's pool.
        """
        vectors = {
            record.id: record.embedding
            for record in records
            if not self.embeddings.is_placeholder(record.embedding)
        }
        missing = [record for record in records if record.id not in vectors]
        if not missing:
            return vectors

        texts = [self._embedding_text(record) for record in missing]
        try:
            generated = await self.embeddings.generate(texts)
        except ProviderError as e:
            logger.warning(
                "Skipping candidates without embeddings",
                source=source.value,
                skipped=len(missing),
                record_ids=[record.id for record in missing],
                error=str(e),
            )
            return vectors

        vectors.update({record.id: vector for record, vector in zip(missing, generated)})
        return vectors

    @staticmethod
    def _embedding_text(record: Event | Entity | Task) -> str:
        if isinstance(record, Entity):
            return " ".join(part for part in (record.name, record.description) if part)
        return " ".join(part for part in (record.title, record.description) if part)

    async def _top_by_similarity(
        self,
        records: list[Event | Entity | Task],
        query_embedding: list[float],
        source: SourceType,
        pool_size: int,
    ) -> list[tuple[Event | Entity | Task, float]]:
        vectors = await self._candidate_embeddings(records, source)
        scored = [
            (record, cosine_similarity(query_embedding, vectors[record.id]))
            for record in records
            if record.id in vectors
        ]
        scored.sort(key=lambda pair: (-pair[1], pair[0].id))

        logger.debug(
            "Source searched",
            source=source.value,
            pool=len(records),
            scored=len(scored),
            kept=min(len(scored), pool_size),
        )
        return scored[:pool_size]

    async def _search_events(
        self,
        query_embedding: list[float],
        time_window: TimeWindow | None,
        pool_size: int,
    ) -> list[Candidate]:
        events = await self.event_store.scan(time_window=time_window)
        top = await self._top_by_similarity(events, query_embedding, SourceType.EVENT, pool_size)
        return [
            Candidate(
                id=event.id,
                type=SourceType.EVENT,
                content=_content(event.title, event.description),
                metadata=_public_fields(event),
                semantic_score=similarity,
                timestamp=event.start_time,
                related_entity_ids=set(event.participant_ids),
            )
            for event, similarity in top
        ]

    async def _search_entities(
        self, query_embedding: list[float], entity_context: list[str], pool_size: int
    ) -> list[Candidate]:
        entities = await self.entity_store.find_by_ids(entity_context)
        top = await self._top_by_similarity(
            entities, query_embedding, SourceType.ENTITY, pool_size
        )
        return [
            Candidate(
                id=entity.id,
                type=SourceType.ENTITY,
                content=_content(entity.name, entity.description),
                metadata=_public_fields(entity),
                semantic_score=similarity,
                timestamp=entity.updated_at,
                related_entity_ids={entity.id},
            )
            for entity, similarity in top
        ]

    async def _search_tasks(self, query_embedding: list[float], pool_size: int) -> list[Candidate]:
        tasks = await self.task_store.scan()
        top = await self._top_by_similarity(tasks, query_embedding, SourceType.TASK, pool_size)
        return [
            Candidate(
                id=task.id,
                type=SourceType.TASK,
                content=_content(task.title, task.description),
                metadata=_public_fields(task),
                semantic_score=similarity,
                timestamp=task.due_date or task.created_at,
                related_entity_ids={task.assignee_id} if task.assignee_id else set(),
            )
            for task, similarity in top
        ]
