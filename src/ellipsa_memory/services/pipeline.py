"""Event processing pipeline: raw observations in, events/entities/tasks out.

A single worker drains an ``asyncio.Queue`` strictly in FIFO order, so at most
one extraction-and-write sequence is in flight at any time. That serialization
together with the name lookup in ``_resolve_entity`` keeps two observations
mentioning the same name from racing to create two entities.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from ..errors import ProviderError, ValidationError
from ..logging import get_logger
from ..schemas.extraction import ExtractedEntity, ExtractionResult
from ..schemas.records import (
    Entity,
    EntityType,
    Event,
    EventType,
    Participant,
    RecordKind,
    RelationshipType,
    Task,
)
from ..stores.entities import EntityStore
from ..stores.events import EventStore
from ..stores.tasks import TaskStore
from ..utils.correlation import get_correlation_id, with_correlation_id
from ..utils.time import parse_datetime, utc_now
from .extraction import ExtractionService
from .transcription import TranscriptionService

logger = get_logger("services.pipeline")

TRUNCATION_MARKER = "... [truncated]"
DEGRADED_SUMMARY = "Content captured, extraction failed."
TRANSCRIPTION_FAILED_SUMMARY = "Audio captured, transcription failed."
TITLE_LENGTH = 100


class ProcessedEvent(BaseModel):
    event: Event
    entities: list[Entity] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    degraded: bool = False
    correlation_id: str | None = None


@dataclass
class _Job:
    content: str
    metadata: dict[str, Any]
    future: asyncio.Future = field(repr=False)


def truncate_content(content: str, max_chars: int) -> tuple[str, bool]:
    """Cut ``content`` to at most ``max_chars`` characters, marker included."""
    if len(content) <= max_chars:
        return content, False
    keep = max(max_chars - len(TRUNCATION_MARKER), 0)
    return content[:keep] + TRUNCATION_MARKER, True


class EventProcessingService:
    def __init__(
        self,
        extractor: ExtractionService,
        entity_store: EntityStore,
        event_store: EventStore,
        task_store: TaskStore,
        transcriber: TranscriptionService | None = None,
        max_content_chars: int = 30000,
    ):
        self.extractor = extractor
        self.entity_store = entity_store
        self.event_store = event_store
        self.task_store = task_store
        self.transcriber = transcriber
        self.max_content_chars = max_content_chars
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="event-pipeline")
            logger.info("Event pipeline worker started")

    async def stop(self) -> None:
        """Finish queued jobs, then stop the worker."""
        if not self.running:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("Event pipeline worker stopped")

    async def process_event(
        self, content: str, metadata: dict[str, Any] | None = None
    ) -> ProcessedEvent:
        """Queue one observation and wait for its records to be written."""
        await self.start()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(content=content or "", metadata=dict(metadata or {}), future=future))
        logger.debug("Observation queued", queue_depth=self.pending)
        return await future

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                try:
                    result = await self._handle(job.content, job.metadata)
                except Exception as e:
                    if not job.future.cancelled():
                        job.future.set_exception(e)
                else:
                    if not job.future.cancelled():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()

    @with_correlation_id("ingest")
    async def _handle(self, content: str, metadata: dict[str, Any]) -> ProcessedEvent:
        start_time = time.perf_counter()
        status = "ok"

        audio = metadata.pop("audio", None)
        if audio is not None:
            metadata.setdefault("type", EventType.AUDIO.value)
            content, status = await self._transcribe(audio, content)

        bounded, truncated = truncate_content(content, self.max_content_chars)
        if truncated:
            logger.info(
                "Content truncated for extraction",
                original_length=len(content),
                max_chars=self.max_content_chars,
            )

        extraction: ExtractionResult | None = None
        if status == "ok":
            try:
                extraction = await self.extractor.extract(bounded, self._prompt_context(metadata))
            except ProviderError as e:
                status = "failed"
                logger.warning("Extraction failed, recording degraded event", error=str(e))

        if extraction is None:
            summary = TRANSCRIPTION_FAILED_SUMMARY if status == "transcription_failed" else DEGRADED_SUMMARY
            extraction = ExtractionResult(summary=summary)

        mentions = await self._resolve_entities(extraction.entities)
        event = await self._create_event(bounded, metadata, extraction, mentions, status, truncated)

        for entity, mention in mentions:
            await self.entity_store.create_relationship(
                {
                    "source_id": event.id,
                    "source_kind": RecordKind.EVENT,
                    "target_id": entity.id,
                    "target_kind": RecordKind.ENTITY,
                    "type": RelationshipType.MENTIONS,
                    "metadata": {"context": mention.context or mention.value},
                }
            )

        entities = list({entity.id: entity for entity, _ in mentions}.values())
        for first, second in itertools.combinations(sorted(e.id for e in entities), 2):
            await self.entity_store.create_relationship(
                {
                    "source_id": first,
                    "target_id": second,
                    "type": RelationshipType.RELATED_TO,
                    "metadata": {"last_event_id": event.id},
                }
            )

        tasks = await self._create_tasks(extraction, event)

        logger.info(
            "Observation processed",
            event_id=event.id,
            extraction_status=status,
            entities=len(entities),
            tasks=len(tasks),
            truncated=truncated,
            processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return ProcessedEvent(
            event=event,
            entities=entities,
            tasks=tasks,
            degraded=status != "ok",
            correlation_id=get_correlation_id(),
        )

    async def _transcribe(self, audio: bytes | str, content: str) -> tuple[str, str]:
        if self.transcriber is None:
            logger.warning("Audio received but no transcription provider is configured")
            return content, "transcription_failed"
        try:
            transcript = await self.transcriber.transcribe(audio)
        except ProviderError as e:
            logger.warning("Transcription failed, recording degraded event", error=str(e))
            return content, "transcription_failed"

        prefixed = f"[Audio Transcript] {transcript}"
        return (f"{prefixed}\n\n{content}" if content else prefixed), "ok"

    @staticmethod
    def _prompt_context(metadata: dict[str, Any]) -> dict[str, Any]:
        context = {
            "source": metadata.get("source"),
            "window_title": metadata.get("window_title") or metadata.get("windowTitle"),
            "timestamp": metadata.get("timestamp"),
        }
        return {key: value for key, value in context.items() if value}

    async def _resolve_entities(
        self, extracted: list[ExtractedEntity]
    ) -> list[tuple[Entity, ExtractedEntity]]:
        mentions = []
        for mention in extracted:
            entity = await self._resolve_entity(mention)
            if entity is not None:
                mentions.append((entity, mention))
        return mentions

    async def _resolve_entity(self, mention: ExtractedEntity) -> Entity | None:
        """Reuse a live entity with the same name and type, else create one."""
        entity_type = EntityType.coerce(mention.type)
        existing = await self.entity_store.find_by_name(mention.value, entity_type)
        if existing is not None:
            changes: dict[str, Any] = {"last_seen_at": utc_now()}
            if not existing.description and mention.context:
                changes["description"] = mention.context
            return await self.entity_store.update(existing.id, changes)

        try:
            creation = await self.entity_store.create_checked(
                {
                    "name": mention.value,
                    "type": entity_type,
                    "description": mention.context,
                    "metadata": {"label": mention.label} if mention.label else {},
                    "last_seen_at": utc_now(),
                }
            )
        except ValidationError as e:
            logger.warning("Skipping unusable extracted entity", value=mention.value, error=str(e))
            return None
        return creation.entity

    async def _create_event(
        self,
        content: str,
        metadata: dict[str, Any],
        extraction: ExtractionResult,
        mentions: list[tuple[Entity, ExtractedEntity]],
        status: str,
        truncated: bool,
    ) -> Event:
        try:
            event_type = EventType(metadata.pop("type", None) or EventType.OTHER)
        except ValueError:
            event_type = EventType.OTHER

        participants: dict[str, Participant] = {}
        for hint in metadata.pop("participants", None) or []:
            try:
                participant = Participant.model_validate(hint)
            except pydantic.ValidationError:
                logger.warning("Ignoring malformed participant hint", hint=str(hint)[:200])
                continue
            participants[participant.entity_id] = participant
        for entity, mention in mentions:
            participants.setdefault(
                entity.id,
                Participant(
                    entity_id=entity.id,
                    role="mentioned",
                    metadata={"context": mention.context} if mention.context else {},
                ),
            )

        summary = extraction.summary.strip() or DEGRADED_SUMMARY
        title = metadata.pop("title", None) or summary[:TITLE_LENGTH]
        start_time = parse_datetime(metadata.get("timestamp")) or utc_now()

        event_metadata = {
            **metadata,
            "extraction_status": status,
            "truncated": truncated,
            "content_length": len(content),
            "sentiment": extraction.sentiment,
            "topics": extraction.topics,
            "confidence": extraction.confidence,
            "suggestions": extraction.suggestions,
        }
        if status != "ok":
            # Keep the raw observation so nothing is lost when extraction fails
            event_metadata["raw_content"] = content

        return await self.event_store.create(
            {
                "type": event_type,
                "title": title,
                "description": summary,
                "start_time": start_time,
                "end_time": parse_datetime(metadata.get("end_time")),
                "participants": list(participants.values()),
                "source": metadata.get("source"),
                "source_id": metadata.get("source_id"),
                "metadata": event_metadata,
            }
        )

    async def _create_tasks(self, extraction: ExtractionResult, event: Event) -> list[Task]:
        tasks = []
        for item in extraction.action_items:
            due_date = parse_datetime(item.due_date)
            task = await self.task_store.create(
                {
                    "title": item.text[:500],
                    "description": item.text,
                    "priority": item.priority,
                    "due_date": due_date,
                    "created_by": "pipeline",
                    "related_event_id": event.id,
                    "metadata": {"due_text": item.due_date} if item.due_date and due_date is None else {},
                }
            )
            tasks.append(task)
        return tasks
