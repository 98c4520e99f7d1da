"""Unit tests for the event processing pipeline."""

import asyncio
import base64
from datetime import UTC, datetime

from ellipsa_memory.errors import ProviderError
from ellipsa_memory.schemas.extraction import ExtractionResult
from ellipsa_memory.schemas.records import (
    EntityType,
    EventType,
    RelationshipType,
    TaskPriority,
)
from ellipsa_memory.services.pipeline import (
    DEGRADED_SUMMARY,
    TRANSCRIPTION_FAILED_SUMMARY,
    TRUNCATION_MARKER,
    truncate_content,
)

MEETING = ExtractionResult.model_validate(
    {
        "summary": "Alice from Acme agreed to send the Q3 budget.",
        "sentiment": "positive",
        "topics": ["budget"],
        "entities": [
            {"type": "person", "value": "Alice", "context": "Alice will send the budget"},
            {"type": "company", "value": "Acme"},
        ],
        "action_items": [
            {"text": "Send Q3 budget to the team", "priority": "high", "due_date": "2026-11-01"},
            {"text": "Book follow-up", "due_date": "after the holidays"},
        ],
    }
)

AUDIO = base64.b64encode(b"RIFF....WAVEfmt ").decode()


class TestTruncateContent:
    def test_short_content_untouched(self):
        assert truncate_content("hello", 10) == ("hello", False)

    def test_long_content_cut_with_marker(self):
        text, truncated = truncate_content("x" * 100, 40)

        assert truncated
        assert len(text) == 40
        assert text.endswith(TRUNCATION_MARKER)


class TestProcessEvent:
    async def test_full_extraction(self, pipeline, extractor, entity_store):
        extractor.respond = lambda content: MEETING

        result = await pipeline.process_event(
            "Call with Alice from Acme about the budget",
            {"type": "meeting", "source": "zoom", "timestamp": "2026-06-01T10:00:00Z"},
        )

        event = result.event
        assert not result.degraded
        assert result.correlation_id.startswith("ingest_")
        assert event.type == EventType.MEETING
        assert event.title == MEETING.summary
        assert event.description == MEETING.summary
        assert event.start_time == datetime(2026, 6, 1, 10, 0, tzinfo=UTC)
        assert event.source == "zoom"
        assert event.metadata["topics"] == ["budget"]
        assert extractor.calls[0][1] == {"source": "zoom", "timestamp": "2026-06-01T10:00:00Z"}

        by_name = {entity.name: entity for entity in result.entities}
        assert set(by_name) == {"Alice", "Acme"}
        assert by_name["Acme"].type == EntityType.ORGANIZATION
        assert {p.entity_id: p.role for p in event.participants} == {
            by_name["Alice"].id: "mentioned",
            by_name["Acme"].id: "mentioned",
        }

        mentions = await entity_store.get_relationships(
            by_name["Alice"].id, RelationshipType.MENTIONS, "incoming"
        )
        assert [m.source_id for m in mentions] == [event.id]
        assert mentions[0].metadata["context"] == "Alice will send the budget"

        related = await entity_store.get_relationships(by_name["Alice"].id, RelationshipType.RELATED_TO)
        assert len(related) == 1
        assert related[0].source_id == min(by_name["Alice"].id, by_name["Acme"].id)

        first, second = result.tasks
        assert first.priority == TaskPriority.HIGH
        assert first.due_date == datetime(2026, 11, 1, tzinfo=UTC)
        assert first.related_event_id == event.id
        assert first.created_by == "pipeline"
        assert second.due_date is None
        assert second.metadata == {"due_text": "after the holidays"}

    async def test_existing_entities_are_reused(self, pipeline, extractor, entity_store):
        alice = await entity_store.create({"name": "alice", "type": "person"})
        extractor.respond = lambda content: MEETING

        first = await pipeline.process_event("first call")
        second = await pipeline.process_event("second call")

        assert alice.id in {e.id for e in first.entities}
        refreshed = await entity_store.get(alice.id)
        assert refreshed.description == "Alice will send the budget"
        assert refreshed.last_seen_at is not None
        assert (await entity_store.find_all({"type": "person"})).pagination.total_items == 1

        acme = next(e for e in second.entities if e.name == "Acme")
        related = await entity_store.get_relationships(acme.id, RelationshipType.RELATED_TO)
        assert [r.weight for r in related] == [2]

    async def test_repeated_mentions_collapse(self, pipeline, extractor, entity_store):
        extractor.respond = lambda content: ExtractionResult.model_validate(
            {
                "summary": "Bob, Bob and bob.",
                "entities": [
                    {"type": "person", "value": "Bob"},
                    {"type": "person", "value": "bob"},
                ],
            }
        )

        result = await pipeline.process_event("Bob said bob things")

        assert len(result.entities) == 1
        assert len(result.event.participants) == 1
        bob = result.entities[0]
        assert await entity_store.get_relationships(bob.id, RelationshipType.RELATED_TO) == []
        mentions = await entity_store.get_relationships(bob.id, RelationshipType.MENTIONS)
        assert [m.weight for m in mentions] == [2]

    async def test_participant_hints_are_kept(self, pipeline, entity_store):
        alice = await entity_store.create({"name": "Alice", "type": "person"})

        result = await pipeline.process_event(
            "Standup notes",
            {"participants": [{"entity_id": alice.id, "role": "host"}, {"nope": 1}]},
        )

        assert [(p.entity_id, p.role) for p in result.event.participants] == [(alice.id, "host")]


class TestDegradedPaths:
    async def test_extraction_failure_records_degraded_event(self, pipeline, extractor):
        extractor.respond = lambda content: ProviderError("extraction", "timed out after 30s")

        result = await pipeline.process_event("Raw note that could not be analysed")

        assert result.degraded
        assert result.event.description == DEGRADED_SUMMARY
        assert result.event.metadata["extraction_status"] == "failed"
        assert result.event.metadata["raw_content"] == "Raw note that could not be analysed"
        assert result.entities == []
        assert result.tasks == []

    async def test_long_content_is_truncated(self, pipeline, extractor):
        pipeline.max_content_chars = 50

        result = await pipeline.process_event("word " * 100)

        sent = extractor.calls[0][0]
        assert len(sent) == 50
        assert sent.endswith(TRUNCATION_MARKER)
        assert result.event.metadata["truncated"] is True
        assert result.event.metadata["content_length"] == 50

    async def test_audio_is_transcribed_first(self, pipeline, extractor, transcriber):
        result = await pipeline.process_event("", {"audio": AUDIO})

        assert transcriber.calls == [AUDIO]
        assert extractor.calls[0][0] == "[Audio Transcript] hello from the microphone"
        assert result.event.type == EventType.AUDIO
        assert "audio" not in result.event.metadata

    async def test_audio_transcript_precedes_text(self, pipeline, extractor):
        await pipeline.process_event("typed notes", {"audio": AUDIO})

        assert extractor.calls[0][0] == "[Audio Transcript] hello from the microphone\n\ntyped notes"

    async def test_transcription_failure(self, pipeline, extractor, transcriber):
        transcriber.transcript = None

        result = await pipeline.process_event("", {"audio": AUDIO})

        assert result.degraded
        assert result.event.description == TRANSCRIPTION_FAILED_SUMMARY
        assert result.event.type == EventType.AUDIO
        assert extractor.calls == []


class TestWorker:
    async def test_observations_are_processed_one_at_a_time(self, pipeline, extractor):
        extractor.delay = 0.02

        results = await asyncio.gather(
            *(pipeline.process_event(text) for text in ["first", "second", "third"])
        )

        assert extractor.max_active == 1
        assert [call[0] for call in extractor.calls] == ["first", "second", "third"]
        assert [r.event.title for r in results] == ["first", "second", "third"]
        assert len({r.correlation_id for r in results}) == 3

    async def test_stop_and_restart(self, pipeline):
        await pipeline.process_event("one")
        assert pipeline.running

        await pipeline.stop()
        assert not pipeline.running

        result = await pipeline.process_event("two")
        assert result.event.title == "two"
