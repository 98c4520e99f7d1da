"""Shared fixtures: a real SQLite database, fake providers and mocked secondary indexes."""

import asyncio
import re
import sys
import zlib
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add src to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ellipsa_memory.config import EllipsaMemorySettings
from ellipsa_memory.db.graph import GraphStore
from ellipsa_memory.db.relational import Database
from ellipsa_memory.errors import ProviderError
from ellipsa_memory.schemas.extraction import ExtractionResult
from ellipsa_memory.services.embedding import EmbeddingService
from ellipsa_memory.services.factory import build_services
from ellipsa_memory.services.pipeline import EventProcessingService
from ellipsa_memory.stores.entities import EntityStore
from ellipsa_memory.stores.events import EventStore
from ellipsa_memory.stores.tasks import TaskStore

DIMENSIONS = 512


class FakeEmbeddingService(EmbeddingService):
    """Bag-of-words hashing embedder: same words, same vector.

    Set ``fail`` to make every call raise like an unreachable model would.
    """

    def __init__(self, dimensions: int = DIMENSIONS):
        super().__init__("fake-model", dimensions=dimensions, timeout=5)
        self.fail = False
        self.encoded: list[str] = []

    def _encode(self, texts):
        if self.fail:
            raise RuntimeError("model unavailable")
        self.encoded.extend(texts)
        vectors = []
        for text in texts:
            vector = [0.0] * self.dimensions
            for token in re.findall(r"\w+", text.lower()):
                vector[zlib.crc32(token.encode()) % self.dimensions] += 1.0
            vectors.append(vector)
        return vectors


class FakeExtractor:
    """Stands in for the LLM. ``respond`` maps content to a result or an exception."""

    def __init__(self, respond=None, delay: float = 0.0):
        self.respond = respond or (lambda content: ExtractionResult(summary=content[:60] or "Nothing"))
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.active = 0
        self.max_active = 0

    async def extract(self, content, context=None):
        self.calls.append((content, context))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.respond(content)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


class FakeTranscriber:
    def __init__(self, transcript: str | None = "hello from the microphone"):
        self.transcript = transcript
        self.calls = []

    async def transcribe(self, audio, filename="audio.wav"):
        self.calls.append(audio)
        if self.transcript is None:
            raise ProviderError("transcription", "connection refused")
        return self.transcript


@pytest.fixture
def config():
    return EllipsaMemorySettings(_env_file=None, embedding_dimensions=DIMENSIONS)


@pytest.fixture
def embeddings():
    return FakeEmbeddingService()


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'memory.db'}")
    await db.create_schema()
    yield db
    await db.close()


@pytest.fixture
def graph():
    return AsyncMock(spec=GraphStore)


@pytest.fixture
def entity_store(database, embeddings, graph):
    return EntityStore(database, embeddings, graph, None, collection="entities")


@pytest.fixture
def event_store(database, embeddings, graph):
    return EventStore(database, embeddings, graph, None, collection="events")


@pytest.fixture
def task_store(database, embeddings, graph):
    return TaskStore(database, embeddings, graph)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
async def services(config, database, embeddings, extractor, transcriber):
    built = build_services(
        config,
        database=database,
        embeddings=embeddings,
        extractor=extractor,
        transcriber=transcriber,
    )
    yield built
    await built.pipeline.stop()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
async def pipeline(entity_store, event_store, task_store, extractor, transcriber):
    service = EventProcessingService(
        extractor,
        entity_store=entity_store,
        event_store=event_store,
        task_store=task_store,
        transcriber=transcriber,
    )
    yield service
    await service.stop()
