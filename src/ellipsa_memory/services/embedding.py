"""Embedding provider backed by sentence-transformers."""

import asyncio
import time

from sentence_transformers import SentenceTransformer

from ..errors import ProviderError
from ..logging import get_logger
from ..utils.vectors import is_zero_vector

logger = get_logger("services.embedding")


class EmbeddingService:
    """Turns text into fixed-length vectors.

    The model loads lazily on first use. Encoding runs in a worker thread so
    the event loop stays free, and every call is bounded by ``timeout``.

    ``generate`` raises ``ProviderError``; ``embed_or_placeholder`` never
    raises and substitutes an all-zero vector of the configured dimension.
    """

    def __init__(
        self,
        model_name: str,
        dimensions: int,
        device: str | None = None,
        timeout: float = 30.0,
    ):
        self.model_name = model_name
        self.dimensions = dimensions
        self.device = device
        self.timeout = timeout
        self.model: SentenceTransformer | None = None

    def _load_model(self) -> SentenceTransformer:
        if self.model is None:
            start = time.perf_counter()
            logger.info("Loading embedding model on first use", model=self.model_name)

            if self.device is not None:
                self.model = SentenceTransformer(self.model_name, device=self.device)
            else:
                self.model = SentenceTransformer(self.model_name)

            logger.info(
                "Embedding model loaded",
                model=self.model_name,
                device=str(self.model.device),
                load_time_ms=round((time.perf_counter() - start) * 1000, 2),
            )
        return self.model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        embeddings = model.encode(texts, convert_to_tensor=False)
        return [embedding.tolist() for embedding in embeddings]

    async def generate(self, texts: list[str]) -> list[list[float]]:
        """One vector per input string, in order."""
        if not texts:
            return []

        start_time = time.perf_counter()
        try:
            vectors = await asyncio.wait_for(
                asyncio.to_thread(self._encode, texts), timeout=self.timeout
            )
        except TimeoutError as e:
            raise ProviderError("embedding", f"timed out after {self.timeout}s") from e
        except Exception as e:
            raise ProviderError("embedding", str(e)) from e

        if len(vectors) != len(texts):
            raise ProviderError(
                "embedding", f"expected {len(texts)} vectors, got {len(vectors)}"
            )

        logger.debug(
            "Embeddings generated",
            text_count=len(texts),
            total_characters=sum(len(t) for t in texts),
            embedding_dimensions=len(vectors[0]) if vectors else 0,
            encoding_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return vectors

    async def embed(self, text: str) -> list[float]:
        return (await self.generate([text]))[0]

    def placeholder(self) -> list[float]:
        """Deterministic stand-in for a vector the provider could not produce."""
        return [0.0] * self.dimensions

    def is_placeholder(self, vector: list[float] | None) -> bool:
        return is_zero_vector(vector)

    async def embed_or_placeholder(self, text: str) -> list[float]:
        try:
            return await self.embed(text)
        except ProviderError as e:
            logger.warning(
                "Embedding provider failed, using placeholder vector",
                error=str(e),
                text_length=len(text),
                dimensions=self.dimensions,
            )
            return self.placeholder()
