"""Services for Ellipsa Memory.

Only the leaf providers are exported here; the pipeline, retrieval engine and
factory depend on the stores and are imported from their own modules.
"""

from .embedding import EmbeddingService
from .extraction import ExtractionService
from .transcription import TranscriptionService

__all__ = ["EmbeddingService", "ExtractionService", "TranscriptionService"]
