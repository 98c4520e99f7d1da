"""Configuration handling for Ellipsa Memory."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EllipsaMemorySettings(BaseSettings):
    """Ellipsa Memory configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Server Configuration
    host: str = "localhost"
    http_port: int = Field(default=8000, ge=1, le=65535)
    mcp_transport: Literal["stdio", "sse", "streamable-http"] = "stdio"
    mcp_port: int | None = None

    # Logging
    log_level: str = "INFO"
    log_format: Literal["rich", "json", "rich_json"] = "rich"

    # Relational store (source of truth)
    database_url: str = "sqlite+aiosqlite:///./ellipsa_memory.db"
    database_echo: bool = False

    # Graph store
    graph_uri: str = "bolt://localhost:7687"
    graph_user: str = ""
    graph_password: str = ""
    graph_database: str | None = None

    # Vector index
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    entity_collection: str = "entities"
    event_collection: str = "events"

    # Embedding provider
    embedding_model: str = "sentence-transformers/all-mpnet-base-v2"
    embedding_dimensions: int = Field(default=768, gt=0)
    inference_device: str | None = None
    embedding_timeout: float = Field(default=30.0, gt=0)

    # Extraction provider
    ollama_host: str = "localhost"
    ollama_port: int = Field(default=11434, ge=1, le=65535)
    extraction_model: str = "llama3.1:8b"
    extraction_timeout: float = Field(default=30.0, gt=0)
    extraction_max_chars: int = Field(default=30000, gt=0)

    # Transcription provider (OpenAI-compatible /v1/audio/transcriptions)
    transcription_url: str = "http://localhost:8080"
    transcription_model: str = "whisper-1"
    transcription_api_key: str | None = None
    transcription_timeout: float = Field(default=60.0, gt=0)

    # Entity de-duplication
    duplicate_similarity_threshold: float = Field(default=0.85, ge=0, le=1)
    duplicate_candidate_limit: int = Field(default=5, gt=0)
    similar_entity_threshold: float = Field(default=0.7, ge=0, le=1)

    # Retrieval
    retrieval_default_limit: int = Field(default=10, gt=0)
    retrieval_semantic_weight: float = 0.4
    retrieval_temporal_weight: float = 0.3
    retrieval_relational_weight: float = 0.3
    retrieval_decay_rate: float = Field(default=0.1, ge=0)
    event_oversample_factor: int = Field(default=3, ge=1)
    entity_oversample_factor: int = Field(default=2, ge=1)
    task_oversample_factor: int = Field(default=2, ge=1)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:  # type: ignore
        """Validate log level is a valid logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @property
    def ollama_base_url(self) -> str:
        return f"http://{self.ollama_host}:{self.ollama_port}"


# Global settings instance
settings = EllipsaMemorySettings()
