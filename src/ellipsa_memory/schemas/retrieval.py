"""Request and result models for hybrid retrieval."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .records import TimeWindow


class SourceType(StrEnum):
    EVENT = "event"
    ENTITY = "entity"
    TASK = "task"


class ScoringWeights(BaseModel):
    """Per-axis weights. Not normalized; callers choose the scale."""

    semantic: float = 0.4
    temporal: float = 0.3
    relational: float = 0.3


class RetrievalOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: int | None = Field(default=None, ge=1, le=100)
    entity_context: list[str] = Field(default_factory=list, alias="entityContext")
    time_window: TimeWindow | None = Field(default=None, alias="timeWindow")
    weights: ScoringWeights | None = None
    decay_rate: float | None = Field(default=None, ge=0, alias="decayRate")
    types: list[SourceType] | None = None


class RetrievalContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_context: list[str] = Field(default_factory=list, alias="entityContext")
    time_window: TimeWindow | None = Field(default=None, alias="timeWindow")


class RetrievalRequest(BaseModel):
    """Wire shape of a retrieval call: ``{query, limit?, context?, weights?}``."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    limit: int | None = Field(default=None, ge=1, le=100)
    context: RetrievalContext = Field(default_factory=RetrievalContext)
    weights: ScoringWeights | None = None
    types: list[SourceType] | None = None

    def to_options(self) -> RetrievalOptions:
        return RetrievalOptions(
            limit=self.limit,
            entity_context=self.context.entity_context,
            time_window=self.context.time_window,
            weights=self.weights,
            types=self.types,
        )


class ScoreBreakdown(BaseModel):
    semantic: float
    temporal: float
    relational: float


class RetrievalResult(BaseModel):
    id: str
    type: SourceType
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float
    score_breakdown: ScoreBreakdown
