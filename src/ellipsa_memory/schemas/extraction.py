"""Validated shape of the LLM extraction payload.

Only ``summary`` is required. Every list defaults to empty, malformed list
items are dropped rather than failing the whole payload, and unknown task
priorities fall back to medium.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .records import TaskPriority


def _keep_dicts_with(key: str, value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [
        item
        for item in value
        if isinstance(item, dict)
        and isinstance(item.get(key), str)
        and item[key].strip()
    ]


def _keep_strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class ExtractedEntity(BaseModel):
    type: str = "other"
    value: str
    label: str | None = None
    context: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, v: Any) -> str:
        return v if isinstance(v, str) and v.strip() else "other"

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()

    @field_validator("label", "context", mode="before")
    @classmethod
    def optional_text(cls, v: Any) -> str | None:
        return v if isinstance(v, str) and v.strip() else None


class ExtractedActionItem(BaseModel):
    text: str
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: str | None = Field(
        default=None, validation_alias=AliasChoices("due_date", "due")
    )

    @field_validator("text")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("priority", mode="before")
    @classmethod
    def lenient_priority(cls, v: Any) -> TaskPriority:
        try:
            return TaskPriority(str(v).strip().lower())
        except ValueError:
            return TaskPriority.MEDIUM

    @field_validator("due_date", mode="before")
    @classmethod
    def stringify_due_date(cls, v: Any) -> str | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return str(v)


class ExtractionResult(BaseModel):
    summary: str
    confidence: float | None = Field(default=None, ge=0, le=1)
    sentiment: str | None = None
    topics: list[str] = Field(default_factory=list)
    entities: list[ExtractedEntity] = Field(default_factory=list)
    action_items: list[ExtractedActionItem] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float | None:
        if isinstance(v, bool) or not isinstance(v, int | float):
            return None
        return min(max(float(v), 0.0), 1.0)

    @field_validator("sentiment", mode="before")
    @classmethod
    def optional_sentiment(cls, v: Any) -> str | None:
        return v if isinstance(v, str) and v.strip() else None

    @field_validator("topics", "suggestions", mode="before")
    @classmethod
    def string_lists(cls, v: Any) -> list[str]:
        return _keep_strings(v)

    @field_validator("entities", mode="before")
    @classmethod
    def drop_malformed_entities(cls, v: Any) -> list[dict]:
        return _keep_dicts_with("value", v)

    @field_validator("action_items", mode="before")
    @classmethod
    def drop_malformed_action_items(cls, v: Any) -> list[dict]:
        return _keep_dicts_with("text", v)
