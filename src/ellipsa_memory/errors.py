"""Error types raised by the memory stores and services.

Only relational failures, validation problems and missing records ever reach
a caller. Vector-index and graph failures are logged by the stores and never
raised; provider failures are raised as ``ProviderError`` by the providers and
converted into fallback values by the stores and the pipeline.
"""

from dataclasses import dataclass
from typing import Any

import pydantic


@dataclass(frozen=True)
class FieldIssue:
    """One violated field in a validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class MemoryStoreError(Exception):
    """Base class for every error raised by Ellipsa Memory."""


class ValidationError(MemoryStoreError):
    """Input failed schema validation. Carries every violated field."""

    def __init__(self, issues: list[FieldIssue], record_type: str | None = None):
        self.issues = issues
        self.record_type = record_type
        fields = ", ".join(issue.field for issue in issues) or "<input>"
        prefix = f"Invalid {record_type}" if record_type else "Invalid input"
        super().__init__(f"{prefix}: {fields}")

    @classmethod
    def from_pydantic(
        cls, error: pydantic.ValidationError, record_type: str | None = None
    ) -> "ValidationError":
        issues = [
            FieldIssue(
                field=".".join(str(part) for part in item["loc"]) or "<input>",
                message=item["msg"],
            )
            for item in error.errors()
        ]
        return cls(issues, record_type=record_type)

    @classmethod
    def single(cls, field: str, message: str, record_type: str | None = None):
        return cls([FieldIssue(field, message)], record_type=record_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "validation_error",
            "message": str(self),
            "issues": [issue.to_dict() for issue in self.issues],
        }


class NotFoundError(MemoryStoreError):
    """Referenced id does not resolve to a live record."""

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type.capitalize()} not found: {record_id}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "not_found",
            "message": str(self),
            "record_type": self.record_type,
            "record_id": self.record_id,
        }


class DatabaseError(MemoryStoreError):
    """Relational-layer failure. The original driver error is ``__cause__``."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Database error during {operation}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": "database_error", "message": str(self)}


class ProviderError(MemoryStoreError):
    """Embedding, extraction or transcription provider failure."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} provider failed: {message}")
