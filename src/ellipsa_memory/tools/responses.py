"""JSON envelopes returned by every tool."""

import json
from typing import Any

from ..errors import MemoryStoreError


def success_response(correlation_id: str, **data: Any) -> str:
    return json.dumps(
        {"success": True, **data, "correlation_id": correlation_id}, indent=2, default=str
    )


def error_response(error: Exception, correlation_id: str) -> str:
    if isinstance(error, MemoryStoreError) and hasattr(error, "to_dict"):
        detail = error.to_dict()
    else:
        detail = {"type": "internal_error", "message": str(error)}
    return json.dumps(
        {
            "success": False,
            "error": detail,
            "error_type": error.__class__.__name__,
            "correlation_id": correlation_id,
        },
        indent=2,
        default=str,
    )
