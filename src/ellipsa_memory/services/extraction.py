"""LLM extraction provider: raw text in, validated ``ExtractionResult`` out."""

import asyncio
import json
import re
import time
from typing import Any

import ollama
import pydantic

from ..errors import ProviderError
from ..logging import get_logger
from ..schemas.extraction import ExtractionResult
from ..utils.time import current_utc
from .template_loader import TemplateLoader

logger = get_logger("services.extraction")

SYSTEM_PROMPT = (
    "You extract structured facts from personal observations. "
    "Reply with one JSON object only."
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ExtractionService:
    """Calls an Ollama chat model in JSON mode and validates its answer.

    Network errors, timeouts, unparseable JSON and payloads that fail
    validation all surface as ``ProviderError``; the pipeline treats them alike.
    """

    def __init__(
        self,
        host: str,
        model: str,
        timeout: float = 30.0,
        template_loader: TemplateLoader | None = None,
        client: ollama.AsyncClient | None = None,
    ):
        self.host = host
        self.model = model
        self.timeout = timeout
        self.template_loader = template_loader or TemplateLoader()
        self.client = client or ollama.AsyncClient(host=host)

    def build_prompt(self, content: str, context: dict[str, Any] | None = None) -> str:
        return self.template_loader.render_template(
            "extraction.md.j2",
            {"content": content, "context": context or {}, "now": current_utc()},
        )

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Raw chat completion in JSON mode."""
        try:
            response = await asyncio.wait_for(
                self.client.chat(
                    model=self.model,
                    messages=messages,
                    format="json",
                    stream=False,
                    options={"temperature": 0},
                ),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise ProviderError("extraction", f"timed out after {self.timeout}s") from e
        except Exception as e:
            raise ProviderError("extraction", str(e)) from e

        return response.get("message", {}).get("content", "").strip()

    async def extract(
        self, content: str, context: dict[str, Any] | None = None
    ) -> ExtractionResult:
        start_time = time.perf_counter()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(content, context)},
        ]

        raw = await self.complete(messages)
        result = self.parse(raw)

        logger.info(
            "Extraction completed",
            model=self.model,
            content_length=len(content),
            entities=len(result.entities),
            action_items=len(result.action_items),
            extraction_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result

    @staticmethod
    def parse(raw: str) -> ExtractionResult:
        """Validate a raw model reply. Raises ``ProviderError`` on any shape problem."""
        cleaned = _CODE_FENCE.sub("", raw.strip())
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ProviderError("extraction", f"reply is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ProviderError("extraction", "reply is not a JSON object")

        try:
            return ExtractionResult.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ProviderError("extraction", f"reply failed validation: {e}") from e
