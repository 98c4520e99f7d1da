"""Transcription provider for audio-sourced content.

Talks to any server exposing the OpenAI-compatible
``POST /v1/audio/transcriptions`` endpoint (whisper.cpp server, faster-whisper
server, LocalAI, ...).
"""

import base64
import binascii
import time

import httpx

from ..errors import ProviderError
from ..logging import get_logger

logger = get_logger("services.transcription")


class TranscriptionService:
    def __init__(
        self,
        base_url: str,
        model: str = "whisper-1",
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def decode_audio(audio: bytes | str) -> bytes:
        if isinstance(audio, bytes):
            return audio
        # Accept data URLs as produced by browser capture
        if audio.startswith("data:") and "," in audio:
            audio = audio.split(",", 1)[1]
        try:
            return base64.b64decode(audio, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError("transcription", f"audio is not valid base64: {e}") from e

    async def transcribe(self, audio: bytes | str, filename: str = "audio.wav") -> str:
        """Return the transcript text. Raises ``ProviderError`` on any failure."""
        data = self.decode_audio(audio)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    "/v1/audio/transcriptions",
                    headers=headers,
                    data={"model": self.model, "response_format": "json"},
                    files={"file": (filename, data, "application/octet-stream")},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise ProviderError("transcription", str(e) or type(e).__name__) from e
        except ValueError as e:
            raise ProviderError("transcription", f"response is not JSON: {e}") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ProviderError("transcription", "response has no text field")

        logger.info(
            "Audio transcribed",
            audio_bytes=len(data),
            transcript_length=len(text),
            transcription_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return text.strip()
