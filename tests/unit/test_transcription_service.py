"""Unit tests for the transcription provider."""

import base64

import httpx
import pytest

from ellipsa_memory.errors import ProviderError
from ellipsa_memory.services.transcription import TranscriptionService

AUDIO = b"RIFF....WAVEfmt "


def make_service(handler, api_key=None):
    return TranscriptionService(
        "http://whisper:8080/", api_key=api_key, transport=httpx.MockTransport(handler)
    )


async def test_transcribe_posts_audio_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.content
        return httpx.Response(200, json={"text": "  Let's ship on Friday. "})

    service = make_service(handler, api_key="secret")
    text = await service.transcribe(base64.b64encode(AUDIO).decode())

    assert text == "Let's ship on Friday."
    assert seen["path"] == "/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer secret"
    assert AUDIO in seen["body"]


async def test_server_error_raises_provider_error():
    service = make_service(lambda request: httpx.Response(500, text="overloaded"))

    with pytest.raises(ProviderError):
        await service.transcribe(AUDIO)


async def test_response_without_text_raises():
    service = make_service(lambda request: httpx.Response(200, json={"segments": []}))

    with pytest.raises(ProviderError, match="no text"):
        await service.transcribe(AUDIO)


def test_decode_audio_accepts_data_urls():
    encoded = "data:audio/wav;base64," + base64.b64encode(AUDIO).decode()
    assert TranscriptionService.decode_audio(encoded) == AUDIO


def test_decode_audio_rejects_garbage():
    with pytest.raises(ProviderError, match="base64"):
        TranscriptionService.decode_audio("not base64 at all!")
