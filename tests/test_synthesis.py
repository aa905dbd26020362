import asyncio

import aiohttp
import pytest

from voice_relay.errors import SynthesisError
from voice_relay.services.synthesis import ElevenLabsSynthesisClient

from conftest import FakeResponse


@pytest.fixture
def client(http_session):
    return ElevenLabsSynthesisClient(api_key="xi-test", voice_id="Rachel", session_factory=lambda: http_session)


@pytest.mark.asyncio
async def test_synthesize_returns_audio(client, http_session):
    http_session.response = FakeResponse(body=b"ID3mp3-bytes")

    audio = await client.synthesize("  Hello there.  ")

    assert audio == b"ID3mp3-bytes"
    request = http_session.requests[0]
    assert request["url"] == "https://api.elevenlabs.io/v1/text-to-speech/Rachel"
    assert request["headers"]["xi-api-key"] == "xi-test"
    assert request["json"] == {"text": "Hello there."}


@pytest.mark.asyncio
async def test_blank_text_is_rejected(client, http_session):
    with pytest.raises(SynthesisError):
        await client.synthesize("   ")
    assert http_session.requests == []


@pytest.mark.asyncio
async def test_missing_key_is_rejected(http_session):
    client = ElevenLabsSynthesisClient(api_key="", session_factory=lambda: http_session)

    with pytest.raises(SynthesisError):
        await client.synthesize("Hello")


@pytest.mark.asyncio
async def test_http_error(client, http_session):
    http_session.response = FakeResponse(status=401, text='{"detail": "invalid api key"}')

    with pytest.raises(SynthesisError, match="401"):
        await client.synthesize("Hello")


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError()])
async def test_transport_errors(client, http_session, error):
    http_session.error = error

    with pytest.raises(SynthesisError):
        await client.synthesize("Hello")


def test_voice_id_in_url():
    client = ElevenLabsSynthesisClient(api_key="xi-test", voice_id="abc123")
    assert client.url.endswith("/text-to-speech/abc123")


@pytest.mark.asyncio
async def test_close_releases_session(client, http_session):
    http_session.response = FakeResponse(body=b"x")
    await client.synthesize("Hello")

    await client.close()

    assert http_session.closed
