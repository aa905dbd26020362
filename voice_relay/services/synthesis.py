"""
Synthesis Client: text in, audio bytes out.

Stateless and shared by all sessions. ElevenLabsSynthesisClient calls the
ElevenLabs text-to-speech REST endpoint and returns the MP3 body unchanged.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import aiohttp

from voice_relay.config.constants import DEFAULT_ELEVEN_VOICE_ID, ELEVENLABS_TTS_URL, LOGGER_NAME
from voice_relay.errors import SynthesisError

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_TIMEOUT = 20.0  # seconds


class SynthesisClient(ABC):
    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize speech for text.

        Raises:
            SynthesisError: On provider/network failure
        """

    async def close(self) -> None:
        """Release any pooled connections."""


class ElevenLabsSynthesisClient(SynthesisClient):
    """Synthesis client backed by the ElevenLabs text-to-speech API."""

    def __init__(
        self,
        api_key: str,
        voice_id: str = DEFAULT_ELEVEN_VOICE_ID,
        timeout: float = DEFAULT_TIMEOUT,
        url_template: str = ELEVENLABS_TTS_URL,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.api_key = api_key
        self.voice_id = voice_id
        self.timeout = timeout
        self.url_template = url_template
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def url(self) -> str:
        return self.url_template.format(voice_id=self.voice_id)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            factory = self._session_factory or aiohttp.ClientSession
            self._session = factory()
        return self._session

    async def synthesize(self, text: str) -> bytes:
        trimmed = text.strip()
        if not trimmed:
            raise SynthesisError("Nothing to synthesize")
        if not self.api_key:
            raise SynthesisError("ELEVEN_API_KEY not configured")

        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        session = self._get_session()
        try:
            async with session.post(
                self.url,
                json={"text": trimmed},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise SynthesisError(f"Synthesis returned HTTP {response.status}: {body[:200]}")
                audio = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SynthesisError(f"Synthesis request failed: {e!r}") from e

        logger.debug(f"Synthesized {len(audio)} bytes of audio for {len(trimmed)} characters")
        return audio

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
