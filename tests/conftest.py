import asyncio
import logging
from typing import Any, Dict, List, Optional

import pytest

from voice_relay.bot.actions import build_default_registry
from voice_relay.bot.sinks import OutboundSink
from voice_relay.errors import TranscriptionConnectionError
from voice_relay.models.message_schemas import TextReply, TranscriptEvent
from voice_relay.models.session_registry import SessionRegistry
from voice_relay.services.synthesis import SynthesisClient
from voice_relay.services.transcription import TranscriptionChannel
from voice_relay.services.turn_engine import TurnEngine


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeChannel(TranscriptionChannel):
    """In-memory transcription channel driven by the test."""

    def __init__(self, fail_open: bool = False, gate: Optional[asyncio.Event] = None):
        super().__init__()
        self.fail_open = fail_open
        self.gate = gate
        self.sent: List[bytes] = []
        self.options = None
        self.close_calls = 0
        self.disconnects = 0

    async def _connect(self, options):
        self.options = options
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_open:
            raise TranscriptionConnectionError("provider unreachable")

    async def _send(self, chunk):
        self.sent.append(chunk)

    async def _disconnect(self):
        self.disconnects += 1

    async def close(self):
        self.close_calls += 1
        await super().close()

    async def emit(self, text: str, is_final: bool = False):
        await self._deliver(TranscriptEvent(text=text, is_final=is_final))

    async def drop(self, reason: str = "provider went away"):
        await self._fail(TranscriptionConnectionError(reason))


class FakeChannelFactory:
    """Callable building FakeChannels and remembering every one it built."""

    def __init__(self):
        self.channels: List[FakeChannel] = []
        self.fail_open = False

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(fail_open=self.fail_open)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


class FakeTurnEngine(TurnEngine):
    def __init__(self):
        self.calls: List[str] = []
        self.results: Dict[str, Any] = {}
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def submit(self, utterance):
        self.calls.append(utterance)
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.get(utterance, TextReply(value=f"Reply to: {utterance}"))
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeSynthesizer(SynthesisClient):
    def __init__(self):
        self.calls: List[str] = []
        self.error: Optional[Exception] = None
        self.closed = False

    async def synthesize(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return f"audio:{text}".encode()

    async def close(self):
        self.closed = True


class RecordingSink(OutboundSink):
    """Sink remembering everything delivered, in order."""

    def __init__(self):
        self.items: List[Any] = []

    @property
    def closed(self) -> bool:
        return False

    async def send_json(self, payload):
        self.items.append(payload)

    async def send_bytes(self, data):
        self.items.append(data)

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [item for item in self.items if isinstance(item, dict)]

    @property
    def audio(self) -> List[bytes]:
        return [item for item in self.items if isinstance(item, bytes)]


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, text: str = "", body: bytes = b""):
        self.status = status
        self.payload = payload
        self._text = text
        self.body = body

    async def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def text(self):
        return self._text

    async def read(self):
        return self.body


class FakeRequestContext:
    def __init__(self, response: FakeResponse):
        self.response = response

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHttpSession:
    """Stands in for aiohttp.ClientSession.post() as an async context manager."""

    def __init__(self):
        self.response = FakeResponse()
        self.error: Optional[Exception] = None
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def post(self, url, **kwargs):
        self.requests.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return FakeRequestContext(self.response)

    async def close(self):
        self.closed = True


@pytest.fixture
def channel_factory():
    return FakeChannelFactory()


@pytest.fixture
def turn_engine():
    return FakeTurnEngine()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def actions():
    return build_default_registry()


@pytest.fixture
def http_session():
    return FakeHttpSession()

