import asyncio
import json

import pytest
from unittest.mock import AsyncMock, patch
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from voice_relay.errors import MalformedEventError, TranscriptionConnectionError
from voice_relay.services.transcription import (
    ChannelState,
    DeepgramTranscriptionChannel,
    TranscriptionOptions,
    build_listen_url,
    parse_deepgram_message,
)

from conftest import FakeChannel


def results_message(text, is_final=False):
    return json.dumps({
        "type": "Results",
        "is_final": is_final,
        "channel": {"alternatives": [{"transcript": text, "confidence": 0.9}]},
    })


class FakeProviderSocket:
    """Provider connection fed by the test through a queue."""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.send = AsyncMock()
        self.close = AsyncMock()

    def push(self, item):
        self.queue.put_nowait(item)

    def end(self):
        self.queue.put_nowait(None)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def provider_socket():
    return FakeProviderSocket()


@pytest.fixture
def connect(provider_socket):
    with patch(
        "voice_relay.services.transcription.websockets.connect",
        new=AsyncMock(return_value=provider_socket),
    ) as mock_connect:
        yield mock_connect


# Channel contract

@pytest.mark.asyncio
async def test_open_and_send():
    channel = FakeChannel()
    await channel.open(TranscriptionOptions())

    await channel.send_audio(b"abc")

    assert channel.state is ChannelState.OPEN
    assert channel.sent == [b"abc"]


@pytest.mark.asyncio
async def test_send_before_open_is_noop():
    channel = FakeChannel()
    await channel.send_audio(b"early")
    assert channel.sent == []


@pytest.mark.asyncio
async def test_send_after_close_is_noop():
    channel = FakeChannel()
    await channel.open(TranscriptionOptions())
    await channel.close()

    await channel.send_audio(b"late")

    assert channel.sent == []


@pytest.mark.asyncio
async def test_open_failure_raises_connection_error():
    channel = FakeChannel(fail_open=True)

    with pytest.raises(TranscriptionConnectionError):
        await channel.open(TranscriptionOptions())

    assert channel.state is ChannelState.CLOSED
    # ConnectionError taxonomy
    with pytest.raises(ConnectionError):
        await FakeChannel(fail_open=True).open(TranscriptionOptions())


@pytest.mark.asyncio
async def test_close_is_idempotent():
    channel = FakeChannel()
    await channel.open(TranscriptionOptions())

    await channel.close()
    await channel.close()

    assert channel.state is ChannelState.CLOSED
    assert channel.disconnects == 1


@pytest.mark.asyncio
async def test_close_cancels_pending_open():
    channel = FakeChannel(gate=asyncio.Event())
    open_task = asyncio.create_task(channel.open(TranscriptionOptions()))
    await asyncio.sleep(0)
    assert channel.state is ChannelState.CONNECTING

    await channel.close()

    with pytest.raises(TranscriptionConnectionError):
        await open_task
    assert channel.state is ChannelState.CLOSED
    assert channel.disconnects == 0


@pytest.mark.asyncio
async def test_events_delivered_in_order():
    channel = FakeChannel()
    received = []

    async def on_event(event):
        received.append((event.text, event.is_final))

    channel.on_event(on_event)
    await channel.open(TranscriptionOptions())
    await channel.emit("a")
    await channel.emit("a b")
    await channel.emit("a b c", is_final=True)

    assert received == [("a", False), ("a b", False), ("a b c", True)]


@pytest.mark.asyncio
async def test_failing_event_callback_does_not_break_delivery():
    channel = FakeChannel()
    received = []

    async def on_event(event):
        received.append(event.text)
        if event.text == "bad":
            raise ValueError("callback bug")

    channel.on_event(on_event)
    await channel.open(TranscriptionOptions())
    await channel.emit("bad")
    await channel.emit("good")

    assert received == ["bad", "good"]


@pytest.mark.asyncio
async def test_mid_stream_failure_reported_once():
    channel = FakeChannel()
    errors = []

    async def on_error(error):
        errors.append(error)

    channel.on_error(on_error)
    await channel.open(TranscriptionOptions())

    await channel.drop("first")
    await channel.drop("second")

    assert len(errors) == 1
    assert isinstance(errors[0], TranscriptionConnectionError)
    assert channel.state is ChannelState.CLOSED


# Deepgram message handling

def test_parse_results_message():
    event = parse_deepgram_message(results_message("hello world", is_final=True))
    assert event.text == "hello world"
    assert event.is_final is True


def test_parse_results_without_alternatives():
    event = parse_deepgram_message(json.dumps({"type": "Results", "channel": {"alternatives": []}}))
    assert event.text == ""
    assert event.is_empty


def test_parse_non_results_messages():
    assert parse_deepgram_message(json.dumps({"type": "Metadata", "request_id": "x"})) is None
    assert parse_deepgram_message(json.dumps({"type": "SpeechStarted"})) is None
    assert parse_deepgram_message(json.dumps({"type": "UtteranceEnd"})) is None


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps([1, 2, 3]),
    json.dumps({"type": "Results"}),
    json.dumps({"type": "Results", "channel": {"alternatives": "oops"}}),
])
def test_parse_malformed_messages(raw):
    with pytest.raises(MalformedEventError):
        parse_deepgram_message(raw)


def test_browser_listen_url():
    url = build_listen_url(TranscriptionOptions(model="nova", endpointing=False), "wss://example.test/v1/listen")

    assert url.startswith("wss://example.test/v1/listen?")
    assert "model=nova" in url
    assert "punctuate=true" in url
    assert "interim_results=true" in url
    assert "endpointing=false" in url
    assert "encoding" not in url


def test_telephony_listen_url():
    url = build_listen_url(TranscriptionOptions(endpointing=None, encoding="mulaw", sample_rate=8000))

    assert "encoding=mulaw" in url
    assert "sample_rate=8000" in url
    assert "endpointing" not in url


# Deepgram channel

@pytest.mark.asyncio
async def test_deepgram_open_passes_credentials(connect):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")
    await channel.open(TranscriptionOptions(model="nova"))

    assert channel.is_open
    url = connect.call_args.args[0]
    assert "model=nova" in url
    assert connect.call_args.kwargs["additional_headers"] == {"Authorization": "Token dg-key"}

    await channel.close()


@pytest.mark.asyncio
async def test_deepgram_open_without_key_fails(connect):
    channel = DeepgramTranscriptionChannel(api_key="")

    with pytest.raises(TranscriptionConnectionError):
        await channel.open(TranscriptionOptions())

    connect.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [OSError("unreachable"), InvalidHandshake("401"), asyncio.TimeoutError()])
async def test_deepgram_open_errors_become_connection_errors(error):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")

    with patch(
        "voice_relay.services.transcription.websockets.connect",
        new=AsyncMock(side_effect=error),
    ):
        with pytest.raises(TranscriptionConnectionError):
            await channel.open(TranscriptionOptions())

    assert channel.state is ChannelState.CLOSED


@pytest.mark.asyncio
async def test_deepgram_forwards_audio(connect, provider_socket):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")
    await channel.open(TranscriptionOptions())

    await channel.send_audio(b"\x00\x01")

    provider_socket.send.assert_awaited_with(b"\x00\x01")
    await channel.close()


@pytest.mark.asyncio
async def test_deepgram_delivers_events_then_reports_end(connect, provider_socket):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")
    received = []
    errors = []

    async def on_event(event):
        received.append((event.text, event.is_final))

    async def on_error(error):
        errors.append(error)

    channel.on_event(on_event)
    channel.on_error(on_error)
    await channel.open(TranscriptionOptions())
    recv_task = channel._recv_task

    provider_socket.push(json.dumps({"type": "Metadata"}))
    provider_socket.push(results_message("turn"))
    provider_socket.push("garbage")
    provider_socket.push(b"\x00binary")
    provider_socket.push(results_message("turn the lights on", is_final=True))
    provider_socket.end()
    await recv_task

    assert received == [("turn", False), ("turn the lights on", True)]
    assert len(errors) == 1
    assert isinstance(errors[0], TranscriptionConnectionError)
    assert channel.state is ChannelState.CLOSED
    provider_socket.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_deepgram_close_sends_close_stream(connect, provider_socket):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")
    errors = []

    async def on_error(error):
        errors.append(error)

    channel.on_error(on_error)
    await channel.open(TranscriptionOptions())
    await channel.close()
    await channel.close()

    provider_socket.send.assert_awaited_once_with(json.dumps({"type": "CloseStream"}))
    provider_socket.close.assert_awaited_once()
    assert channel._recv_task is None
    assert errors == []


@pytest.mark.asyncio
async def test_deepgram_send_failure_reports_error(connect, provider_socket):
    channel = DeepgramTranscriptionChannel(api_key="dg-key")
    errors = []

    async def on_error(error):
        errors.append(error)

    channel.on_error(on_error)
    await channel.open(TranscriptionOptions())
    provider_socket.send.side_effect = ConnectionClosed(None, None)

    await channel.send_audio(b"chunk")
    await channel.send_audio(b"chunk")

    assert len(errors) == 1
    assert channel.state is ChannelState.CLOSED
