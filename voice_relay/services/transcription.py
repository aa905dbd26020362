"""
Streaming transcription channel.

A TranscriptionChannel owns one live connection to a streaming speech-to-text
provider for the lifetime of a Session. The base class implements the channel
state machine (idle -> connecting -> open -> closed) and the delivery rules;
provider adapters only implement connect/send/disconnect.

DeepgramTranscriptionChannel streams raw audio to Deepgram's live listen
endpoint over a WebSocket and turns its Results messages into TranscriptEvents.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

import websockets
from pydantic import BaseModel, Field
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from voice_relay.config.constants import DEEPGRAM_LISTEN_URL, DEFAULT_DEEPGRAM_MODEL, LOGGER_NAME
from voice_relay.errors import MalformedEventError, TranscriptionConnectionError
from voice_relay.models.message_schemas import TranscriptEvent

logger = logging.getLogger(LOGGER_NAME)

EventCallback = Callable[[TranscriptEvent], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB
WS_PING_INTERVAL = 5  # seconds
CONNECTION_TIMEOUT = 10  # seconds


class TranscriptionOptions(BaseModel):
    """Recognition options requested when the channel is opened."""

    model: str = DEFAULT_DEEPGRAM_MODEL
    punctuate: bool = True
    interim_results: bool = True
    endpointing: Optional[Union[bool, int]] = Field(False, description="False disables endpointing, an int sets the silence window in ms, None leaves the provider default")
    encoding: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TranscriptionChannel(ABC):
    """
    One streaming connection to a transcription provider.

    Contract:
    - open() may be awaited once; it raises TranscriptionConnectionError when the
      provider is unreachable or rejects the credentials
    - send_audio() is a no-op unless the channel is open
    - registered event callbacks are awaited one at a time, in provider order
    - a mid-stream failure is reported once through the error callback and the
      channel becomes closed; no reconnect happens here
    - close() is idempotent and cancels an open() still in progress
    """

    def __init__(self):
        self.state = ChannelState.IDLE
        self._event_callback: Optional[EventCallback] = None
        self._error_callback: Optional[ErrorCallback] = None
        self._open_task: Optional[asyncio.Future] = None
        self._error_reported = False

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    def on_event(self, callback: EventCallback) -> None:
        """Register the transcript event callback."""
        self._event_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        """Register the callback notified once on a mid-stream failure."""
        self._error_callback = callback

    async def open(self, options: TranscriptionOptions) -> None:
        """
        Establish the provider connection.

        Args:
            options: Recognition options for this stream

        Raises:
            TranscriptionConnectionError: If the connection cannot be established
                or the channel was closed before the connection completed
        """
        if self.state is not ChannelState.IDLE:
            raise TranscriptionConnectionError(f"Cannot open channel in state: {self.state.value}")

        self.state = ChannelState.CONNECTING
        self._open_task = asyncio.ensure_future(self._connect(options))
        try:
            await self._open_task
        except asyncio.CancelledError:
            if self.state is ChannelState.CLOSED:
                raise TranscriptionConnectionError("Channel closed before open completed") from None
            self.state = ChannelState.CLOSED
            raise
        except TranscriptionConnectionError:
            self.state = ChannelState.CLOSED
            raise
        finally:
            self._open_task = None

        if self.state is ChannelState.CLOSED:
            # close() raced with a connect that had already finished
            await self._disconnect()
            raise TranscriptionConnectionError("Channel closed before open completed")

        self.state = ChannelState.OPEN
        logger.info(f"{type(self).__name__} opened")

    async def send_audio(self, chunk: bytes) -> None:
        """Forward one audio chunk. Ignored unless the channel is open."""
        if self.state is not ChannelState.OPEN:
            logger.debug(f"Dropping {len(chunk)} byte audio chunk, channel is {self.state.value}")
            return
        try:
            await self._send(chunk)
        except TranscriptionConnectionError as e:
            await self._fail(e)

    async def close(self) -> None:
        """Close the channel. Safe to call repeatedly and before open completes."""
        if self.state is ChannelState.CLOSED:
            return
        previous = self.state
        self.state = ChannelState.CLOSED

        if self._open_task is not None and not self._open_task.done():
            logger.info("Cancelling pending transcription connection")
            self._open_task.cancel()

        if previous is ChannelState.OPEN:
            await self._disconnect()
        logger.info(f"{type(self).__name__} closed")

    async def _deliver(self, event: TranscriptEvent) -> None:
        if self.state is ChannelState.CLOSED or self._event_callback is None:
            return
        try:
            await self._event_callback(event)
        except Exception as e:
            logger.error(f"Error in transcript event callback: {e}", exc_info=True)

    async def _fail(self, error: Exception) -> None:
        """Report a mid-stream failure once and transition to closed."""
        if self.state is ChannelState.CLOSED:
            return
        previous = self.state
        self.state = ChannelState.CLOSED
        logger.warning(f"Transcription channel failed: {error}")
        await self._disconnect()

        # A failure while connecting surfaces as an open() error instead
        if previous is not ChannelState.OPEN or self._error_callback is None or self._error_reported:
            return
        self._error_reported = True
        try:
            await self._error_callback(error)
        except Exception as e:
            logger.error(f"Error in transcription error callback: {e}", exc_info=True)

    @abstractmethod
    async def _connect(self, options: TranscriptionOptions) -> None:
        """Open the provider connection, raising TranscriptionConnectionError on failure."""

    @abstractmethod
    async def _send(self, chunk: bytes) -> None:
        """Send one chunk, raising TranscriptionConnectionError if the connection is gone."""

    @abstractmethod
    async def _disconnect(self) -> None:
        """Release the provider connection. Must not raise."""


def build_listen_url(options: TranscriptionOptions, base_url: str = DEEPGRAM_LISTEN_URL) -> str:
    """Build the live listen URL with the recognition options as query parameters."""
    params = {}
    for key, value in options.model_dump().items():
        if value is None:
            continue
        params[key] = str(value).lower() if isinstance(value, bool) else value
    return f"{base_url}?{urlencode(params)}"


def parse_deepgram_message(raw: str) -> Optional[TranscriptEvent]:
    """
    Convert one Deepgram message into a TranscriptEvent.

    Returns:
        The transcript event, or None for non-transcript messages
        (Metadata, SpeechStarted, UtteranceEnd)

    Raises:
        MalformedEventError: If the message cannot be parsed
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedEventError(f"Invalid JSON from transcription provider: {e}") from e
    if not isinstance(data, dict):
        raise MalformedEventError("Transcription message is not an object")

    if data.get("type", "Results") != "Results":
        return None

    try:
        alternatives = data["channel"]["alternatives"]
        transcript = (alternatives[0].get("transcript") if alternatives else None) or ""
    except (KeyError, TypeError, AttributeError) as e:
        raise MalformedEventError(f"Unexpected transcription result shape: {e}") from e

    return TranscriptEvent(text=transcript, is_final=bool(data.get("is_final", False)))


class DeepgramTranscriptionChannel(TranscriptionChannel):
    """Deepgram live transcription over a WebSocket."""

    def __init__(self, api_key: str, connect_timeout: float = CONNECTION_TIMEOUT,
                 base_url: str = DEEPGRAM_LISTEN_URL):
        super().__init__()
        self.api_key = api_key
        self.connect_timeout = connect_timeout
        self.base_url = base_url
        self.ws = None
        self._recv_task: Optional[asyncio.Task] = None

    async def _connect(self, options: TranscriptionOptions) -> None:
        if not self.api_key:
            raise TranscriptionConnectionError("DEEPGRAM_API_KEY not configured")

        url = build_listen_url(options, self.base_url)
        headers = {"Authorization": f"Token {self.api_key}"}
        logger.info(f"Connecting to Deepgram with model: {options.model}")
        logger.debug(f"Deepgram URL: {url}")

        connection_start = time.time()
        try:
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    additional_headers=headers,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    compression=None,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TranscriptionConnectionError(
                f"Timeout connecting to Deepgram (after {self.connect_timeout}s)"
            ) from e
        except (OSError, WebSocketException) as e:
            raise TranscriptionConnectionError(f"Failed to connect to Deepgram: {e}") from e

        logger.debug(f"Deepgram connection established in {time.time() - connection_start:.2f} seconds")
        self._recv_task = asyncio.create_task(self._receive_loop())

    async def _send(self, chunk: bytes) -> None:
        try:
            await self.ws.send(chunk)
        except ConnectionClosed as e:
            raise TranscriptionConnectionError(f"Deepgram connection closed while sending audio: {e}") from e

    async def _receive_loop(self) -> None:
        """Read provider messages in order and deliver transcript events."""
        error: Optional[Exception] = None
        try:
            async for message in self.ws:
                if isinstance(message, bytes):
                    logger.debug(f"Ignoring {len(message)} byte binary message from Deepgram")
                    continue
                try:
                    event = parse_deepgram_message(message)
                except MalformedEventError as e:
                    logger.warning(f"Dropping malformed transcription message: {e}")
                    continue
                if event is not None:
                    await self._deliver(event)
        except ConnectionClosedOK:
            logger.info("Deepgram connection closed normally")
        except ConnectionClosed as e:
            error = e
        except OSError as e:
            error = e

        if self.state is not ChannelState.CLOSED:
            reason = f": {error}" if error else ""
            await self._fail(TranscriptionConnectionError(f"Deepgram stream ended{reason}"))

    async def _disconnect(self) -> None:
        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
                await ws.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Deepgram connection already gone during close: {e}")

        task, self._recv_task = self._recv_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
