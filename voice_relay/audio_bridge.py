"""
Audio bridge between inbound audio sockets and per-session pipelines.

This module implements the server side of both integrations:
- browser: one /stt socket carries raw microphone audio in and transcripts,
  replies and synthesized audio out; one Session lives exactly as long as the socket
- telephony: one /twilio-audio socket per call leg carries Media Streams control
  events; sessions are created on start, looked up by call identifier in the
  SessionRegistry, and torn down on stop or when the socket closes

The AudioBridge holds the provider capabilities shared by all sessions (one Turn
Engine, one Synthesis Client, one action registry) and builds a fresh
Transcription Channel for each Session.
"""

import logging
import uuid
from typing import Callable, Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from voice_relay.bot.actions import ActionRegistry, build_default_registry
from voice_relay.bot.session import Session
from voice_relay.bot.sinks import OutboundSink, WebSocketSink
from voice_relay.config.constants import (
    EVENT_CONNECTED,
    EVENT_MARK,
    EVENT_MEDIA,
    EVENT_START,
    EVENT_STOP,
    LOGGER_NAME,
    TELEPHONY_ENCODING,
    TELEPHONY_SAMPLE_RATE,
    WS_CLOSE_INTERNAL_ERROR,
)
from voice_relay.config.settings import Settings
from voice_relay.errors import MalformedEventError, TranscriptionConnectionError
from voice_relay.handlers.telephony_handlers import (
    CallLeg,
    TelephonyHandler,
    handle_call_start,
    handle_call_stop,
    handle_connected,
    handle_mark,
    handle_media,
)
from voice_relay.models.message_schemas import parse_telephony_message
from voice_relay.models.session_registry import SessionRegistry
from voice_relay.services.synthesis import ElevenLabsSynthesisClient, SynthesisClient
from voice_relay.services.transcription import (
    DeepgramTranscriptionChannel,
    TranscriptionChannel,
    TranscriptionOptions,
)
from voice_relay.services.turn_engine import OpenAITurnEngine, TurnEngine

logger = logging.getLogger(LOGGER_NAME)


class AudioBridge:
    """
    Relays audio from browser and telephony sockets into Sessions.

    Telephony control events are routed to a handler function based on the
    message's "event" field.
    """

    def __init__(
        self,
        channel_factory: Callable[[], TranscriptionChannel],
        turn_engine: TurnEngine,
        synthesizer: SynthesisClient,
        actions: Optional[ActionRegistry] = None,
        registry: Optional[SessionRegistry] = None,
        transcription_model: Optional[str] = None,
        pipeline_timeout: Optional[float] = 20.0,
        reconnect_attempts: int = 0,
        reconnect_delay: float = 2.0,
    ):
        self.channel_factory = channel_factory
        self.turn_engine = turn_engine
        self.synthesizer = synthesizer
        self.actions = actions if actions is not None else build_default_registry()
        self.registry = registry if registry is not None else SessionRegistry()
        self.transcription_model = transcription_model
        self.pipeline_timeout = pipeline_timeout
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay

        self.handlers: Dict[str, TelephonyHandler] = {
            EVENT_CONNECTED: handle_connected,
            EVENT_START: handle_call_start,
            EVENT_MEDIA: handle_media,
            EVENT_STOP: handle_call_stop,
            EVENT_MARK: handle_mark,
        }

    @classmethod
    def from_settings(cls, settings: Settings, actions: Optional[ActionRegistry] = None) -> "AudioBridge":
        """Build the bridge and its provider clients from settings."""
        actions = actions if actions is not None else build_default_registry()
        turn_engine = OpenAITurnEngine(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            tools=actions.tool_schemas(),
            timeout=settings.pipeline_timeout,
        )
        synthesizer = ElevenLabsSynthesisClient(
            api_key=settings.eleven_api_key,
            voice_id=settings.eleven_voice_id,
            timeout=settings.pipeline_timeout,
        )

        def channel_factory() -> TranscriptionChannel:
            return DeepgramTranscriptionChannel(
                api_key=settings.deepgram_api_key,
                connect_timeout=settings.transcription_connect_timeout,
            )

        return cls(
            channel_factory=channel_factory,
            turn_engine=turn_engine,
            synthesizer=synthesizer,
            actions=actions,
            transcription_model=settings.deepgram_model,
            pipeline_timeout=settings.pipeline_timeout,
            reconnect_attempts=settings.transcription_reconnect_attempts,
            reconnect_delay=settings.transcription_reconnect_delay,
        )

    def _base_options(self) -> Dict[str, object]:
        return {"model": self.transcription_model} if self.transcription_model else {}

    def browser_options(self) -> TranscriptionOptions:
        return TranscriptionOptions(
            punctuate=True, interim_results=True, endpointing=False, **self._base_options()
        )

    def telephony_options(self) -> TranscriptionOptions:
        return TranscriptionOptions(
            punctuate=True,
            interim_results=True,
            endpointing=None,
            encoding=TELEPHONY_ENCODING,
            sample_rate=TELEPHONY_SAMPLE_RATE,
            **self._base_options(),
        )

    def build_session(self, key: str, sink: OutboundSink, options: TranscriptionOptions,
                      registry: Optional[SessionRegistry] = None) -> Session:
        return Session(
            key=key,
            channel_factory=self.channel_factory,
            turn_engine=self.turn_engine,
            synthesizer=self.synthesizer,
            actions=self.actions,
            sink=sink,
            options=options,
            registry=registry,
            pipeline_timeout=self.pipeline_timeout,
            reconnect_attempts=self.reconnect_attempts,
            reconnect_delay=self.reconnect_delay,
        )

    async def _close_socket(self, websocket: WebSocket, code: int = 1000, reason: Optional[str] = None) -> None:
        if (
            websocket.application_state == WebSocketState.CONNECTED
            and websocket.client_state == WebSocketState.CONNECTED
        ):
            try:
                await websocket.close(code=code, reason=reason)
            except RuntimeError as e:
                logger.debug(f"Socket already closed: {e}")

    async def handle_browser(self, websocket: WebSocket) -> None:
        """Handle a browser microphone socket throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        This method:
        1. Accepts the connection and opens a Session bound to it
        2. Forwards each binary frame to the Session as audio
        3. Closes the Session when the socket goes away

        If the transcription provider cannot be reached, the socket is closed
        with code 1011.
        """
        await websocket.accept()
        key = f"browser-{uuid.uuid4().hex[:8]}"
        logger.info(f"Browser connected ({key})")
        session = self.build_session(key, WebSocketSink(websocket), self.browser_options())

        try:
            try:
                await session.open()
            except TranscriptionConnectionError as e:
                logger.error(f"Error creating transcription connection for {key}: {e}")
                await self._close_socket(websocket, WS_CLOSE_INTERNAL_ERROR, "Transcription init failed")
                return

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                chunk = message.get("bytes")
                if chunk:
                    await session.send_audio(chunk)
                elif message.get("text") is not None:
                    logger.debug(f"Ignoring text frame from browser {key}")

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Error in browser connection {key}: {e}", exc_info=True)
        finally:
            await session.close()
            await self._close_socket(websocket)
            logger.info(f"Browser connection closed ({key})")

    async def handle_telephony(self, websocket: WebSocket) -> None:
        """Handle a telephony media stream socket throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        Each text frame is parsed as a control event and routed to its handler.
        Binary frames, malformed frames and unrecognized event types are logged and ignored.
        When the socket closes, the leg's Session (if any) is removed and closed.
        """
        await websocket.accept()
        logger.info("Telephony media stream connected")
        leg = CallLeg()

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Telephony media stream disconnected (SID={leg.call_id})")
                    break
                data = message.get("text")
                if data is None:
                    logger.warning("Dropping non-text telephony frame")
                    continue
                try:
                    event_type, event = parse_telephony_message(data)
                except MalformedEventError as e:
                    logger.warning(f"Dropping malformed telephony message: {e}")
                    continue

                handler = self.handlers.get(event_type)
                if handler is None or event is None:
                    logger.warning(f"Unhandled telephony event: {event_type}")
                    continue
                await handler(event, leg, self)

        except WebSocketDisconnect:
            logger.info(f"Telephony media stream disconnected (SID={leg.call_id})")
        except Exception as e:
            logger.error(f"Error in telephony connection: {e}", exc_info=True)
        finally:
            if leg.session is not None:
                await leg.session.close()
            await self._close_socket(websocket)
            logger.info("Telephony media stream closed")

    async def close(self) -> None:
        """Close every registered session and release the shared provider clients."""
        for call_id in self.registry.call_ids():
            session = await self.registry.remove(call_id)
            if session is not None:
                await session.close()
        await self.turn_engine.close()
        await self.synthesizer.close()
