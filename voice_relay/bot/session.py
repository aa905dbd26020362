"""
Session: one live audio source and its transcript pipeline.

A Session owns exactly one Transcription Channel at a time and drives the
state machine

    IDLE --open()--> LISTENING
    LISTENING --partial--> LISTENING
    LISTENING --final (non-empty)--> FINALIZING
    FINALIZING --pipeline done--> LISTENING
    LISTENING | FINALIZING --close()--> CLOSED

Each finalized utterance runs the pipeline: Turn Engine, then either the
Synthesis Client (text reply) or the action dispatcher (action request).
At most one pipeline runs per session; a finalized utterance arriving while
one is in flight waits in a single pending slot, and a newer one replaces it.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from voice_relay.bot.actions import ActionRegistry
from voice_relay.bot.sinks import OutboundSink
from voice_relay.config.constants import (
    LLM_EMPTY_TEXT,
    LLM_ERROR_TEXT,
    LOGGER_NAME,
    SYNTHESIS_ERROR_TEXT,
    TRANSCRIPTION_LOST_TEXT,
)
from voice_relay.errors import (
    ActionArgumentsError,
    SynthesisError,
    TranscriptionConnectionError,
    TurnEngineError,
    UnknownActionError,
)
from voice_relay.models.message_schemas import (
    ActionRequest,
    ErrorMessage,
    LLMResponseMessage,
    OutgoingMessage,
    TranscriptEvent,
    TranscriptMessage,
)
from voice_relay.services.synthesis import SynthesisClient
from voice_relay.services.transcription import TranscriptionChannel, TranscriptionOptions
from voice_relay.services.turn_engine import TurnEngine

if TYPE_CHECKING:
    from voice_relay.models.session_registry import SessionRegistry

logger = logging.getLogger(LOGGER_NAME)

ChannelFactory = Callable[[], TranscriptionChannel]


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class Session:
    """
    One browser tab or one telephony call leg.

    Args:
        key: Socket identity (browser) or call identifier (telephony)
        channel_factory: Builds a fresh Transcription Channel; called on open and on reconnect
        turn_engine: Shared Turn Engine
        synthesizer: Shared Synthesis Client
        actions: Registry used to dispatch action requests
        sink: Outbound sink, owned by the transport layer
        options: Recognition options for the transcription channel
        registry: Registry holding this session, released on close
        pipeline_timeout: Seconds allowed per Turn Engine, synthesis or action call
        reconnect_attempts: Channel reopen attempts after a mid-stream failure
        reconnect_delay: Base delay between reopen attempts, scaled by attempt number
    """

    def __init__(
        self,
        key: str,
        channel_factory: ChannelFactory,
        turn_engine: TurnEngine,
        synthesizer: SynthesisClient,
        actions: ActionRegistry,
        sink: OutboundSink,
        options: Optional[TranscriptionOptions] = None,
        registry: Optional["SessionRegistry"] = None,
        pipeline_timeout: Optional[float] = 20.0,
        reconnect_attempts: int = 0,
        reconnect_delay: float = 2.0,
    ):
        self.key = key
        self.channel_factory = channel_factory
        self.turn_engine = turn_engine
        self.synthesizer = synthesizer
        self.actions = actions
        self.sink = sink
        self.options = options or TranscriptionOptions()
        self.registry = registry
        self.pipeline_timeout = pipeline_timeout
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay

        self.state = SessionState.IDLE
        self.channel: Optional[TranscriptionChannel] = None
        self.pending_utterance: Optional[str] = None
        self._pipeline_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_count = 0

    @property
    def pipeline_running(self) -> bool:
        return self._pipeline_task is not None and not self._pipeline_task.done()

    def _new_channel(self) -> TranscriptionChannel:
        channel = self.channel_factory()
        channel.on_event(self.handle_event)
        channel.on_error(self._on_channel_error)
        self.channel = channel
        return channel

    async def open(self) -> None:
        """
        Open the transcription channel and start listening.

        Raises:
            TranscriptionConnectionError: If the channel cannot be opened
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session {self.key} cannot be opened in state {self.state.value}")

        channel = self._new_channel()
        await channel.open(self.options)
        if self.state is SessionState.IDLE:
            self.state = SessionState.LISTENING
        logger.info(f"[{self.key}] Session listening")

    async def send_audio(self, chunk: bytes) -> None:
        """Forward inbound audio to the transcription channel."""
        if self.state is SessionState.CLOSED or self.channel is None:
            return
        await self.channel.send_audio(chunk)

    async def handle_event(self, event: TranscriptEvent) -> None:
        """Apply one transcript event, in provider order."""
        if self.state is SessionState.CLOSED or event.is_empty:
            return

        await self._emit(TranscriptMessage(transcript=event.text, is_final=event.is_final))
        if not event.is_final:
            return

        logger.info(f"[{self.key}] Final transcript => {event.text}")
        if self.pipeline_running:
            if self.pending_utterance is not None:
                logger.info(f"[{self.key}] Superseding pending utterance: {self.pending_utterance}")
            self.pending_utterance = event.text
            return

        self.state = SessionState.FINALIZING
        self._pipeline_task = asyncio.create_task(self._run_pipelines(event.text))

    async def wait_idle(self) -> None:
        """Wait until the in-flight pipeline and any pending utterance have finished."""
        task = self._pipeline_task
        if task is not None:
            await task

    async def close(self) -> None:
        """
        Close the session and its transcription channel. Idempotent.

        An in-flight pipeline is not cancelled; its results are discarded.
        """
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.pending_utterance = None

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()

        if self.channel is not None:
            await self.channel.close()
        if self.registry is not None:
            await self.registry.remove(self.key, self)
        logger.info(f"[{self.key}] Session closed")

    async def _run_pipelines(self, utterance: str) -> None:
        next_utterance: Optional[str] = utterance
        try:
            while next_utterance is not None and self.state is not SessionState.CLOSED:
                try:
                    await self._run_pipeline(next_utterance)
                except Exception as e:
                    logger.error(f"[{self.key}] Unexpected pipeline error: {e}", exc_info=True)
                    await self._emit(ErrorMessage(error=LLM_ERROR_TEXT))
                next_utterance, self.pending_utterance = self.pending_utterance, None
        finally:
            if self.state is SessionState.FINALIZING:
                self.state = SessionState.LISTENING

    async def _run_pipeline(self, utterance: str) -> None:
        try:
            result = await asyncio.wait_for(self.turn_engine.submit(utterance), self.pipeline_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[{self.key}] Language model timed out after {self.pipeline_timeout}s")
            await self._reply(LLM_ERROR_TEXT)
            return
        except TurnEngineError as e:
            logger.error(f"[{self.key}] Language model error: {e}")
            await self._reply(LLM_ERROR_TEXT)
            return

        if self.state is SessionState.CLOSED:
            logger.debug(f"[{self.key}] Discarding language model result for closed session")
            return

        if isinstance(result, ActionRequest):
            await self._dispatch_action(result)
            return

        reply = result.value
        logger.info(f"[{self.key}] LLM text: {reply or LLM_EMPTY_TEXT}")
        if not reply:
            await self._emit(LLMResponseMessage(llmResponse=LLM_EMPTY_TEXT))
            return
        await self._reply(reply)

    async def _reply(self, reply: str) -> None:
        """Send a text reply, then its synthesized audio."""
        await self._emit(LLMResponseMessage(llmResponse=reply))
        if self.state is SessionState.CLOSED:
            return

        try:
            audio = await asyncio.wait_for(self.synthesizer.synthesize(reply), self.pipeline_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[{self.key}] Speech synthesis timed out after {self.pipeline_timeout}s")
            await self._emit(ErrorMessage(error=SYNTHESIS_ERROR_TEXT))
            return
        except SynthesisError as e:
            logger.error(f"[{self.key}] Speech synthesis error: {e}")
            await self._emit(ErrorMessage(error=SYNTHESIS_ERROR_TEXT))
            return

        if self.state is SessionState.CLOSED:
            logger.debug(f"[{self.key}] Discarding {len(audio)} bytes of audio for closed session")
            return
        await self.sink.send_bytes(audio)

    async def _dispatch_action(self, request: ActionRequest) -> None:
        try:
            status = await asyncio.wait_for(self.actions.dispatch(request), self.pipeline_timeout)
        except UnknownActionError as e:
            logger.warning(f"[{self.key}] {e}")
            await self._emit(ErrorMessage(error=f"Unsupported action: {request.name}"))
            return
        except ActionArgumentsError as e:
            logger.warning(f"[{self.key}] {e}")
            await self._emit(ErrorMessage(error=f"Invalid arguments for action: {request.name}"))
            return
        except asyncio.TimeoutError:
            logger.error(f"[{self.key}] Action {request.name} timed out after {self.pipeline_timeout}s")
            await self._emit(ErrorMessage(error=f"Action timed out: {request.name}"))
            return

        logger.info(f"[{self.key}] Action {request.name} => {status}")
        await self._emit(LLMResponseMessage(llmResponse=status))

    async def _emit(self, message: OutgoingMessage) -> None:
        if self.state is SessionState.CLOSED:
            logger.debug(f"[{self.key}] Discarding message for closed session: {message}")
            return
        await self.sink.send_json(message.model_dump())

    async def _on_channel_error(self, error: Exception) -> None:
        if self.state is SessionState.CLOSED:
            return
        logger.warning(f"[{self.key}] Transcription channel lost: {error}")
        await self._emit(ErrorMessage(error=TRANSCRIPTION_LOST_TEXT))

        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._reconnect_count < self.reconnect_attempts:
            self._reconnect_task = asyncio.create_task(self._reconnect())
        else:
            logger.info(f"[{self.key}] Continuing without transcription")

    async def _reconnect(self) -> None:
        while self._reconnect_count < self.reconnect_attempts:
            self._reconnect_count += 1
            delay = self.reconnect_delay * self._reconnect_count
            logger.info(
                f"[{self.key}] Reconnecting transcription (attempt "
                f"{self._reconnect_count}/{self.reconnect_attempts}) in {delay} seconds"
            )
            await asyncio.sleep(delay)
            if self.state is SessionState.CLOSED:
                return

            channel = self._new_channel()
            try:
                await channel.open(self.options)
            except TranscriptionConnectionError as e:
                logger.warning(f"[{self.key}] Reconnect failed: {e}")
                continue

            if self.state is SessionState.CLOSED:
                await channel.close()
                return
            self._reconnect_count = 0
            logger.info(f"[{self.key}] Transcription reconnected")
            return
        logger.error(f"[{self.key}] Giving up on transcription after {self.reconnect_attempts} attempts")
