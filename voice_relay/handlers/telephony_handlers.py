"""
Handles control events from the telephony media stream.

Twilio Media Streams sends JSON text frames over the call leg's socket:
- connected: the socket is ready, no call identifier yet
- start: carries the callSid; a Session is created, registered and opened
- media: base64 audio forwarded verbatim to the call's Session
- stop: the call ended; the Session is removed from the registry and closed
- mark: playback marker acknowledgements

Every handler has the same signature so the audio bridge can route by event type.
None of them raise for a bad or out-of-order event: the event is logged and dropped.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from voice_relay.bot.session import Session
from voice_relay.bot.sinks import LoggingSink
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.errors import (
    DuplicateSessionError,
    MalformedEventError,
    SessionNotFoundError,
    TranscriptionConnectionError,
)
from voice_relay.models.message_schemas import (
    ConnectedEvent,
    MarkEvent,
    MediaEvent,
    StartEvent,
    StopEvent,
    TelephonyEvent,
)

if TYPE_CHECKING:
    from voice_relay.audio_bridge import AudioBridge

logger = logging.getLogger(LOGGER_NAME)


@dataclass
class CallLeg:
    """Per-socket state: which call this media stream belongs to."""

    call_id: Optional[str] = None
    session: Optional[Session] = None


TelephonyHandler = Callable[[TelephonyEvent, CallLeg, "AudioBridge"], Awaitable[None]]


async def handle_connected(event: ConnectedEvent, leg: CallLeg, bridge: "AudioBridge") -> None:
    logger.info(f"Telephony media stream connected (protocol={event.protocol}, version={event.version})")


async def handle_call_start(event: StartEvent, leg: CallLeg, bridge: "AudioBridge") -> None:
    """
    Handle the start event: create, register and open the call's Session.

    A duplicate call identifier is a provider replay; the live session is kept and
    the event dropped. If the transcription channel cannot be opened the new
    session is torn down again.

    Args:
        event: The validated start event carrying the callSid
        leg: State of the socket the event arrived on
        bridge: The audio bridge owning the registry and the shared clients
    """
    call_id = event.start.callSid
    if leg.session is not None:
        logger.warning(f"Ignoring second start event on leg {leg.call_id} (new SID={call_id})")
        return

    session = bridge.build_session(
        call_id,
        LoggingSink(f"Twilio:{call_id}"),
        bridge.telephony_options(),
        registry=bridge.registry,
    )
    try:
        await bridge.registry.create(call_id, session)
    except DuplicateSessionError as e:
        logger.error(f"{e}; dropping start event")
        return

    leg.call_id = call_id
    leg.session = session
    logger.info(f"Twilio call started, SID={call_id}")

    try:
        await session.open()
    except TranscriptionConnectionError as e:
        logger.error(f"Could not open transcription for call {call_id}: {e}")
        await session.close()
        leg.session = None


async def handle_media(event: MediaEvent, leg: CallLeg, bridge: "AudioBridge") -> None:
    """Forward one media payload to the call's Session."""
    if leg.call_id is None:
        logger.debug("Dropping media received before start")
        return

    try:
        session = await bridge.registry.lookup(leg.call_id)
    except SessionNotFoundError:
        logger.debug(f"Dropping media for inactive call: {leg.call_id}")
        return

    try:
        audio = event.media.decode()
    except MalformedEventError as e:
        logger.warning(f"Dropping media for call {leg.call_id}: {e}")
        return

    await session.send_audio(audio)


async def handle_call_stop(event: StopEvent, leg: CallLeg, bridge: "AudioBridge") -> None:
    """Remove and close the Session for the stopped call. Unknown calls are a no-op."""
    call_id = event.stop.callSid or leg.call_id
    logger.info(f"Twilio call stopped, SID={call_id}")
    if not call_id:
        return

    session = await bridge.registry.remove(call_id)
    if session is None:
        logger.info(f"No active session for stopped call: {call_id}")
        return

    await session.close()
    if leg.session is session:
        leg.session = None


async def handle_mark(event: MarkEvent, leg: CallLeg, bridge: "AudioBridge") -> None:
    logger.debug(f"Mark received for call {leg.call_id}: {event.mark.get('name')}")
