"""
Pydantic models for the messages the relay exchanges.

This module defines structured data models for:
- outbound messages delivered to a browser socket or telephony sink
  ({transcript, is_final}, {llmResponse}, {error})
- inbound telephony control events (Twilio Media Streams: connected, start, media, stop, mark)
- transcript events delivered by the transcription provider
- Turn Engine results (free-text reply or action request)
"""

import base64
import binascii
import json
from typing import Any, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from voice_relay.config.constants import (
    EVENT_CONNECTED,
    EVENT_MARK,
    EVENT_MEDIA,
    EVENT_START,
    EVENT_STOP,
)
from voice_relay.errors import MalformedEventError


# Outbound Messages
class TranscriptMessage(BaseModel):
    """Partial or final transcript forwarded to the outbound sink."""

    transcript: str = Field(..., description="Utterance text as recognized so far")
    is_final: bool = Field(False, description="Whether the provider finalized this utterance")

    @field_validator("transcript")
    def validate_transcript(cls, v):
        """Empty transcripts are never forwarded."""
        if not v.strip():
            raise ValueError("Transcript cannot be empty")
        return v


class LLMResponseMessage(BaseModel):
    """Language model reply (or action status) forwarded to the outbound sink."""

    llmResponse: str = Field(..., description="Text produced for the user")


class ErrorMessage(BaseModel):
    """Diagnostic text forwarded when a pipeline step fails."""

    error: str = Field(..., description="Human readable failure description")


OutgoingMessage = Union[TranscriptMessage, LLMResponseMessage, ErrorMessage]


# Transcript Events
class TranscriptEvent(BaseModel):
    """One transcript event as delivered by the transcription provider."""

    text: str = Field("", description="Utterance text, possibly empty")
    is_final: bool = Field(False, description="Provider finalization flag")

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


# Turn Engine Results
class TextReply(BaseModel):
    """Free-text reply from the Turn Engine."""

    kind: Literal["text"] = "text"
    value: str = ""


class ActionRequest(BaseModel):
    """Structured action request from the Turn Engine."""

    kind: Literal["action"] = "action"
    name: str = Field(..., description="Registered action name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Arguments to validate against the action schema")


TurnResult = Union[TextReply, ActionRequest]


# Telephony Control Events
class TelephonyEvent(BaseModel):
    """Base model for Twilio Media Streams control events."""

    event: str = Field(..., description="Event type identifier")
    sequenceNumber: Optional[Union[str, int]] = None
    streamSid: Optional[str] = None


class ConnectedEvent(TelephonyEvent):
    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class StartMetadata(BaseModel):
    callSid: str = Field(..., description="Call identifier assigned by the telephony provider")
    streamSid: Optional[str] = None
    accountSid: Optional[str] = None
    tracks: list = Field(default_factory=list)
    mediaFormat: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("callSid")
    def validate_call_sid(cls, v):
        """Validate that the call identifier is not blank."""
        if not v.strip():
            raise ValueError("callSid cannot be empty")
        return v


class StartEvent(TelephonyEvent):
    event: Literal["start"]
    start: StartMetadata


class MediaPayload(BaseModel):
    payload: str = Field(..., description="Base64-encoded audio")
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None

    def decode(self) -> bytes:
        """
        Decode the base64 audio payload.

        Raises:
            MalformedEventError: If the payload is not valid base64
        """
        try:
            return base64.b64decode(self.payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedEventError(f"Invalid base64 media payload: {e}") from e


class MediaEvent(TelephonyEvent):
    event: Literal["media"]
    media: MediaPayload


class StopMetadata(BaseModel):
    callSid: Optional[str] = None
    accountSid: Optional[str] = None


class StopEvent(TelephonyEvent):
    event: Literal["stop"]
    stop: StopMetadata = Field(default_factory=StopMetadata)


class MarkEvent(TelephonyEvent):
    event: Literal["mark"]
    mark: Dict[str, Any] = Field(default_factory=dict)


TELEPHONY_EVENT_MODELS: Dict[str, Type[TelephonyEvent]] = {
    EVENT_CONNECTED: ConnectedEvent,
    EVENT_START: StartEvent,
    EVENT_MEDIA: MediaEvent,
    EVENT_STOP: StopEvent,
    EVENT_MARK: MarkEvent,
}


def parse_telephony_message(raw: str) -> Tuple[str, Optional[TelephonyEvent]]:
    """
    Parse one text frame from the telephony socket.

    Args:
        raw: The JSON text frame

    Returns:
        The event type and its validated model, or None as the model for
        event types this relay does not recognize

    Raises:
        MalformedEventError: If the frame is not JSON or fails validation
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedEventError(f"Invalid JSON from telephony stream: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        raise MalformedEventError("Telephony message has no event type")

    event_type = data["event"]
    model = TELEPHONY_EVENT_MODELS.get(event_type)
    if model is None:
        return event_type, None
    try:
        return event_type, model(**data)
    except ValidationError as e:
        raise MalformedEventError(f"Invalid {event_type} event: {e}") from e
