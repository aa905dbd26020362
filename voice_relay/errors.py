"""
Exception taxonomy for the voice relay.

Adapters translate library errors (aiohttp, websockets, JSON decoding) into these
types at their boundary so the session pipeline only ever handles the classes below.
None of them is fatal to the process.
"""


class VoiceRelayError(Exception):
    """Base class for all voice relay errors."""


class TranscriptionConnectionError(VoiceRelayError, ConnectionError):
    """The transcription channel could not be established or was lost."""


class TurnEngineError(VoiceRelayError):
    """The language model call failed or returned a malformed response."""


class SynthesisError(VoiceRelayError):
    """The speech synthesis call failed."""


class DuplicateSessionError(VoiceRelayError):
    """A session is already registered for the call identifier."""

    def __init__(self, call_id: str):
        super().__init__(f"Session already registered for call: {call_id}")
        self.call_id = call_id


class SessionNotFoundError(VoiceRelayError, KeyError):
    """No session is registered for the call identifier."""

    def __init__(self, call_id: str):
        super().__init__(f"No session registered for call: {call_id}")
        self.call_id = call_id

    def __str__(self):
        return self.args[0]


class MalformedEventError(VoiceRelayError):
    """A provider or control payload could not be parsed."""


class UnknownActionError(VoiceRelayError):
    """The language model requested an action that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown action: {name}")
        self.name = name


class ActionArgumentsError(VoiceRelayError):
    """The arguments for an action did not match its schema."""
