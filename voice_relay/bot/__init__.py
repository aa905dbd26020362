"""
Bot module: the per-session voice pipeline.

Key components:
- Session: state machine for one live audio source (browser tab or call leg).
  Owns a Transcription Channel, forwards partial/final transcripts to its
  outbound sink, and on each finalized utterance runs the Turn Engine followed
  by speech synthesis or action dispatch.
- OutboundSink, WebSocketSink, LoggingSink: destinations for session output.
- ActionRegistry: the actions the language model may request, with pydantic
  argument schemas advertised as function tools.

Usage examples:
```python
from voice_relay.bot import LoggingSink, Session, build_default_registry
from voice_relay.services.transcription import DeepgramTranscriptionChannel

session = Session(
    key="CA123",
    channel_factory=lambda: DeepgramTranscriptionChannel(api_key),
    turn_engine=turn_engine,
    synthesizer=synthesizer,
    actions=build_default_registry(),
    sink=LoggingSink("CA123"),
)
await session.open()
await session.send_audio(chunk)
await session.close()
```
"""

from voice_relay.bot.actions import Action, ActionRegistry, build_default_registry
from voice_relay.bot.session import Session, SessionState
from voice_relay.bot.sinks import LoggingSink, OutboundSink, WebSocketSink

__all__ = [
    "Action",
    "ActionRegistry",
    "build_default_registry",
    "Session",
    "SessionState",
    "LoggingSink",
    "OutboundSink",
    "WebSocketSink",
]
