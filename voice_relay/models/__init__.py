"""
Models module for message schemas and session bookkeeping.

Key components:
- message_schemas: Pydantic models for outbound socket messages
  ({"transcript", "is_final"}, {"llmResponse"}, {"error"}), transcript events,
  turn results, and the Twilio Media Streams control events.
- session_registry: The call-identifier keyed registry of live telephony Sessions.

Usage examples:
```python
from voice_relay.models import SessionRegistry, parse_telephony_message

registry = SessionRegistry()
event_type, event = parse_telephony_message(raw_text)
if event_type == "start":
    await registry.create(event.start.callSid, session)
```
"""

from voice_relay.models.message_schemas import (
    ActionRequest,
    ErrorMessage,
    LLMResponseMessage,
    OutgoingMessage,
    TelephonyEvent,
    TextReply,
    TranscriptEvent,
    TranscriptMessage,
    TurnResult,
    parse_telephony_message,
)
from voice_relay.models.session_registry import SessionRegistry
