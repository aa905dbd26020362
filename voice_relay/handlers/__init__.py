"""
Handlers module for telephony media stream control events.

Key components:
- telephony_handlers: One handler per Twilio Media Streams event type
  (connected, start, media, stop, mark). The start handler creates and registers
  the call's Session, media forwards audio to it, stop removes and closes it.

Usage examples:
```python
from voice_relay.handlers.telephony_handlers import CallLeg, handle_call_start
from voice_relay.models.message_schemas import parse_telephony_message

leg = CallLeg()
event_type, event = parse_telephony_message(raw_text)
if event_type == "start":
    await handle_call_start(event, leg, audio_bridge)
```
"""
