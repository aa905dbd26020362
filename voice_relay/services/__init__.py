"""
Services module for external provider integrations.

Key components:
- transcription: Streaming speech-to-text channels (Deepgram live WebSocket).
- turn_engine: Maps a finalized utterance to a text reply or an action request
  (OpenAI chat completions with function tools).
- synthesis: Text to speech (ElevenLabs, MP3 bytes).
- call_control: Outbound calls and stream TwiML (Twilio).

Each provider sits behind a small abstract class so Sessions can be driven by
fakes in tests.
"""
