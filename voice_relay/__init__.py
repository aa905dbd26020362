"""
Voice Relay - real-time speech-to-text, language model and speech synthesis relay

This application accepts live audio from a browser microphone or a telephone call,
streams it to a speech-to-text provider, and for every finalized utterance asks a
language model for a reply that is either spoken back or executed as an action.

Architecture Overview:
- FastAPI server exposing WebSocket endpoints for browser and telephony audio
- Deepgram streaming transcription, one channel per session
- OpenAI chat completions as the turn engine, with function tools for actions
- ElevenLabs speech synthesis for spoken replies
- Twilio outbound calls whose media stream is relayed back into the server

Key Components:
- audio_bridge: Relays socket audio into Sessions and routes telephony events
- bot: Session state machine, outbound sinks and the action registry
- config: Settings, constants, and logging setup
- handlers: Telephony media stream event handlers
- models: Message schemas and the call-keyed session registry
- services: Transcription, turn engine, synthesis and call control clients

Getting Started:
1. Set up environment variables:
   - DEEPGRAM_API_KEY, OPENAI_API_KEY, ELEVEN_API_KEY: provider credentials
   - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_CALLER_ID, PUBLIC_HOST: outbound calls
   - PORT: Port to run the server on (default 3000)
   - LOG_LEVEL: Logging level (default INFO)

2. Start the server:
   ```bash
   python run.py
   ```

3. Open http://localhost:3000/ for the browser client, or GET /call?to=+E164Number
   to place a call.
"""
