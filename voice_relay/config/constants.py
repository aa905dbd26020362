"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for configuration values and making it easier to
maintain consistent naming throughout the codebase.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_relay"

# Endpoint paths
BROWSER_STT_PATH = "/stt"
TELEPHONY_AUDIO_PATH = "/twilio-audio"
OUTBOUND_VOICE_PATH = "/outbound-voice"

# Transcription provider defaults
DEFAULT_DEEPGRAM_MODEL = "nova"
DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

# Language model defaults
DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"
OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful home assistant. Provide short, concise answers. "
    "You can call the function setHueLights when a user wants to control lights. "
    "If they only want info or a chat, reply in text."
)

# Speech synthesis defaults
DEFAULT_ELEVEN_VOICE_ID = "Rachel"
ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

# Telephony media format (Twilio Media Streams)
TELEPHONY_ENCODING = "mulaw"
TELEPHONY_SAMPLE_RATE = 8000

# Telephony control event types
EVENT_CONNECTED = "connected"
EVENT_START = "start"
EVENT_MEDIA = "media"
EVENT_STOP = "stop"
EVENT_MARK = "mark"

# User-visible fallback texts sent to the outbound sink
LLM_ERROR_TEXT = "Error from LLM."
LLM_EMPTY_TEXT = "No response from LLM."
SYNTHESIS_ERROR_TEXT = "Speech synthesis failed."
TRANSCRIPTION_LOST_TEXT = "Transcription connection lost."

# WebSocket close code used when the transcription provider cannot be reached
WS_CLOSE_INTERNAL_ERROR = 1011
