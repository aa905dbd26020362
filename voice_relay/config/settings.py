"""
Environment-based settings for the voice relay.

Settings are read once by the entry point (after the optional .env file has been
loaded) and handed to the components that need them. Nothing below the entry
point reads the environment directly.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from voice_relay.config.constants import (
    DEFAULT_DEEPGRAM_MODEL,
    DEFAULT_ELEVEN_VOICE_ID,
    DEFAULT_OPENAI_MODEL,
)


class Settings(BaseModel):
    """Runtime configuration for the server and its provider adapters."""

    host: str = Field("0.0.0.0", description="Interface the HTTP server binds to")
    port: int = Field(3000, description="Port the HTTP server listens on")
    log_level: str = Field("INFO", description="Application log level")
    public_host: str = Field(
        "example-ngrok.ngrok-free.app",
        description="Public hostname the telephony provider uses to reach this server",
    )
    static_dir: str = Field("public", description="Directory of browser assets served at /")

    deepgram_api_key: str = ""
    deepgram_model: str = DEFAULT_DEEPGRAM_MODEL

    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_temperature: float = 0.2

    eleven_api_key: str = ""
    eleven_voice_id: str = DEFAULT_ELEVEN_VOICE_ID

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_caller_id: str = ""

    pipeline_timeout: float = Field(20.0, gt=0, description="Seconds allowed for one language model or synthesis call")
    transcription_connect_timeout: float = Field(10.0, gt=0)
    transcription_reconnect_attempts: int = Field(0, ge=0)
    transcription_reconnect_delay: float = Field(2.0, ge=0)

    @field_validator("log_level")
    def validate_log_level(cls, v):
        """Normalize the log level name."""
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Unset or empty variables fall back to the field defaults.

        Args:
            environ: Mapping to read from, defaults to os.environ

        Returns:
            Settings: The validated settings
        """
        env = os.environ if environ is None else environ
        mapping = {
            "host": "HOST",
            "port": "PORT",
            "log_level": "LOG_LEVEL",
            "public_host": "PUBLIC_HOST",
            "static_dir": "STATIC_DIR",
            "deepgram_api_key": "DEEPGRAM_API_KEY",
            "deepgram_model": "DEEPGRAM_MODEL",
            "openai_api_key": "OPENAI_API_KEY",
            "openai_model": "OPENAI_MODEL",
            "openai_temperature": "OPENAI_TEMPERATURE",
            "eleven_api_key": "ELEVEN_API_KEY",
            "eleven_voice_id": "ELEVEN_VOICE_ID",
            "twilio_account_sid": "TWILIO_ACCOUNT_SID",
            "twilio_auth_token": "TWILIO_AUTH_TOKEN",
            "twilio_caller_id": "TWILIO_CALLER_ID",
            "pipeline_timeout": "PIPELINE_TIMEOUT",
            "transcription_connect_timeout": "TRANSCRIPTION_CONNECT_TIMEOUT",
            "transcription_reconnect_attempts": "TRANSCRIPTION_RECONNECT_ATTEMPTS",
            "transcription_reconnect_delay": "TRANSCRIPTION_RECONNECT_DELAY",
        }
        values = {field: env[name] for field, name in mapping.items() if env.get(name)}
        return cls(**values)
