import pytest
from pydantic import ValidationError

from voice_relay.config.settings import Settings


def test_defaults():
    settings = Settings.from_env({})

    assert settings.host == "0.0.0.0"
    assert settings.port == 3000
    assert settings.log_level == "INFO"
    assert settings.deepgram_model == "nova"
    assert settings.openai_model == "gpt-3.5-turbo"
    assert settings.openai_temperature == 0.2
    assert settings.eleven_voice_id == "Rachel"
    assert settings.pipeline_timeout == 20.0
    assert settings.transcription_reconnect_attempts == 0
    assert settings.static_dir == "public"


def test_from_env_reads_variables():
    settings = Settings.from_env({
        "PORT": "8080",
        "LOG_LEVEL": "debug",
        "DEEPGRAM_API_KEY": "dg",
        "OPENAI_API_KEY": "sk",
        "OPENAI_TEMPERATURE": "0.7",
        "ELEVEN_API_KEY": "xi",
        "ELEVEN_VOICE_ID": "voice-1",
        "PUBLIC_HOST": "relay.example.com",
        "TRANSCRIPTION_RECONNECT_ATTEMPTS": "3",
    })

    assert settings.port == 8080
    assert settings.log_level == "DEBUG"
    assert settings.deepgram_api_key == "dg"
    assert settings.openai_api_key == "sk"
    assert settings.openai_temperature == 0.7
    assert settings.eleven_voice_id == "voice-1"
    assert settings.public_host == "relay.example.com"
    assert settings.transcription_reconnect_attempts == 3


def test_empty_variables_fall_back_to_defaults():
    settings = Settings.from_env({"PORT": "", "OPENAI_MODEL": ""})
    assert settings.port == 3000
    assert settings.openai_model == "gpt-3.5-turbo"


@pytest.mark.parametrize("environ", [
    {"LOG_LEVEL": "verbose"},
    {"PORT": "not-a-port"},
    {"PIPELINE_TIMEOUT": "0"},
    {"TRANSCRIPTION_RECONNECT_ATTEMPTS": "-1"},
])
def test_invalid_values(environ):
    with pytest.raises(ValidationError):
        Settings.from_env(environ)
