"""
FastAPI server for the real-time voice relay.

This module initializes and configures the FastAPI application that exposes:
- /stt: browser microphone WebSocket (audio in, transcripts/replies/audio out)
- /twilio-audio: telephony media stream WebSocket (one per call leg)
- /call: places an outbound call whose audio is streamed back to /twilio-audio
- /outbound-voice: TwiML fetched by the telephony provider when the call connects
- /health and /info: monitoring and API information
- static browser assets, when the static directory exists
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import dotenv
from fastapi import FastAPI, Query, Response, WebSocket
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from twilio.base.exceptions import TwilioException

from voice_relay.audio_bridge import AudioBridge
from voice_relay.config.constants import BROWSER_STT_PATH, OUTBOUND_VOICE_PATH, TELEPHONY_AUDIO_PATH
from voice_relay.config.logging_config import configure_logging
from voice_relay.config.settings import Settings
from voice_relay.services.call_control import TwilioCallControl

# Load environment variables from .env file if it exists
env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)

settings = Settings.from_env()
logger = configure_logging(settings.log_level)

audio_bridge = AudioBridge.from_settings(settings)
call_control = TwilioCallControl(
    account_sid=settings.twilio_account_sid,
    auth_token=settings.twilio_auth_token,
    caller_id=settings.twilio_caller_id,
    public_host=settings.public_host,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down, closing active sessions")
    await audio_bridge.close()


app = FastAPI(
    title="Voice Relay",
    description="Streams live audio to speech-to-text and answers finalized utterances with a language model and synthesized speech",
    version="1.0.0",
    lifespan=lifespan,
)


@app.websocket(BROWSER_STT_PATH)
async def browser_stt_endpoint(websocket: WebSocket):
    """WebSocket endpoint for a browser microphone.

    Inbound binary frames are raw audio. Outbound text frames are
    {"transcript", "is_final"}, {"llmResponse"} or {"error"} JSON messages,
    interleaved with binary frames of synthesized audio.
    """
    await audio_bridge.handle_browser(websocket)


@app.websocket(TELEPHONY_AUDIO_PATH)
async def telephony_audio_endpoint(websocket: WebSocket):
    """WebSocket endpoint for a telephony media stream (connected/start/media/stop events)."""
    await audio_bridge.handle_telephony(websocket)


@app.get("/call")
async def place_call(to: Optional[str] = Query(None)):
    """Place an outbound call: GET /call?to=+15550123456."""
    if not call_control.configured:
        return PlainTextResponse("Missing Twilio credentials", status_code=500)
    if not to:
        return PlainTextResponse("Must provide ?to=+E164Number", status_code=400)

    try:
        call_sid = await call_control.place_call(to)
    except (TwilioException, OSError) as e:
        logger.error(f"Error placing call: {e}")
        return PlainTextResponse("Failed to dial.", status_code=500)
    return PlainTextResponse(f"Dialing {to}, Call SID: {call_sid}")


@app.post(OUTBOUND_VOICE_PATH)
async def outbound_voice():
    """TwiML connecting the answered call's inbound audio to the telephony media socket."""
    return Response(content=call_control.stream_twiml(), media_type="text/xml")


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Status information, configured providers and the number of
        active telephony sessions.
    """
    return {
        "status": "healthy",
        "deepgram_api_key_configured": bool(settings.deepgram_api_key),
        "openai_api_key_configured": bool(settings.openai_api_key),
        "eleven_api_key_configured": bool(settings.eleven_api_key),
        "twilio_configured": call_control.configured,
        "active_calls": len(audio_bridge.registry),
    }


@app.get("/info")
async def info():
    """Basic information about the API."""
    return {
        "name": "Voice Relay",
        "description": "Real-time voice relay: speech-to-text, language model and speech synthesis",
        "version": "1.0.0",
        "endpoints": {
            BROWSER_STT_PATH: "WebSocket endpoint for browser microphone audio",
            TELEPHONY_AUDIO_PATH: "WebSocket endpoint for telephony media streams",
            "/call": "Place an outbound call (?to=+E164Number)",
            OUTBOUND_VOICE_PATH: "TwiML for connected outbound calls",
            "/health": "Health check endpoint",
        },
    }


# Browser assets; mounted last so the routes above take precedence
static_path = Path(settings.static_dir)
if static_path.is_dir():
    app.mount("/", StaticFiles(directory=static_path, html=True), name="static")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        websocket_ping_interval=5,
        websocket_max_size=16777216,  # 16MB
        websocket_ping_timeout=20,
        http="h11",
    )
