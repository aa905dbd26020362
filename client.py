"""
Telephony media stream simulator.

Plays the role of Twilio Media Streams against a locally running relay:
connected, start, a sequence of base64 media events cut from an audio file,
then stop. Audio should be 8 kHz mu-law; a WAV header, if present, is skipped.

Usage:
    python client.py path/to/audio.ulaw [--url ws://localhost:3000/twilio-audio]
"""

import argparse
import asyncio
import base64
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict

import websockets
from websockets.exceptions import WebSocketException

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("telephony_client")

DEFAULT_URL = "ws://localhost:3000/twilio-audio"
CHUNK_SIZE = 160  # 20 ms of 8 kHz mu-law
CHUNK_INTERVAL = 0.02  # seconds
WAV_HEADER_SIZE = 44


def load_audio(path: Path) -> bytes:
    data = path.read_bytes()
    if data[:4] == b"RIFF":
        logger.info("Skipping WAV header")
        data = data[WAV_HEADER_SIZE:]
    return data


def build_event(event: str, sequence: int, stream_sid: str, **fields: Any) -> Dict[str, Any]:
    message = {"event": event, "sequenceNumber": str(sequence), "streamSid": stream_sid}
    message.update(fields)
    return message


async def run_call(url: str, audio: bytes, trailing_silence: float) -> None:
    call_sid = f"CA{uuid.uuid4().hex}"
    stream_sid = f"MZ{uuid.uuid4().hex}"
    logger.info(f"Simulating call {call_sid} against {url}")

    async with websockets.connect(url) as websocket:
        sequence = 1
        await websocket.send(json.dumps({"event": "connected", "protocol": "Call", "version": "1.0.0"}))

        await websocket.send(json.dumps(build_event(
            "start", sequence, stream_sid,
            start={
                "callSid": call_sid,
                "streamSid": stream_sid,
                "tracks": ["inbound"],
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        )))
        logger.info("Sent start event")

        chunks = 0
        for offset in range(0, len(audio), CHUNK_SIZE):
            sequence += 1
            chunks += 1
            payload = base64.b64encode(audio[offset:offset + CHUNK_SIZE]).decode("ascii")
            await websocket.send(json.dumps(build_event(
                "media", sequence, stream_sid,
                media={"track": "inbound", "chunk": str(chunks), "payload": payload},
            )))
            await asyncio.sleep(CHUNK_INTERVAL)
        logger.info(f"Sent {chunks} media events ({len(audio)} bytes)")

        # Give the transcription provider time to finalize the last utterance
        await asyncio.sleep(trailing_silence)

        sequence += 1
        await websocket.send(json.dumps(build_event("stop", sequence, stream_sid, stop={"callSid": call_sid})))
        logger.info("Sent stop event")


def main():
    parser = argparse.ArgumentParser(description="Simulate a telephony media stream")
    parser.add_argument("audio", type=Path, help="8 kHz mu-law audio file (raw or WAV)")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Media stream URL (default: {DEFAULT_URL})")
    parser.add_argument("--trailing-silence", type=float, default=3.0,
                        help="Seconds to wait before sending stop (default: 3)")
    args = parser.parse_args()

    try:
        asyncio.run(run_call(args.url, load_audio(args.audio), args.trailing_silence))
    except (OSError, WebSocketException) as e:
        logger.error(f"Simulated call failed: {e}")


if __name__ == "__main__":
    main()
