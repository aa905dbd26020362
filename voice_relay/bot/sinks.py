"""
Outbound sinks: where a Session delivers transcripts, replies and audio.

The sink is chosen when the Session is built. A browser session writes to its
live WebSocket; a telephony leg without a return audio channel gets a
LoggingSink. Delivery never raises: once the destination is gone, messages are
dropped, because the Session has already moved on.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from voice_relay.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class OutboundSink(ABC):
    """Destination for serialized session output."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the destination can no longer accept messages."""

    @abstractmethod
    async def send_json(self, payload: Dict[str, Any]) -> None:
        """Deliver one JSON message."""

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Deliver one binary frame (synthesized audio)."""


class WebSocketSink(OutboundSink):
    """Sink writing to a live FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._failed = False

    @property
    def closed(self) -> bool:
        return (
            self._failed
            or self.websocket.client_state != WebSocketState.CONNECTED
            or self.websocket.application_state != WebSocketState.CONNECTED
        )

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self.closed:
            logger.debug(f"Socket closed, dropping message: {payload}")
            return
        try:
            await self.websocket.send_text(json.dumps(payload))
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._failed = True
            logger.debug(f"Could not deliver message, socket is gone: {e}")

    async def send_bytes(self, data: bytes) -> None:
        if self.closed:
            logger.debug(f"Socket closed, dropping {len(data)} bytes of audio")
            return
        try:
            await self.websocket.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._failed = True
            logger.debug(f"Could not deliver audio, socket is gone: {e}")


class LoggingSink(OutboundSink):
    """No-op sink for legs without a return audio channel; logs what would have been sent."""

    def __init__(self, label: str):
        self.label = label

    @property
    def closed(self) -> bool:
        return False

    async def send_json(self, payload: Dict[str, Any]) -> None:
        logger.info(f"[{self.label}] => {json.dumps(payload)}")

    async def send_bytes(self, data: bytes) -> None:
        logger.info(f"[{self.label}] => [binary len={len(data)}]")
