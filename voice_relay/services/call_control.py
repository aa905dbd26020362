"""
Telephony call control through Twilio.

Places outbound calls and renders the TwiML that connects a call's inbound
audio track to this server's telephony media socket. The relay never initiates
media itself: once the call is answered Twilio opens the media socket and sends
the start/media/stop events handled by the audio bridge.
"""

import asyncio
import logging
from typing import Optional

from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import Connect, VoiceResponse

from voice_relay.config.constants import LOGGER_NAME, OUTBOUND_VOICE_PATH, TELEPHONY_AUDIO_PATH

logger = logging.getLogger(LOGGER_NAME)


class TwilioCallControl:
    """Outbound dialing and media stream markup for one Twilio account."""

    def __init__(self, account_sid: str, auth_token: str, caller_id: str, public_host: str,
                 client: Optional[TwilioClient] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.caller_id = caller_id
        self.public_host = public_host
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.caller_id)

    @property
    def client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    @property
    def voice_url(self) -> str:
        return f"https://{self.public_host}{OUTBOUND_VOICE_PATH}"

    @property
    def stream_url(self) -> str:
        return f"wss://{self.public_host}{TELEPHONY_AUDIO_PATH}"

    async def place_call(self, to: str) -> str:
        """
        Dial a number; Twilio fetches the call markup from voice_url once answered.

        Args:
            to: Destination number in E.164 format

        Returns:
            The call SID assigned by Twilio

        Raises:
            twilio.base.exceptions.TwilioException: If Twilio rejects the request
        """
        # The Twilio helper library is synchronous
        call = await asyncio.to_thread(
            self.client.calls.create,
            to=to,
            from_=self.caller_id,
            url=self.voice_url,
        )
        logger.info(f"Dialing {to} => Call SID: {call.sid}")
        return call.sid

    def stream_twiml(self) -> str:
        """TwiML connecting the call's inbound track to the telephony media socket."""
        response = VoiceResponse()
        connect = Connect()
        connect.stream(url=self.stream_url, track="inbound_track")
        response.append(connect)
        return str(response)
