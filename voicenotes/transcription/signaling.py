"""Offer/answer exchange with the local WebRTC inference server."""

import asyncio
import logging

import aiohttp
from pydantic import ValidationError

from ..errors import TransportError
from ..models.signaling import SignalingAnswer, SignalingOffer

logger = logging.getLogger(__name__)


class SignalingClient:
    """POSTs the local session description and returns the server's answer."""

    def __init__(self, base_url: str = "http://localhost:7860", timeout_seconds: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def offer_url(self) -> str:
        return f"{self.base_url}/webrtc/offer"

    async def exchange(self, offer: SignalingOffer) -> SignalingAnswer:
        """Send ``offer`` and validate the answer.

        Raises:
            TransportError: On rejection, network failure or a malformed answer
        """
        logger.info(f"Sending offer to {self.offer_url} (session {offer.session_id})")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.offer_url, json=offer.model_dump(by_alias=True)) as response:
                    if not 200 <= response.status < 300:
                        error_text = await response.text()
                        raise TransportError(
                            f"Local WebRTC server rejected offer: {response.status} {error_text}")
                    payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransportError(f"Local WebRTC server unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError("Local WebRTC server did not answer in time") from e
        except ValueError as e:
            raise TransportError("Invalid answer from Local WebRTC server") from e

        try:
            return SignalingAnswer.model_validate(payload)
        except ValidationError as e:
            raise TransportError("Invalid answer from Local WebRTC server") from e
