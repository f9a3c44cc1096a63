"""Gemini generative-content client for transcription and polishing."""

import asyncio
import base64
import logging
from typing import Any, Dict, List

import aiohttp

from ..errors import ServiceError

logger = logging.getLogger(__name__)

TRANSCRIBE_INSTRUCTION = (
    "Transcribe this audio input accurately. "
    "Preserve original speech as much as possible for raw transcription."
)


class GeminiClient:
    """Simple client for sending audio and text prompts to Gemini."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash",
                 base_url: str = "https://generativelanguage.googleapis.com/v1beta",
                 timeout_seconds: float = 60.0):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model used for both transcription and polishing
            base_url: REST API root
            timeout_seconds: Total timeout per request
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        logger.info(f"GeminiClient initialized with model: {model}")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def transcribe_audio(self, audio: bytes, mime_type: str) -> str:
        """Transcribe one audio payload. Returns "" when the model says nothing.

        Raises:
            ServiceError: If the request fails
        """
        parts = [
            {"text": TRANSCRIBE_INSTRUCTION},
            {"inline_data": {"mime_type": mime_type,
                             "data": base64.b64encode(audio).decode("ascii")}},
        ]
        logger.debug(f"Transcribing {len(audio)} bytes of {mime_type}")
        return await self.generate_content(parts)

    async def generate_text(self, prompt: str) -> str:
        """Send a single free-text prompt and return the response text."""
        return await self.generate_content([{"text": prompt}])

    async def generate_content(self, parts: List[Dict[str, Any]]) -> str:
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json"
        }
        data = {"contents": [{"parts": parts}]}

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.endpoint, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ServiceError(f"Gemini API error: {response.status} - {error_text}")

                    result = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ServiceError(f"Gemini request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ServiceError("Gemini request timed out") from e
        except ValueError as e:
            raise ServiceError(f"Invalid JSON from Gemini: {e}") from e

        try:
            return self._extract_text(result)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            raise ServiceError(f"Unexpected Gemini response shape: {e}") from e

    @staticmethod
    def _extract_text(result: Dict[str, Any]) -> str:
        candidates = result.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)
