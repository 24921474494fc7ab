"""ElevenLabs API client for high-quality text-to-speech."""

import logging
import os

import httpx

from narriva.constants import (
    ELEVENLABS_API_URL,
    ELEVENLABS_MODEL,
    ELEVENLABS_SIMILARITY_BOOST,
    ELEVENLABS_STABILITY,
    ELEVENLABS_STYLE,
    REMOTE_REQUEST_TIMEOUT,
)
from narriva.models import FailureKind, SynthesisError

logger = logging.getLogger(__name__)


def classify_response(status_code: int, body: str) -> FailureKind:
    """Map an ElevenLabs error response to a failure kind."""
    lowered = body.lower()
    if status_code == 429 or "quota" in lowered:
        return FailureKind.QUOTA
    if status_code in (401, 403):
        return FailureKind.AUTH
    if status_code in (400, 404, 422) and "voice" in lowered:
        return FailureKind.UNSUPPORTED_VOICE
    return FailureKind.TRANSPORT


class ElevenLabsClient:
    """Client for the ElevenLabs text-to-speech and voices endpoints.

    The API key comes from the constructor or ELEVENLABS_API_KEY. Without
    a key the client reports itself unconfigured and every request fails
    with FailureKind.AUTH before touching the network.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = ELEVENLABS_API_URL,
        model_id: str = ELEVENLABS_MODEL,
        stability: float = ELEVENLABS_STABILITY,
        similarity_boost: float = ELEVENLABS_SIMILARITY_BOOST,
        style: float = ELEVENLABS_STYLE,
        use_speaker_boost: bool = True,
        timeout: float = REMOTE_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else os.environ.get("ELEVENLABS_API_KEY")
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self.stability = stability
        self.similarity_boost = similarity_boost
        self.style = style
        self.use_speaker_boost = use_speaker_boost
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"xi-api-key": self.api_key or ""},
            timeout=self.timeout,
            transport=self._transport,
        )

    def _require_key(self):
        if not self.is_configured():
            raise SynthesisError(FailureKind.AUTH, "ElevenLabs API key is not configured")

    async def synthesize(self, text: str, voice_id: str) -> bytes:
        """Generate speech for text and return the MP3 bytes."""
        self._require_key()
        if not text:
            raise SynthesisError(FailureKind.TRANSPORT, "Text is required for speech generation")
        if not voice_id:
            raise SynthesisError(FailureKind.UNSUPPORTED_VOICE, "Voice ID is required for speech generation")

        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
                "style": self.style,
                "use_speaker_boost": self.use_speaker_boost,
            },
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    f"/text-to-speech/{voice_id}",
                    json=payload,
                    headers={"Accept": "audio/mpeg"},
                )
        except httpx.HTTPError as exc:
            raise SynthesisError(FailureKind.TRANSPORT, f"ElevenLabs request failed: {exc}") from exc

        if response.is_error:
            kind = classify_response(response.status_code, response.text)
            raise SynthesisError(
                kind,
                f"Failed to generate speech: {response.status_code} {response.reason_phrase} - {response.text}",
            )

        if not response.content:
            raise SynthesisError(FailureKind.TRANSPORT, "ElevenLabs returned no audio")

        logger.debug("Synthesized %d chars with voice %s (%d bytes)", len(text), voice_id, len(response.content))
        return response.content

    async def list_voices(self) -> list[dict]:
        """Fetch the voices available to this account."""
        self._require_key()
        try:
            async with self._client() as client:
                response = await client.get("/voices", headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise SynthesisError(FailureKind.TRANSPORT, f"Failed to fetch voices: {exc}") from exc

        if response.is_error:
            raise SynthesisError(
                classify_response(response.status_code, response.text),
                f"Failed to fetch voices: {response.status_code} {response.reason_phrase}",
            )
        return response.json().get("voices", [])
