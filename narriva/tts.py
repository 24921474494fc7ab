"""Edge neural voice synthesis via edge-tts with retry logic."""

import asyncio
import logging

import edge_tts

from narriva.constants import TTS_RETRY_COUNT, TTS_RETRY_BASE_DELAY
from narriva.models import FailureKind, SynthesisError

logger = logging.getLogger(__name__)


class EdgeTTSClient:
    """Remote synthesis through Microsoft Edge's read-aloud voices.

    Needs no credentials, so it is always configured. Retries network
    errors and empty responses with exponential backoff.
    """

    def __init__(self, retry_count: int = TTS_RETRY_COUNT, retry_base_delay: float = TTS_RETRY_BASE_DELAY):
        self.retry_count = retry_count
        self.retry_base_delay = retry_base_delay

    def is_configured(self) -> bool:
        return True

    async def _stream(self, text: str, voice_id: str) -> bytes:
        communicate = edge_tts.Communicate(text, voice_id)
        audio = bytearray()
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
        return bytes(audio)

    async def synthesize(self, text: str, voice_id: str) -> bytes:
        """Generate speech for text and return the MP3 bytes."""
        last_error = None
        for attempt in range(max(self.retry_count, 1)):
            try:
                audio = await self._stream(text, voice_id)
                if audio:
                    return audio
                # Empty stream counts as a failure
                last_error = SynthesisError(FailureKind.TRANSPORT, f"TTS produced no audio for: {text[:50]}...")
            except ValueError as e:
                # edge-tts rejects malformed voice names up front
                raise SynthesisError(FailureKind.UNSUPPORTED_VOICE, str(e)) from e
            except Exception as e:
                last_error = SynthesisError(FailureKind.TRANSPORT, f"Edge TTS request failed: {e}")
                last_error.__cause__ = e

            if attempt < self.retry_count - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning("Edge TTS attempt %d/%d failed, retrying in %.1fs", attempt + 1, self.retry_count, delay)
                await asyncio.sleep(delay)

        raise last_error
