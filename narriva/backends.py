"""Backend adapters: one speak() surface over remote and local speech.

Adapters never raise from speak(); every outcome is a SpeakResult so the
orchestrator can choose a fallback by failure kind.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from pydub.exceptions import CouldntDecodeError

from narriva.constants import (
    LOCAL_SETTLE_DELAY_SECONDS,
    MAX_PLAYBACK_RATE,
    MIN_PLAYBACK_RATE,
)
from narriva.engine import LocalSpeechEngine, SpeechError, Utterance
from narriva.models import BackendKind, FailureKind, SpeakRequest, SpeakResult, SynthesisError
from narriva.playback import AudioPlayer, PlaybackError
from narriva.session import PlaybackSession

logger = logging.getLogger(__name__)


class Backend(ABC):
    """A speech-producing engine the orchestrator can speak through."""

    kind: BackendKind = BackendKind.NONE

    @abstractmethod
    def available(self) -> bool:
        ...

    async def prepare(self) -> bool:
        """Check availability from a coroutine without blocking the loop."""
        return self.available()

    @abstractmethod
    async def speak(self, text: str, request: SpeakRequest) -> SpeakResult:
        """Speak text and settle when playback ends, fails or is cancelled."""
        ...

    @abstractmethod
    def pause(self):
        ...

    @abstractmethod
    def resume(self):
        ...

    @abstractmethod
    def cancel(self):
        ...

    @abstractmethod
    def set_volume(self, volume: float):
        ...

    @abstractmethod
    def is_speaking(self) -> bool:
        ...

    @abstractmethod
    def is_paused(self) -> bool:
        ...


class RemoteBackend(Backend):
    """Fetches synthesized audio from a remote service and plays it.

    client is anything with is_configured() and
    async synthesize(text, voice_id) -> bytes raising SynthesisError.
    """

    kind = BackendKind.REMOTE

    def __init__(self, client, session: PlaybackSession, player_factory=AudioPlayer.from_bytes):
        self._client = client
        self._session = session
        self._player_factory = player_factory
        self._player: AudioPlayer | None = None

    @property
    def client(self):
        return self._client

    def available(self) -> bool:
        return self._client.is_configured()

    async def speak(self, text: str, request: SpeakRequest) -> SpeakResult:
        generation = self._session.generation
        try:
            audio = await self._client.synthesize(text, request.voice_id)
        except SynthesisError as e:
            return SpeakResult.failure(e.kind, e)

        if generation != self._session.generation:
            # Cancelled while the request was in flight
            return SpeakResult.interrupted()

        rate = max(MIN_PLAYBACK_RATE, min(MAX_PLAYBACK_RATE, request.rate))
        try:
            player = self._player_factory(audio, volume=request.volume, playback_rate=rate)
        except (CouldntDecodeError, OSError) as e:
            return SpeakResult.failure(FailureKind.DECODE, e)

        self._player = player
        try:
            self._session.activate(self.kind, player, generation)
            finished = await player.play()
        except PlaybackError as e:
            return SpeakResult.failure(FailureKind.PLAYBACK, e)
        finally:
            self._release(player)

        return SpeakResult.success() if finished else SpeakResult.interrupted()

    def _release(self, player: AudioPlayer):
        try:
            player.release()
        except Exception as e:
            logger.warning("Error releasing audio: %s", e)
        self._session.release(player)
        if self._player is player:
            self._player = None

    def pause(self):
        if self._player is not None:
            self._player.pause()

    def resume(self):
        if self._player is not None:
            self._player.resume()

    def cancel(self):
        player, self._player = self._player, None
        if player is None:
            return
        try:
            player.stop()
        except Exception as e:
            logger.warning("Error stopping current audio: %s", e)

    def set_volume(self, volume: float):
        if self._player is not None:
            self._player.volume = volume

    def is_speaking(self) -> bool:
        return self._player is not None and self._player.playing and not self._player.paused

    def is_paused(self) -> bool:
        return self._player is not None and self._player.paused


class LocalBackend(Backend):
    """Speaks through the local platform engine.

    The engine keeps state across calls, so each utterance starts with a
    cancel, a resume if paused, and a short settling delay.
    """

    kind = BackendKind.LOCAL

    def __init__(self, engine: LocalSpeechEngine, session: PlaybackSession):
        self._engine = engine
        self._session = session

    @property
    def engine(self) -> LocalSpeechEngine:
        return self._engine

    def available(self) -> bool:
        return self._engine.available()

    async def prepare(self) -> bool:
        # The first check starts the platform driver
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._engine.available)

    async def speak(self, text: str, request: SpeakRequest) -> SpeakResult:
        if not self._engine.available():
            return SpeakResult.failure(FailureKind.UNAVAILABLE)

        generation = self._session.generation
        self._engine.cancel()
        if self._engine.paused:
            self._engine.resume()
        await asyncio.sleep(LOCAL_SETTLE_DELAY_SECONDS)
        if generation != self._session.generation:
            return SpeakResult.interrupted()

        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def settle(result: SpeakResult):
            if not done.done():
                done.set_result(result)

        def on_error(error: SpeechError):
            if error.canceled:
                # We cancelled it ourselves; not a failure
                logger.debug("Speech was canceled as part of cleanup")
                settle(SpeakResult.interrupted())
            else:
                settle(SpeakResult.failure(FailureKind.ENGINE, error))

        utterance = Utterance(
            text=text,
            voice=request.local_voice,
            rate=request.rate,
            volume=request.volume,
            on_end=lambda: settle(SpeakResult.success()),
            on_error=on_error,
        )
        utterance.on_start = lambda: self._session.activate(self.kind, utterance, generation)

        self._engine.speak(utterance)
        try:
            return await done
        finally:
            self._session.release(utterance)

    def pause(self):
        if self._engine.speaking:
            self._engine.pause()

    def resume(self):
        if self._engine.paused:
            self._engine.resume()

    def cancel(self):
        self._engine.cancel()

    def set_volume(self, volume: float):
        # The engine cannot change the volume of a started utterance;
        # callers pass the new volume with the next one.
        pass

    def is_speaking(self) -> bool:
        return self._engine.speaking and not self._engine.paused

    def is_paused(self) -> bool:
        return self._engine.paused
