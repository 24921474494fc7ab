"""Local speech engine built on pyttsx3.

pyttsx3 renders each utterance to a temporary WAV file on a dedicated
worker thread (the platform drivers are not thread-safe), and the file is
played through an AudioPlayer so the utterance can be paused and resumed.
The engine speaks one utterance at a time; speaking a new one cancels the
current one.
"""

import asyncio
import logging
import os
import re
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

import pyttsx3

from narriva.constants import LOCAL_BASE_WPM
from narriva.models import VoiceDescriptor
from narriva.playback import AudioPlayer, PlaybackError

logger = logging.getLogger(__name__)


class SpeechError(Exception):
    """An utterance did not finish normally.

    error is "canceled", "synthesis-failed" or "audio-output".
    """

    def __init__(self, error: str, message: str = ""):
        super().__init__(message or error)
        self.error = error

    @property
    def canceled(self) -> bool:
        return self.error == "canceled"


@dataclass
class Utterance:
    text: str
    voice: str | None = None     # platform voice name or id
    rate: float = 1.0
    volume: float = 1.0          # fixed once playback starts
    on_start: Callable[[], Any] | None = None
    on_end: Callable[[], Any] | None = None
    on_error: Callable[[SpeechError], Any] | None = None
    canceled: bool = False


def _notify(callback, *args):
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Utterance callback failed")


def _language(lang) -> str:
    if isinstance(lang, bytes):
        lang = lang.decode("utf-8", "ignore")
    return re.sub(r"[^\w-]", "", str(lang))


class LocalSpeechEngine:
    """Speaks utterances with the platform's speech synthesizer."""

    def __init__(self, driver_factory=pyttsx3.init, player_factory=AudioPlayer.from_file):
        self._driver_factory = driver_factory
        self._player_factory = player_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="narriva-tts")
        self._driver = None
        self._available: bool | None = None
        self._current: Utterance | None = None
        self._player: AudioPlayer | None = None
        self._task: asyncio.Task | None = None

    def _get_driver(self):
        # Worker thread only
        if self._driver is None:
            self._driver = self._driver_factory()
        return self._driver

    def available(self) -> bool:
        """Whether a platform driver could be initialized. Cached."""
        if self._available is None:
            try:
                self._executor.submit(self._get_driver).result()
                self._available = True
            except (ImportError, OSError, RuntimeError) as e:
                logger.warning("Local speech engine unavailable: %s", e)
                self._available = False
        return self._available

    def get_voices(self) -> list[VoiceDescriptor]:
        if not self.available():
            return []
        voices = self._executor.submit(lambda: self._get_driver().getProperty("voices")).result()
        return [
            VoiceDescriptor(
                id=v.id,
                name=v.name,
                languages=tuple(_language(lang) for lang in (v.languages or ())),
                gender=v.gender,
            )
            for v in voices
        ]

    @property
    def speaking(self) -> bool:
        """True while an utterance is pending or playing, including paused."""
        return self._current is not None

    @property
    def paused(self) -> bool:
        return self._player is not None and self._player.paused

    def speak(self, utterance: Utterance):
        """Start speaking; must be called from the running event loop."""
        if self._current is not None:
            self.cancel()
        self._current = utterance
        self._task = asyncio.get_running_loop().create_task(self._run(utterance))

    def pause(self):
        if self._player is not None:
            self._player.pause()

    def resume(self):
        if self._player is not None:
            self._player.resume()

    def cancel(self):
        """Cancel the current utterance; it reports a "canceled" error."""
        utterance = self._current
        if utterance is None:
            return
        utterance.canceled = True
        if self._player is not None:
            self._player.stop()

    def close(self):
        self.cancel()
        self._executor.shutdown(wait=False)

    def _find_voice(self, driver, wanted: str) -> str | None:
        for voice in driver.getProperty("voices"):
            if voice.name == wanted or voice.id == wanted:
                return voice.id
        logger.debug("Platform voice %r not found, using default", wanted)
        return None

    def _render(self, utterance: Utterance, path: str):
        """Render an utterance to a WAV file. Worker thread only."""
        driver = self._get_driver()
        if utterance.voice:
            voice_id = self._find_voice(driver, utterance.voice)
            if voice_id:
                driver.setProperty("voice", voice_id)
        driver.setProperty("rate", int(LOCAL_BASE_WPM * utterance.rate))
        driver.save_to_file(utterance.text, path)
        driver.runAndWait()

    async def _run(self, utterance: Utterance):
        loop = asyncio.get_running_loop()
        fd, path = tempfile.mkstemp(suffix=".wav", prefix="narriva-")
        os.close(fd)
        player = None
        try:
            if not utterance.canceled:
                try:
                    await loop.run_in_executor(self._executor, self._render, utterance, path)
                    if not utterance.canceled:
                        player = self._player_factory(path, volume=utterance.volume)
                except Exception as e:
                    # Driver and decoder errors differ per platform
                    logger.warning("Local speech synthesis failed: %s", e)
                    _notify(utterance.on_error, SpeechError("synthesis-failed", str(e)))
                    return

            if utterance.canceled:
                _notify(utterance.on_error, SpeechError("canceled"))
                return

            self._player = player
            _notify(utterance.on_start)
            try:
                finished = await player.play()
            except PlaybackError as e:
                _notify(utterance.on_error, SpeechError("audio-output", str(e)))
                return

            if finished and not utterance.canceled:
                _notify(utterance.on_end)
            else:
                _notify(utterance.on_error, SpeechError("canceled"))
        finally:
            if player is not None:
                player.release()
            if self._player is player:
                self._player = None
            if self._current is utterance:
                self._current = None
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("Could not remove temporary speech file %s: %s", path, e)
