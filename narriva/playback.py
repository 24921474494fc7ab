"""Buffered audio playback with pause, resume and live volume."""

import asyncio
import io
import logging

import numpy as np
from pydub import AudioSegment

logger = logging.getLogger(__name__)


class PlaybackError(Exception):
    """The audio output device could not be opened."""


def open_output_stream(**kwargs):
    """Open and start a sounddevice output stream."""
    # Imported here: PortAudio is only loaded once audio is actually played
    try:
        import sounddevice as sd
    except OSError as exc:
        raise PlaybackError(f"Audio output unavailable: {exc}") from exc

    try:
        stream = sd.OutputStream(**kwargs)
        stream.start()
    except sd.PortAudioError as exc:
        raise PlaybackError(f"Could not open audio output: {exc}") from exc
    return stream


def _close_stream(stream, abort: bool):
    if stream is None:
        return
    try:
        if abort:
            stream.abort()
        else:
            stream.stop()
        stream.close()
    except Exception as e:
        logger.warning("Error closing audio stream: %s", e)


def _to_float_samples(audio: AudioSegment) -> np.ndarray:
    """Convert an AudioSegment to a (frames, channels) float32 array in [-1, 1]."""
    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    samples = samples.reshape((-1, audio.channels))
    return samples / float(1 << (8 * audio.sample_width - 1))


class AudioPlayer:
    """One playable clip, the equivalent of a browser audio element.

    Samples are pulled by the output stream's callback thread; pausing
    feeds silence and volume is applied per block, so both take effect
    immediately. Playback speed is approximated by scaling the stream's
    sample rate.
    """

    def __init__(
        self,
        audio: AudioSegment,
        volume: float = 1.0,
        playback_rate: float = 1.0,
        stream_factory=open_output_stream,
    ):
        self._samples = _to_float_samples(audio)
        self.channels = audio.channels
        self.frame_rate = audio.frame_rate
        self.playback_rate = playback_rate
        self._volume = max(0.0, min(1.0, volume))
        self._stream_factory = stream_factory
        self._stream = None
        self._position = 0
        self._paused = False
        self._stopped = False
        self._drained = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._done: asyncio.Event | None = None

    @classmethod
    def from_bytes(cls, data: bytes, fmt: str = "mp3", **kwargs) -> "AudioPlayer":
        return cls(AudioSegment.from_file(io.BytesIO(data), format=fmt), **kwargs)

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "AudioPlayer":
        return cls(AudioSegment.from_file(path), **kwargs)

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float):
        self._volume = max(0.0, min(1.0, value))

    @property
    def paused(self) -> bool:
        return self._paused and self.playing

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def playing(self) -> bool:
        return self._done is not None and not self._done.is_set()

    async def play(self) -> bool:
        """Play to the end. Returns False if stopped before the end."""
        if self._stopped:
            return False
        if len(self._samples) == 0:
            return True

        self._loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        self._stream = self._stream_factory(
            samplerate=int(self.frame_rate * self.playback_rate),
            channels=self.channels,
            dtype="float32",
            callback=self._callback,
        )
        await self._done.wait()
        if self._drained and not self._stopped:
            # stop() blocks until the device has played its buffers out
            stream, self._stream = self._stream, None
            await self._loop.run_in_executor(None, _close_stream, stream, False)
        return not self._stopped

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug("Audio stream status: %s", status)
        if self._paused or self._drained or self._stopped:
            outdata.fill(0)
            return

        chunk = self._samples[self._position:self._position + frames]
        count = len(chunk)
        outdata[:count] = chunk * self._volume
        outdata[count:] = 0
        self._position += count

        if self._position >= len(self._samples):
            self._drained = True
            self._loop.call_soon_threadsafe(self._on_drained)

    def _on_drained(self):
        if self._done is not None:
            self._done.set()

    def pause(self):
        self._paused = True

    def resume(self):
        self._paused = False

    def stop(self):
        """Stop immediately; a pending play() returns False."""
        self._stopped = True
        self._close(abort=True)
        if self._done is not None:
            self._done.set()

    def release(self):
        """Close the stream and drop the decoded samples."""
        if self.playing:
            self.stop()
        else:
            self._close(abort=True)
        self._samples = self._samples[:0]

    def _close(self, abort: bool):
        stream, self._stream = self._stream, None
        _close_stream(stream, abort)
