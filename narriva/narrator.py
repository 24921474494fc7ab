"""Narration orchestrator and the module-level speech controls.

A Narrator reads one story node at a time: it splits the text into
segments, picks a voice per segment and speaks the segments strictly in
order, trying the remote service first and the local engine second.
Caller callbacks are driven from the PlaybackSession's transitions.
"""

import asyncio
import logging

from narriva.backends import Backend, LocalBackend, RemoteBackend
from narriva.config import NarrivaConfig, load_config
from narriva.constants import CHUNK_PAUSE_SECONDS, SEGMENT_PAUSE_SECONDS
from narriva.elevenlabs import ElevenLabsClient
from narriva.engine import LocalSpeechEngine
from narriva.models import (
    BackendKind,
    NarrationOptions,
    NarrationUnavailable,
    Segment,
    SpeakRequest,
    SpeakResult,
    StoryNode,
    VoiceDescriptor,
)
from narriva.parser import attribute, split_paragraphs, split_text_for_speech
from narriva.session import PlaybackSession, SessionEvent, SessionState
from narriva.tts import EdgeTTSClient
from narriva.voices import assign_voices

logger = logging.getLogger(__name__)


def create_remote_client(config: NarrivaConfig):
    """The remote synthesis client for the configured provider."""
    if config.remote_provider == "edge":
        return EdgeTTSClient()
    return ElevenLabsClient(
        api_key=config.elevenlabs_api_key,
        model_id=config.elevenlabs_model,
        stability=config.stability,
        similarity_boost=config.similarity_boost,
    )


class _CallbackBridge:
    """Translates session transitions into one caller's callbacks."""

    def __init__(self, options: NarrationOptions):
        self.options = options

    def __call__(self, session: PlaybackSession, event: SessionEvent, previous: SessionState):
        opts = self.options
        if event is SessionEvent.BEGIN:
            self._fire(opts.on_start)
        elif event is SessionEvent.SEGMENT_COMPLETED:
            self._fire(opts.on_progress, session.progress)
        elif event is SessionEvent.PAUSE:
            self._fire(opts.on_pause)
        elif event is SessionEvent.RESUME:
            self._fire(opts.on_resume)
        elif event is SessionEvent.FINISH:
            self._fire(opts.on_end)
        elif event is SessionEvent.ABORT:
            self._fire(opts.on_error, session.error)

    @staticmethod
    def _fire(callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Narration callback failed")


class Narrator:
    """Reads story nodes aloud with per-character voices and fallback."""

    def __init__(
        self,
        config: NarrivaConfig | None = None,
        session: PlaybackSession | None = None,
        remote: Backend | None = None,
        local: Backend | None = None,
    ):
        self.config = config or load_config()
        self.session = session or PlaybackSession()
        self.remote = remote or RemoteBackend(create_remote_client(self.config), self.session)
        self.local = local or LocalBackend(LocalSpeechEngine(), self.session)
        self._volume = 1.0
        self._bridge: _CallbackBridge | None = None

    @property
    def archetypes(self) -> dict:
        return self.config.archetypes

    @property
    def volume(self) -> float:
        return self._volume

    # --- Segment building ---

    def build_segments(self, text: str, options: NarrationOptions) -> list[Segment]:
        base_voice = options.voice_id or self.archetypes["narrator"]
        if options.use_character_voices:
            segments = attribute(text)
            assign_voices(segments, base_voice, self.archetypes)
            return segments
        return [Segment(text=p, voice=base_voice) for p in split_paragraphs(text)]

    # --- Narration ---

    async def read_node(self, node: StoryNode | None, options: NarrationOptions | None = None):
        """Narrate a story node. Supersedes any narration in progress.

        Never raises; failures are reported through options.on_error.
        """
        if node is None or not node.content or not node.content.strip():
            return
        options = options or NarrationOptions()
        await self._narrate(node.content, options, lambda text: self.build_segments(text, options))

    async def speak_text(self, text: str, options: NarrationOptions | None = None):
        """Speak text in a single voice, without speaker attribution."""
        if not text or not text.strip():
            return
        options = options or NarrationOptions()
        voice = options.voice_id or self.archetypes["narrator"]
        await self._narrate(text, options, lambda t: [Segment(text=t.strip(), voice=voice)])

    async def _narrate(self, text: str, options: NarrationOptions, build):
        self.cancel()
        generation = self.session.generation
        self._volume = max(0.0, min(1.0, options.volume))
        bridge = self._bridge = self.session.subscribe(_CallbackBridge(options))

        try:
            local_available = await self.local.prepare()
            if not (self.remote.available() or local_available):
                logger.error("No speech synthesis methods available")
                self.session.fail(NarrationUnavailable("No speech synthesis methods available"))
                return

            self.session.begin()
            segments = build(text)
            self.session.total_segments = len(segments)

            for index, segment in enumerate(segments):
                if generation != self.session.generation:
                    return
                if segment.text.strip():
                    result = await self._speak_segment(segment, options, generation)
                    if generation != self.session.generation:
                        return
                    if not result.ok:
                        logger.error(
                            "Segment %d/%d could not be spoken (%s), skipping",
                            index + 1, len(segments), result.kind.value,
                        )
                        self.session.transition(SessionEvent.SEGMENT_FAILED)
                progress = self.session.complete_segment()
                logger.debug("Segment %d/%d done, progress %.2f", index + 1, len(segments), progress)
                await asyncio.sleep(SEGMENT_PAUSE_SECONDS)

            if generation == self.session.generation:
                self.session.finish()
        except Exception as e:
            logger.exception("Narration failed")
            if generation == self.session.generation:
                self.session.fail(e)
        finally:
            self.session.unsubscribe(bridge)
            if self._bridge is bridge:
                self._bridge = None

    def _request(self, segment: Segment, options: NarrationOptions) -> SpeakRequest:
        return SpeakRequest(
            voice_id=segment.voice,
            rate=options.rate,
            volume=self._volume,
            local_voice=options.local_voice,
        )

    async def _speak_segment(self, segment: Segment, options: NarrationOptions, generation: int) -> SpeakResult:
        if self.remote.available():
            result = await self.remote.speak(segment.text, self._request(segment, options))
            if result.ok:
                return result
            logger.warning(
                "Remote speech failed (%s), falling back to local engine: %s",
                result.kind.value, result.error,
            )

        if generation != self.session.generation:
            return SpeakResult.interrupted()

        chunks = split_text_for_speech(segment.text, self.config.local_chunk_length)
        for chunk in chunks:
            # Volume is read per chunk so set_volume() applies to the next one
            result = await self.local.speak(chunk, self._request(segment, options))
            if not result.ok or result.cancelled or generation != self.session.generation:
                return result
            await asyncio.sleep(CHUNK_PAUSE_SECONDS)
        return SpeakResult.success()

    # --- Transport controls ---

    def _active_backend(self) -> Backend | None:
        if self.session.active_backend is BackendKind.REMOTE:
            return self.remote
        if self.session.active_backend is BackendKind.LOCAL:
            return self.local
        return None

    def pause(self):
        backend = self._active_backend()
        if backend is None or not backend.is_speaking():
            return
        backend.pause()
        self.session.transition(SessionEvent.PAUSE)

    def resume(self):
        backend = self._active_backend()
        if backend is None or not backend.is_paused():
            return
        backend.resume()
        self.session.transition(SessionEvent.RESUME)

    def cancel(self):
        """Stop everything and reset the session. Safe when idle."""
        if self._bridge is not None:
            self.session.unsubscribe(self._bridge)
            self._bridge = None
        self.remote.cancel()
        self.local.cancel()
        self.session.cancel()

    def set_volume(self, volume: float) -> float:
        """Clamp to [0, 1]; live for remote audio, next chunk for local."""
        self._volume = max(0.0, min(1.0, volume))
        self.remote.set_volume(self._volume)
        self.local.set_volume(self._volume)
        return self._volume

    def is_speaking(self) -> bool:
        return self.session.active

    def is_paused(self) -> bool:
        return self.session.state is SessionState.PAUSED

    def get_available_voices(self) -> list[VoiceDescriptor]:
        """Voices of the local platform engine."""
        if isinstance(self.local, LocalBackend):
            return self.local.engine.get_voices()
        return []

    def close(self):
        """Cancel narration and stop the local engine's worker thread."""
        self.cancel()
        if isinstance(self.local, LocalBackend):
            self.local.engine.close()

    async def list_remote_voices(self) -> list[dict]:
        """Voices of the remote service, where it can list them."""
        client = getattr(self.remote, "client", None)
        if client is None or not hasattr(client, "list_voices"):
            return []
        return await client.list_voices()


# --- Module-level API on a shared narrator ---

_default_narrator: Narrator | None = None


def get_narrator() -> Narrator:
    global _default_narrator
    if _default_narrator is None:
        _default_narrator = Narrator()
    return _default_narrator


def set_narrator(narrator: Narrator | None):
    global _default_narrator
    _default_narrator = narrator


async def read_story_node(node: StoryNode, options: NarrationOptions | None = None):
    await get_narrator().read_node(node, options)


async def speak_text(text: str, options: NarrationOptions | None = None):
    await get_narrator().speak_text(text, options)


def pause_speech():
    get_narrator().pause()


def resume_speech():
    get_narrator().resume()


def cancel_speech():
    get_narrator().cancel()


def is_speaking() -> bool:
    return get_narrator().is_speaking()


def is_paused() -> bool:
    return get_narrator().is_paused()


def set_audio_volume(volume: float) -> float:
    return get_narrator().set_volume(volume)


def get_available_voices() -> list[VoiceDescriptor]:
    return get_narrator().get_available_voices()
