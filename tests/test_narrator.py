"""Tests for the narration orchestrator and the module-level controls."""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FakeBackend, FakeEngine, wait_until
from narriva import narrator as narrator_module
from narriva.backends import LocalBackend, RemoteBackend
from narriva.models import BackendKind, NarrationOptions, NarrationUnavailable, StoryNode, VoiceDescriptor
from narriva.narrator import Narrator
from narriva.session import SessionState
from narriva.voices import VOICE_ARCHETYPES


class Recorder:
    """Collects every callback a narration fires, in order."""

    def __init__(self):
        self.calls = []

    def options(self, **kwargs):
        return NarrationOptions(
            on_start=lambda: self.calls.append(("start",)),
            on_progress=lambda p: self.calls.append(("progress", p)),
            on_pause=lambda: self.calls.append(("pause",)),
            on_resume=lambda: self.calls.append(("resume",)),
            on_end=lambda: self.calls.append(("end",)),
            on_error=lambda e: self.calls.append(("error", e)),
            **kwargs,
        )

    def names(self):
        return [c[0] for c in self.calls]

    def progress(self):
        return [c[1] for c in self.calls if c[0] == "progress"]


@pytest.fixture
def remote(session):
    return FakeBackend(session, kind=BackendKind.REMOTE)


@pytest.fixture
def local(session):
    return FakeBackend(session, kind=BackendKind.LOCAL)


@pytest.fixture
def narrator(config, session, remote, local):
    return Narrator(config=config, session=session, remote=remote, local=local)


@pytest.fixture
def default_narrator(narrator):
    narrator_module.set_narrator(narrator)
    yield narrator
    narrator_module.set_narrator(None)


def _node(content, node_id="n1"):
    return StoryNode(id=node_id, content=content)


def test_segments_spoken_in_source_order(narrator, remote, story_text):
    """Each segment is spoken once, in order, with its resolved voice."""
    rec = Recorder()
    asyncio.run(narrator.read_node(_node(story_text), rec.options()))
    assert remote.spoken == [
        ("It was dark in the hall.", VOICE_ARCHETYPES["narrator"]),
        ("Who's there?", VOICE_ARCHETYPES["elderlyMale"]),
        ("Nobody answered.", VOICE_ARCHETYPES["narrator"]),
    ]
    assert rec.names() == ["start", "progress", "progress", "progress", "end"]


def test_progress_non_decreasing_and_ends_at_one(narrator, story_text):
    """Progress climbs monotonically to exactly 1.0."""
    rec = Recorder()
    asyncio.run(narrator.read_node(_node(story_text), rec.options()))
    values = rec.progress()
    assert values == sorted(values)
    assert values[-1] == 1.0


def test_custom_narrator_voice(narrator, remote, story_text):
    """voice_id replaces the narrator archetype for narration only."""
    asyncio.run(narrator.read_node(_node(story_text), NarrationOptions(voice_id="custom")))
    assert [v for _, v in remote.spoken] == ["custom", VOICE_ARCHETYPES["elderlyMale"], "custom"]


def test_single_voice_mode_by_paragraph(narrator, remote, story_text):
    """Without character voices every paragraph uses the narrator voice."""
    options = NarrationOptions(use_character_voices=False)
    asyncio.run(narrator.read_node(_node(story_text), options))
    assert [t for t, _ in remote.spoken] == [
        "It was dark in the hall.",
        "\"Who's there?\" asked the old man.",
        "Nobody answered.",
    ]
    assert {v for _, v in remote.spoken} == {VOICE_ARCHETYPES["narrator"]}


def test_remote_failure_falls_back_to_local(config, session, story_text):
    """Every remote call failing still completes the narration locally."""
    remote = FakeBackend(session, kind=BackendKind.REMOTE, fail=True)
    local = FakeBackend(session, kind=BackendKind.LOCAL)
    narrator = Narrator(config=config, session=session, remote=remote, local=local)
    rec = Recorder()

    asyncio.run(narrator.read_node(_node(story_text), rec.options()))

    assert [t for t, _ in local.spoken] == [t for t, _ in remote.spoken]
    assert len(local.spoken) == 3
    assert rec.names()[-1] == "end"
    assert "error" not in rec.names()


def test_unavailable_remote_goes_straight_to_local(config, session):
    """An unconfigured remote service is skipped, not tried."""
    remote = FakeBackend(session, is_available=False)
    local = FakeBackend(session, kind=BackendKind.LOCAL)
    narrator = Narrator(config=config, session=session, remote=remote, local=local)
    asyncio.run(narrator.read_node(_node("Just narration."), NarrationOptions()))
    assert remote.spoken == []
    assert local.spoken == [("Just narration.", VOICE_ARCHETYPES["narrator"])]


def test_long_segments_are_chunked_for_local(config, session):
    """The local engine receives chunks no longer than the configured limit."""
    config.local_chunk_length = 20
    remote = FakeBackend(session, is_available=False)
    local = FakeBackend(session, kind=BackendKind.LOCAL)
    narrator = Narrator(config=config, session=session, remote=remote, local=local)
    asyncio.run(narrator.read_node(_node("One two three. Four five six. Seven."), NarrationOptions()))
    assert [t for t, _ in local.spoken] == ["One two three.", "Four five six.", "Seven."]


def test_segment_failing_everywhere_is_skipped(config, session, story_text):
    """A segment no backend can speak is skipped and narration still ends."""
    remote = FakeBackend(session, fail=True)
    local = FakeBackend(session, kind=BackendKind.LOCAL, fail=True)
    narrator = Narrator(config=config, session=session, remote=remote, local=local)
    rec = Recorder()

    asyncio.run(narrator.read_node(_node(story_text), rec.options()))

    assert rec.progress()[-1] == 1.0
    assert rec.names()[-1] == "end"
    assert session.state is SessionState.IDLE


def test_no_backend_available(config, session):
    """Nothing to speak with reports an error and never starts."""
    remote = FakeBackend(session, is_available=False)
    local = FakeBackend(session, kind=BackendKind.LOCAL, is_available=False)
    narrator = Narrator(config=config, session=session, remote=remote, local=local)
    rec = Recorder()

    asyncio.run(narrator.read_node(_node("Hello."), rec.options()))

    assert rec.names() == ["error"]
    assert isinstance(rec.calls[0][1], NarrationUnavailable)
    assert not narrator.is_speaking()


def test_empty_node_is_ignored(narrator, remote):
    """Blank content does nothing at all."""
    rec = Recorder()
    asyncio.run(narrator.read_node(_node("   "), rec.options()))
    asyncio.run(narrator.read_node(None, rec.options()))
    assert rec.calls == []
    assert remote.spoken == []


def test_callback_errors_do_not_escape(narrator, story_text):
    """A broken on_progress callback cannot stop the narration."""
    ended = []

    def broken(progress):
        raise RuntimeError("ui gone")

    options = NarrationOptions(on_progress=broken, on_end=lambda: ended.append(True))
    asyncio.run(narrator.read_node(_node(story_text), options))
    assert ended == [True]


def test_pause_and_resume(config, session):
    """Pause and resume reach the active backend and fire callbacks."""
    remote = FakeBackend(session, hold=True)
    narrator = Narrator(config=config, session=session, remote=remote, local=FakeBackend(session))
    rec = Recorder()

    async def scenario():
        task = asyncio.create_task(narrator.read_node(_node("Hello."), rec.options()))
        await wait_until(lambda: remote.live)
        assert narrator.is_speaking()
        narrator.pause()
        assert narrator.is_paused()
        narrator.pause()
        narrator.resume()
        assert not narrator.is_paused()
        assert narrator.is_speaking()
        remote.hold = False
        remote.release()
        await task

    asyncio.run(scenario())
    assert rec.names() == ["start", "pause", "resume", "progress", "end"]
    assert not narrator.is_speaking()


def test_controls_are_safe_when_idle(narrator):
    """Pause, resume and cancel with nothing playing are no-ops."""
    narrator.pause()
    narrator.resume()
    narrator.cancel()
    assert not narrator.is_speaking()
    assert not narrator.is_paused()


def test_cancel_then_read_has_one_live_handle(config, session):
    """A new read supersedes the old one without overlapping audio."""
    remote = FakeBackend(session, hold=True)
    narrator = Narrator(config=config, session=session, remote=remote, local=FakeBackend(session))
    first, second = Recorder(), Recorder()

    async def scenario():
        a = asyncio.create_task(narrator.read_node(_node("First story.", "a"), first.options()))
        await wait_until(lambda: remote.live)
        narrator.cancel()
        b = asyncio.create_task(narrator.read_node(_node("Second story.", "b"), second.options()))
        await wait_until(lambda: len(remote.spoken) == 2 and remote.live)
        assert len(remote.live) == 1
        remote.hold = False
        remote.release()
        await asyncio.gather(a, b)

    asyncio.run(scenario())
    assert remote.max_live == 1
    assert [t for t, _ in remote.spoken] == ["First story.", "Second story."]
    assert first.names() == ["start"]
    assert second.names() == ["start", "progress", "end"]


def test_read_supersedes_read_in_progress(config, session):
    """Starting a second read without cancel stops the first."""
    remote = FakeBackend(session, hold=True)
    narrator = Narrator(config=config, session=session, remote=remote, local=FakeBackend(session))
    first, second = Recorder(), Recorder()

    async def scenario():
        a = asyncio.create_task(narrator.read_node(_node("One.\n\nTwo."), first.options()))
        await wait_until(lambda: remote.live)
        b = asyncio.create_task(narrator.read_node(_node("Three."), second.options()))
        await wait_until(lambda: len(remote.spoken) == 2 and remote.live)
        remote.hold = False
        remote.release()
        await asyncio.gather(a, b)

    asyncio.run(scenario())
    assert [t for t, _ in remote.spoken] == ["One.\n\nTwo.", "Three."]
    assert "end" not in first.names()
    assert second.names()[-1] == "end"
    assert remote.max_live == 1


def test_speak_text_uses_one_voice(narrator, remote):
    """speak_text skips attribution entirely."""
    asyncio.run(narrator.speak_text('"Hi," said the witch.', NarrationOptions(voice_id="v")))
    assert remote.spoken == [('"Hi," said the witch.', "v")]


def test_volume_is_clamped_and_forwarded(narrator, remote, local):
    """Out-of-range volumes clamp and reach both backends."""
    assert narrator.set_volume(-1) == 0.0
    assert narrator.set_volume(5) == 1.0
    assert narrator.set_volume(0.4) == 0.4
    assert remote.volumes == [0.0, 1.0, 0.4]
    assert local.volumes == [0.0, 1.0, 0.4]


def test_options_volume_reaches_backend(narrator, remote):
    """The narration volume is passed with each request."""
    asyncio.run(narrator.read_node(_node("Hello."), NarrationOptions(volume=0.5)))
    assert remote.request_volumes == [0.5]


class ThreadRecordingEngine(FakeEngine):
    """Records the thread each availability check runs on."""

    def __init__(self):
        super().__init__()
        self.threads = []

    def available(self):
        self.threads.append(threading.current_thread())
        return super().available()


def test_local_availability_checked_off_the_loop(config, session):
    """Starting the platform driver does not block the event loop."""
    engine = ThreadRecordingEngine()
    narrator = Narrator(config=config, session=session,
                        remote=FakeBackend(session, is_available=False), local=LocalBackend(engine, session))
    recorder = Recorder()

    async def scenario():
        await narrator.read_node(_node("Hello."), recorder.options())
        return threading.current_thread()

    loop_thread = asyncio.run(scenario())
    assert engine.threads[0] is not loop_thread
    assert [u.text for u in engine.utterances] == ["Hello."]
    assert recorder.names()[-1] == "end"


def test_available_voices_from_local_engine(config, session):
    """Local voices come from the platform engine."""
    alex = VoiceDescriptor(id="voice.alex", name="Alex", languages=("en-us",))
    local = LocalBackend(FakeEngine(voices=[alex]), session)
    narrator = Narrator(config=config, session=session, remote=FakeBackend(session), local=local)
    assert narrator.get_available_voices() == [alex]


# --- Module-level API ---

def test_module_level_functions(default_narrator, remote):
    """Module functions drive the shared narrator."""
    assert narrator_module.get_narrator() is default_narrator
    asyncio.run(narrator_module.read_story_node(_node("Hello.")))
    asyncio.run(narrator_module.speak_text("Bye."))
    assert [t for t, _ in remote.spoken] == ["Hello.", "Bye."]
    assert narrator_module.set_audio_volume(-1) == 0.0
    assert narrator_module.set_audio_volume(5) == 1.0
    narrator_module.pause_speech()
    narrator_module.resume_speech()
    narrator_module.cancel_speech()
    assert not narrator_module.is_speaking()
    assert not narrator_module.is_paused()
    assert narrator_module.get_available_voices() == []


def test_list_remote_voices(config, session):
    """Remote voices are listed when the client can list them."""
    client = MagicMock()
    client.list_voices = AsyncMock(return_value=[{"voice_id": "abc"}])
    narrator = Narrator(config=config, session=session,
                        remote=RemoteBackend(client, session), local=FakeBackend(session))
    assert asyncio.run(narrator.list_remote_voices()) == [{"voice_id": "abc"}]
    assert asyncio.run(Narrator(config=config, session=session, remote=FakeBackend(session),
                                local=FakeBackend(session)).list_remote_voices()) == []


def test_close_stops_local_engine(config, session):
    """close() cancels and shuts the platform engine down."""
    engine = MagicMock()
    narrator = Narrator(config=config, session=session,
                        remote=FakeBackend(session), local=LocalBackend(engine, session))
    narrator.close()
    engine.close.assert_called_once()
    assert session.generation == 1
