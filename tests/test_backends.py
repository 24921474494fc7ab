"""Tests for the remote and local backend adapters."""

import asyncio

from pydub.exceptions import CouldntDecodeError

from fakes import FakeClient, FakeEngine, PlayerFactory, wait_until
from narriva.backends import LocalBackend, RemoteBackend
from narriva.models import BackendKind, FailureKind, SpeakRequest
from narriva.playback import PlaybackError
from narriva.session import SessionEvent


# --- Remote ---

def test_remote_speaks_and_releases(session):
    """Audio is played with the request's volume, then released."""
    client = FakeClient()
    players = PlayerFactory()
    backend = RemoteBackend(client, session, player_factory=players)

    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="adam", volume=0.3)))

    assert result.ok and not result.cancelled
    assert client.calls == [("Hello", "adam")]
    player = players.players[0]
    assert player.source == b"ID3fake"
    assert player.volume == 0.3
    assert player.released
    assert session.handle is None


def test_remote_rate_is_clamped(session):
    """Playback speed stays within [0.5, 2.0]."""
    players = PlayerFactory()
    backend = RemoteBackend(FakeClient(), session, player_factory=players)
    asyncio.run(backend.speak("a", SpeakRequest(voice_id="adam", rate=3.0)))
    asyncio.run(backend.speak("b", SpeakRequest(voice_id="adam", rate=0.1)))
    assert [p.playback_rate for p in players.players] == [2.0, 0.5]


def test_remote_synthesis_failure_keeps_kind(session):
    """Quota errors come back tagged, with no player created."""
    players = PlayerFactory()
    backend = RemoteBackend(FakeClient(error=FailureKind.QUOTA), session, player_factory=players)
    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="adam")))
    assert not result.ok
    assert result.kind is FailureKind.QUOTA
    assert players.players == []


def test_remote_decode_failure(session):
    """Undecodable audio is a decode failure."""
    players = PlayerFactory(decode_error=CouldntDecodeError("bad mp3"))
    backend = RemoteBackend(FakeClient(), session, player_factory=players)
    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="adam")))
    assert result.kind is FailureKind.DECODE


def test_remote_playback_failure(session):
    """No output device is a playback failure and the player is released."""
    players = PlayerFactory(error=PlaybackError("no device"))
    backend = RemoteBackend(FakeClient(), session, player_factory=players)
    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="adam")))
    assert result.kind is FailureKind.PLAYBACK
    assert players.players[0].released


def test_remote_cancel_during_playback(session):
    """Cancel stops the player and the call ends as interrupted."""
    players = PlayerFactory(hold=True)
    backend = RemoteBackend(FakeClient(), session, player_factory=players)
    session.begin()

    async def scenario():
        task = asyncio.create_task(backend.speak("Hello", SpeakRequest(voice_id="adam")))
        await wait_until(lambda: players.players and players.players[0].playing)
        assert session.active_backend is BackendKind.REMOTE
        assert session.handle is players.players[0]
        assert backend.is_speaking()
        backend.cancel()
        return await task

    result = asyncio.run(scenario())
    assert result.ok and result.cancelled
    assert players.players[0].stopped
    assert not backend.is_speaking()


def test_remote_superseded_while_fetching(session):
    """A session cancelled mid-request never starts playback."""
    client = FakeClient()
    client.on_request = session.cancel
    players = PlayerFactory()
    backend = RemoteBackend(client, session, player_factory=players)
    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="adam")))
    assert result.cancelled
    assert players.players == []


def test_remote_pause_resume_and_volume(session):
    """Transport controls act on the live player."""
    players = PlayerFactory(hold=True)
    backend = RemoteBackend(FakeClient(), session, player_factory=players)

    async def scenario():
        task = asyncio.create_task(backend.speak("Hello", SpeakRequest(voice_id="adam")))
        await wait_until(lambda: players.players and players.players[0].playing)
        player = players.players[0]
        backend.pause()
        assert backend.is_paused() and not backend.is_speaking()
        backend.resume()
        assert not backend.is_paused()
        backend.set_volume(0.2)
        assert player.volume == 0.2
        player.finish()
        return await task

    assert asyncio.run(scenario()).ok


def test_remote_availability_follows_client(session):
    """Unconfigured clients make the backend unavailable."""
    assert not RemoteBackend(FakeClient(configured=False), session).available()
    assert RemoteBackend(FakeClient(), session).available()


# --- Local ---

def test_local_speaks_and_registers_handle(session):
    """The utterance becomes the session handle while it plays."""
    engine = FakeEngine()
    backend = LocalBackend(engine, session)
    events = []
    session.subscribe(lambda s, event, previous: events.append((event, s.active_backend)))
    session.begin()

    request = SpeakRequest(voice_id="adam", rate=1.2, volume=0.6, local_voice="Fiona")
    result = asyncio.run(backend.speak("Hello", request))

    assert result.ok and not result.cancelled
    assert (SessionEvent.SEGMENT_STARTED, BackendKind.LOCAL) in events
    utterance = engine.utterances[0]
    assert (utterance.text, utterance.voice, utterance.rate, utterance.volume) == ("Hello", "Fiona", 1.2, 0.6)
    assert engine.cancel_count == 1
    assert session.handle is None


def test_local_resumes_paused_engine_first(session):
    """A paused engine is cleared before the next utterance."""
    engine = FakeEngine()
    engine.paused = True
    result = asyncio.run(LocalBackend(engine, session).speak("Hello", SpeakRequest(voice_id="x")))
    assert result.ok
    assert not engine.paused


def test_local_cancel_is_not_a_failure(session):
    """A 'canceled' error from the engine ends the call normally."""
    engine = FakeEngine(outcome="canceled")
    result = asyncio.run(LocalBackend(engine, session).speak("Hello", SpeakRequest(voice_id="x")))
    assert result.ok and result.cancelled


def test_local_engine_error(session):
    """Other engine errors are engine failures."""
    engine = FakeEngine(outcome="synthesis-failed")
    result = asyncio.run(LocalBackend(engine, session).speak("Hello", SpeakRequest(voice_id="x")))
    assert not result.ok
    assert result.kind is FailureKind.ENGINE
    assert result.error.error == "synthesis-failed"


def test_local_unavailable(session):
    """No platform engine means an unavailable failure, nothing spoken."""
    engine = FakeEngine(is_available=False)
    backend = LocalBackend(engine, session)
    assert not backend.available()
    result = asyncio.run(backend.speak("Hello", SpeakRequest(voice_id="x")))
    assert result.kind is FailureKind.UNAVAILABLE
    assert engine.utterances == []
