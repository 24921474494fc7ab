"""Shared fixtures for narriva tests."""

import numpy as np
import pytest
from pydub import AudioSegment

from narriva.config import NarrivaConfig
from narriva.session import PlaybackSession


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's own keys and config out of the tests."""
    for name in ("ELEVENLABS_API_KEY", "NARRIVA_REMOTE_PROVIDER", "NARRIVA_CONFIG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def no_pauses(monkeypatch):
    """Drop the pacing delays so narration tests run instantly."""
    monkeypatch.setattr("narriva.narrator.SEGMENT_PAUSE_SECONDS", 0)
    monkeypatch.setattr("narriva.narrator.CHUNK_PAUSE_SECONDS", 0)
    monkeypatch.setattr("narriva.backends.LOCAL_SETTLE_DELAY_SECONDS", 0)


@pytest.fixture
def session():
    return PlaybackSession()


@pytest.fixture
def config():
    """ElevenLabs archetypes, no key needed since backends are faked."""
    return NarrivaConfig()


@pytest.fixture
def tone():
    """10 mono frames at half amplitude, 1 kHz sample rate."""
    samples = np.full(10, 16384, dtype=np.int16)
    return AudioSegment(data=samples.tobytes(), sample_width=2, frame_rate=1000, channels=1)


@pytest.fixture
def story_text():
    """Narration, a described speaker and a closing line."""
    return (
        "It was dark in the hall.\n\n"
        "\"Who's there?\" asked the old man.\n\n"
        "Nobody answered."
    )
