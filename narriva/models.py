"""Data models for story narration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


@dataclass(frozen=True)
class StoryNode:
    id: str
    content: str
    metadata: dict = field(default_factory=dict)   # genre, mood, setting


@dataclass
class Segment:
    text: str
    speaker: str | None = None   # None for narrator text
    voice: str = ""              # populated by assign_voices()


class BackendKind(str, Enum):
    NONE = "none"
    REMOTE = "remote"
    LOCAL = "local"


class FailureKind(str, Enum):
    TRANSPORT = "transport"
    QUOTA = "quota"
    AUTH = "auth"
    UNSUPPORTED_VOICE = "unsupported_voice"
    DECODE = "decode"
    PLAYBACK = "playback"
    ENGINE = "engine"
    UNAVAILABLE = "unavailable"


class SynthesisError(Exception):
    """A remote synthesis request failed."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(message)
        self.kind = kind


class NarrationUnavailable(Exception):
    """Neither the remote service nor the local engine can speak."""


@dataclass(frozen=True)
class SpeakResult:
    """Outcome of one adapter speak() call.

    A cancelled result is not a failure: the caller tore the handle down
    on purpose and the orchestrator decides what happens next.
    """

    ok: bool
    kind: FailureKind | None = None
    error: BaseException | None = None
    cancelled: bool = False

    @classmethod
    def success(cls) -> "SpeakResult":
        return cls(ok=True)

    @classmethod
    def interrupted(cls) -> "SpeakResult":
        return cls(ok=True, cancelled=True)

    @classmethod
    def failure(cls, kind: FailureKind, error: BaseException | None = None) -> "SpeakResult":
        return cls(ok=False, kind=kind, error=error)


@dataclass
class SpeakRequest:
    voice_id: str
    rate: float = 1.0
    volume: float = 1.0
    local_voice: str | None = None   # platform voice name or id


@dataclass
class NarrationOptions:
    voice_id: str = ""               # empty: narrator archetype
    rate: float = 1.0
    volume: float = 1.0
    use_character_voices: bool = True
    local_voice: str | None = None
    on_start: Callable[[], Any] | None = None
    on_progress: Callable[[float], Any] | None = None
    on_pause: Callable[[], Any] | None = None
    on_resume: Callable[[], Any] | None = None
    on_end: Callable[[], Any] | None = None
    on_error: Callable[[BaseException], Any] | None = None


@dataclass(frozen=True)
class VoiceDescriptor:
    id: str
    name: str
    languages: tuple = ()
    gender: str | None = None
