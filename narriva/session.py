"""Playback session: the narration state machine and its observers."""

import logging
from enum import Enum
from typing import Any, Callable

from narriva.models import BackendKind

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    SPEAKING = "speaking"
    PAUSED = "paused"
    ERRORED = "errored"
    ENDED = "ended"


class SessionEvent(str, Enum):
    BEGIN = "begin"
    SEGMENT_STARTED = "segment_started"
    SEGMENT_FAILED = "segment_failed"
    SEGMENT_COMPLETED = "segment_completed"
    PAUSE = "pause"
    RESUME = "resume"
    FINISH = "finish"
    ABORT = "abort"
    RESET = "reset"
    CANCEL = "cancel"


_S = SessionState
_E = SessionEvent

TRANSITIONS = {
    (_S.IDLE, _E.BEGIN): _S.STARTING,
    (_S.STARTING, _E.SEGMENT_STARTED): _S.SPEAKING,
    (_S.SPEAKING, _E.SEGMENT_STARTED): _S.SPEAKING,
    (_S.STARTING, _E.SEGMENT_FAILED): _S.ERRORED,
    (_S.SPEAKING, _E.SEGMENT_FAILED): _S.ERRORED,
    (_S.PAUSED, _E.SEGMENT_FAILED): _S.ERRORED,
    (_S.STARTING, _E.SEGMENT_COMPLETED): _S.STARTING,
    (_S.SPEAKING, _E.SEGMENT_COMPLETED): _S.STARTING,
    (_S.PAUSED, _E.SEGMENT_COMPLETED): _S.STARTING,
    (_S.ERRORED, _E.SEGMENT_COMPLETED): _S.STARTING,
    (_S.SPEAKING, _E.PAUSE): _S.PAUSED,
    (_S.PAUSED, _E.RESUME): _S.SPEAKING,
    (_S.STARTING, _E.FINISH): _S.ENDED,
    (_S.IDLE, _E.ABORT): _S.ENDED,
    (_S.STARTING, _E.ABORT): _S.ENDED,
    (_S.SPEAKING, _E.ABORT): _S.ENDED,
    (_S.PAUSED, _E.ABORT): _S.ENDED,
    (_S.ERRORED, _E.ABORT): _S.ENDED,
    (_S.ENDED, _E.RESET): _S.IDLE,
}

ACTIVE_STATES = {_S.STARTING, _S.SPEAKING, _S.PAUSED, _S.ERRORED}

Observer = Callable[["PlaybackSession", SessionEvent, SessionState], Any]


class PlaybackSession:
    """The single live record of what is being narrated and by whom.

    All state changes go through transition(). Events that are not valid
    in the current state are ignored, which makes pause/resume/cancel safe
    to call at any time. CANCEL is accepted from every state.

    generation increases on every cancel; an adapter or orchestrator loop
    that captured an older generation has been superseded and must not
    touch the session again.
    """

    def __init__(self):
        self.state = SessionState.IDLE
        self.active_backend = BackendKind.NONE
        self.handle = None
        self.progress = 0.0
        self.total_segments = 0
        self.completed_segments = 0
        self.error: BaseException | None = None
        self.generation = 0
        self._observers: list[Observer] = []

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    def subscribe(self, observer: Observer) -> Observer:
        self._observers.append(observer)
        return observer

    def unsubscribe(self, observer: Observer):
        if observer in self._observers:
            self._observers.remove(observer)

    def transition(self, event: SessionEvent) -> bool:
        """Apply an event. Returns False if it is not valid in this state."""
        previous = self.state
        if event is SessionEvent.CANCEL:
            target = SessionState.IDLE
        else:
            target = TRANSITIONS.get((previous, event))
            if target is None:
                logger.debug("Ignoring %s in state %s", event.value, previous.value)
                return False

        self.state = target
        logger.debug("Session %s --%s--> %s", previous.value, event.value, target.value)
        for observer in list(self._observers):
            try:
                observer(self, event, previous)
            except Exception:
                logger.exception("Session observer failed on %s", event.value)
        return True

    def begin(self, total_segments: int = 0) -> bool:
        self.progress = 0.0
        self.total_segments = total_segments
        self.completed_segments = 0
        self.error = None
        return self.transition(SessionEvent.BEGIN)

    def activate(self, backend: BackendKind, handle, generation: int) -> bool:
        """Record the handle now producing sound. Stale generations are ignored."""
        if generation != self.generation:
            return False
        self.active_backend = backend
        self.handle = handle
        self.transition(SessionEvent.SEGMENT_STARTED)
        return True

    def release(self, handle):
        if handle is not None and self.handle is handle:
            self.handle = None
            self.active_backend = BackendKind.NONE

    def complete_segment(self) -> float:
        """Count one more segment as done and report the new progress."""
        self.completed_segments += 1
        if self.total_segments:
            fraction = min(1.0, self.completed_segments / self.total_segments)
        else:
            fraction = 1.0
        self.progress = max(self.progress, fraction)
        self.transition(SessionEvent.SEGMENT_COMPLETED)
        return self.progress

    def fail(self, error: BaseException) -> bool:
        self.error = error
        self.handle = None
        self.active_backend = BackendKind.NONE
        accepted = self.transition(SessionEvent.ABORT)
        self.transition(SessionEvent.RESET)
        return accepted

    def finish(self) -> bool:
        self.handle = None
        self.active_backend = BackendKind.NONE
        accepted = self.transition(SessionEvent.FINISH)
        self.transition(SessionEvent.RESET)
        return accepted

    def cancel(self) -> int:
        """Tear down unconditionally and return the new generation."""
        self.generation += 1
        self.handle = None
        self.active_backend = BackendKind.NONE
        self.transition(SessionEvent.CANCEL)
        return self.generation
