"""Explicit lifecycle for one check-in recording."""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SCORING = "scoring"
    COMPLETE = "complete"
    ERROR = "error"


# Insufficient speech and cancelled capture return to IDLE
TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.CAPTURING, PipelineState.PROCESSING}),
    PipelineState.CAPTURING: frozenset({PipelineState.PROCESSING, PipelineState.IDLE, PipelineState.ERROR}),
    PipelineState.PROCESSING: frozenset({PipelineState.SCORING, PipelineState.IDLE, PipelineState.ERROR}),
    PipelineState.SCORING: frozenset({PipelineState.COMPLETE, PipelineState.ERROR}),
    PipelineState.COMPLETE: frozenset({PipelineState.IDLE, PipelineState.CAPTURING, PipelineState.PROCESSING}),
    PipelineState.ERROR: frozenset({PipelineState.IDLE}),
}

Listener = Callable[[PipelineState, PipelineState], None]


class PipelineStateMachine:
    """
    Thread-safe state holder; listeners run after each transition with
    (previous, current).
    """

    def __init__(self):
        self._state = PipelineState.IDLE
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def can_transition(self, target: PipelineState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: PipelineState, error: Optional[BaseException] = None) -> None:
        """
        Raises:
            InvalidStateTransition: If target is not reachable from the current state
        """
        with self._lock:
            previous = self._state
            if target not in TRANSITIONS[previous]:
                raise InvalidStateTransition(previous.value, target.value)
            self._state = target
            if target == PipelineState.ERROR:
                self.last_error = error
            elif target == PipelineState.IDLE:
                self.last_error = None

        logger.debug(f"Pipeline state: {previous.value} -> {target.value}")
        for listener in list(self._listeners):
            listener(previous, target)

    def fail(self, error: BaseException) -> None:
        """Move to ERROR from any non-terminal state."""
        if self._state in (PipelineState.ERROR, PipelineState.IDLE, PipelineState.COMPLETE):
            with self._lock:
                self.last_error = error
            return
        self.transition(PipelineState.ERROR, error)

    def reset(self) -> None:
        if self._state != PipelineState.IDLE:
            self.transition(PipelineState.IDLE)
