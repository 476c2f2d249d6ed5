"""
Per-stage lifecycle.

Every stage walks a fixed transition table:

    PENDING -> READY -> EXECUTING -> SUCCEEDED -> RESOLVED
                                  -> FAILED    -> RESOLVED
                                  -> AWAITING_APPROVAL -> EXECUTING (regenerate)
                                                       -> SUCCEEDED / FAILED
    PENDING -> SKIPPED -> RESOLVED
    PENDING / READY -> FAILED (workflow timeout)

Any other move is a programming error and raises ``IllegalTransitionError``.
"""

import time
from dataclasses import dataclass, field

from ..exceptions import ConductorError
from ..observability.logging import get_logger
from .models import StageStatus

logger = get_logger(__name__)

S = StageStatus


class IllegalTransitionError(ConductorError):
    def __init__(self, stage_id: str, from_state: StageStatus, to_state: StageStatus):
        super().__init__(f"Stage '{stage_id}': illegal transition {from_state.value} -> {to_state.value}")
        self.stage_id = stage_id
        self.from_state = from_state
        self.to_state = to_state


@dataclass(frozen=True)
class Transition:
    from_state: StageStatus
    to_state: StageStatus
    event: str


TRANSITIONS: tuple[Transition, ...] = (
    Transition(S.PENDING, S.READY, "dependencies_met"),
    Transition(S.PENDING, S.SKIPPED, "skip"),
    Transition(S.PENDING, S.FAILED, "timeout"),
    Transition(S.READY, S.EXECUTING, "dispatch"),
    Transition(S.READY, S.SKIPPED, "skip"),
    Transition(S.READY, S.FAILED, "timeout"),
    Transition(S.EXECUTING, S.SUCCEEDED, "complete"),
    Transition(S.EXECUTING, S.FAILED, "fail"),
    Transition(S.EXECUTING, S.AWAITING_APPROVAL, "await_approval"),
    Transition(S.AWAITING_APPROVAL, S.EXECUTING, "regenerate"),
    Transition(S.AWAITING_APPROVAL, S.SUCCEEDED, "approve"),
    Transition(S.AWAITING_APPROVAL, S.FAILED, "fail"),
    Transition(S.SUCCEEDED, S.RESOLVED, "resolve"),
    Transition(S.FAILED, S.RESOLVED, "resolve"),
    Transition(S.SKIPPED, S.RESOLVED, "resolve"),
)

_ALLOWED = {(t.from_state, t.to_state) for t in TRANSITIONS}

TERMINAL = frozenset({S.SUCCEEDED, S.FAILED, S.SKIPPED})


@dataclass
class StageLifecycle:
    stage_id: str
    state: StageStatus = StageStatus.PENDING
    history: list[tuple[StageStatus, float]] = field(default_factory=list)

    def __post_init__(self):
        self.history.append((self.state, time.time()))

    def transition(self, to_state: StageStatus) -> None:
        if (self.state, to_state) not in _ALLOWED:
            raise IllegalTransitionError(self.stage_id, self.state, to_state)
        logger.debug(f"Stage '{self.stage_id}': {self.state.value} -> {to_state.value}")
        self.state = to_state
        self.history.append((to_state, time.time()))

    @property
    def is_resolved(self) -> bool:
        return self.state == StageStatus.RESOLVED

    @property
    def final_status(self) -> StageStatus | None:
        """Terminal status the stage resolved with, if it has one yet."""
        for state, _ in reversed(self.history):
            if state in TERMINAL:
                return state
        return None

    def entered_at(self, state: StageStatus) -> float | None:
        for recorded, at in self.history:
            if recorded == state:
                return at
        return None
