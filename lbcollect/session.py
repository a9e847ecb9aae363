"""State machines for the collection loops.

Neither class touches the network; the engine drives them and performs
the I/O each state calls for.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class InvalidTransition(RuntimeError):
    """A state machine was asked to make a move its current state forbids."""


class SessionState(enum.Enum):
    NEED_ROOT = "need_root"
    HAVE_ROOT = "have_root"
    CONSUMING_BATCH = "consuming_batch"
    ROOT_INVALID = "root_invalid"
    DONE = "done"


_SESSION_TRANSITIONS = {
    SessionState.NEED_ROOT: {SessionState.HAVE_ROOT, SessionState.DONE},
    SessionState.HAVE_ROOT: {SessionState.CONSUMING_BATCH, SessionState.DONE},
    SessionState.CONSUMING_BATCH: {
        SessionState.HAVE_ROOT,
        SessionState.ROOT_INVALID,
        SessionState.DONE,
    },
    SessionState.ROOT_INVALID: {SessionState.NEED_ROOT},
    SessionState.DONE: set(),
}


@dataclass
class LocationSession:
    """Pinned-session collection for one (host, location) pair.

    NEED_ROOT -> HAVE_ROOT -> CONSUMING_BATCH -> HAVE_ROOT ... -> DONE,
    with CONSUMING_BATCH -> ROOT_INVALID -> NEED_ROOT when the pinned
    probe disappears.
    """

    location: str
    target: int
    state: SessionState = SessionState.NEED_ROOT
    session_id: Optional[str] = None
    requests_done: int = 0

    def __post_init__(self) -> None:
        if self.target <= 0:
            self.state = SessionState.DONE

    @property
    def done(self) -> bool:
        return self.state is SessionState.DONE

    @property
    def needs_root(self) -> bool:
        return self.state in (SessionState.NEED_ROOT, SessionState.ROOT_INVALID)

    def root_created(self, session_id: str) -> None:
        if self.state is SessionState.ROOT_INVALID:
            self._move(SessionState.NEED_ROOT)
        self._move(SessionState.HAVE_ROOT)
        self.session_id = session_id
        self._count_request()

    def start_batch(self) -> None:
        self._move(SessionState.CONSUMING_BATCH)

    def result_recorded(self) -> None:
        if self.state is not SessionState.CONSUMING_BATCH:
            raise InvalidTransition(f"Cannot record a session result in state {self.state.name}")
        self._count_request()

    def end_batch(self) -> None:
        """Quota drained: back to HAVE_ROOT to wait at the gate."""
        if self.state is SessionState.CONSUMING_BATCH:
            self._move(SessionState.HAVE_ROOT)

    def invalidate(self) -> None:
        """The pinned probe is gone; the next request must create a new root."""
        self._move(SessionState.ROOT_INVALID)
        self.session_id = None

    def _count_request(self) -> None:
        self.requests_done += 1
        if self.requests_done >= self.target:
            self._move(SessionState.DONE)

    def _move(self, new_state: SessionState) -> None:
        if new_state not in _SESSION_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.name} -> {new_state.name}")
        self.state = new_state


@dataclass
class SweepCursor:
    """Position of a full sweep over an ordered vantage-point list.

    The cursor advances when the coverage rule is satisfied, when the
    per-probe cap is reached, or after ``max_failures`` consecutive
    failures on the same probe.
    """

    total: int
    max_failures: int
    min_requests: int = 0
    max_requests_per_probe: Optional[int] = None
    index: int = 0
    consecutive_failures: int = 0
    requests_on_probe: int = 0
    requests_total: int = 0

    @property
    def done(self) -> bool:
        return self.index >= self.total

    @property
    def progress(self) -> tuple[int, int]:
        return (min(self.index, self.total), self.total)

    def record_failure(self) -> bool:
        """Count a failed attempt; return True if the cursor moved on."""
        self.requests_on_probe += 1
        self.requests_total += 1
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.advance()
            return True
        return False

    def record_success(self, should_continue: bool, requests: int = 1) -> bool:
        """Count *requests* successful attempts; return True if the cursor moved on."""
        self.requests_on_probe += requests
        self.requests_total += requests
        self.consecutive_failures = 0
        capped = (
            self.max_requests_per_probe is not None
            and self.requests_on_probe >= self.max_requests_per_probe
        )
        exhausted = self.requests_on_probe > self.min_requests and not should_continue
        if capped or exhausted:
            self.advance()
            return True
        return False

    def advance(self) -> None:
        if self.done:
            raise InvalidTransition("Sweep already finished")
        self.index += 1
        self.requests_on_probe = 0
        self.consecutive_failures = 0
