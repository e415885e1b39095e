"""
Live dual-run migration session.

A session starts ``idle``, splits traffic between the legacy system and the
target while in ``dual_run``, and ends in either ``cutover`` (everything to
the target) or ``rolled_back`` (everything to legacy). The two end states
are locked: a new session is needed to start over.

Routing is an independent coin flip per call at the current percentage.
Nothing ties a given job key to one side, so the same legacy job submitted
twice may land on different systems.
"""

import logging
import random
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import StateConflict

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    DUAL_RUN = "dual_run"
    CUTOVER = "cutover"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class StatsSnapshot:
    routed_to_target: int
    routed_to_legacy: int
    errors: int

    def to_dict(self) -> dict[str, int]:
        return {
            "routed_to_target": self.routed_to_target,
            "routed_to_legacy": self.routed_to_legacy,
            "errors": self.errors,
        }


class SessionStats:
    """Monotonic routing counters shared by concurrent requests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._routed_to_target = 0
        self._routed_to_legacy = 0
        self._errors = 0

    def record_target(self) -> None:
        with self._lock:
            self._routed_to_target += 1

    def record_legacy(self) -> None:
        with self._lock:
            self._routed_to_legacy += 1

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(self._routed_to_target, self._routed_to_legacy, self._errors)


def _check_percentage(percentage: int) -> int:
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise ValueError("percentage must be an integer")
    if not 0 <= percentage <= 100:
        raise ValueError(f"percentage must be between 0 and 100, got {percentage}")
    return percentage


class MigrationSession:
    def __init__(
        self,
        source: str,
        session_id: str | None = None,
        stats: SessionStats | None = None,
        rng: random.Random | None = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.source = source
        self.stats = stats or SessionStats()
        self.created_at = datetime.now(timezone.utc)
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None
        self.rollback_reason: str | None = None

        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._percentage = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def percentage(self) -> int:
        return self._percentage

    def start_dual_run(self, percentage: int) -> SessionState:
        percentage = _check_percentage(percentage)
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise StateConflict(f"cannot start dual run from state {self._state.value}")
            self._percentage = percentage
            self._state = SessionState.DUAL_RUN
            self.started_at = datetime.now(timezone.utc)
        logger.info(f"Session {self.id}: dual run started at {percentage}% to target")
        return SessionState.DUAL_RUN

    def set_percentage(self, percentage: int) -> int:
        percentage = _check_percentage(percentage)
        with self._lock:
            if self._state is not SessionState.DUAL_RUN:
                raise StateConflict(f"cannot change percentage in state {self._state.value}")
            previous = self._percentage
            self._percentage = percentage
        logger.info(f"Session {self.id}: percentage {previous}% -> {percentage}%")
        return percentage

    def cutover(self) -> SessionState:
        with self._lock:
            if self._state is not SessionState.DUAL_RUN:
                raise StateConflict(f"cannot cut over from state {self._state.value}")
            self._percentage = 100
            self._state = SessionState.CUTOVER
            self.ended_at = datetime.now(timezone.utc)
        logger.info(f"Session {self.id}: cut over, 100% of traffic to target")
        return SessionState.CUTOVER

    def rollback(self, reason: str) -> SessionState:
        if not reason or not reason.strip():
            raise ValueError("a rollback reason is required")
        with self._lock:
            if self._state not in (SessionState.DUAL_RUN, SessionState.CUTOVER):
                raise StateConflict(f"cannot roll back from state {self._state.value}")
            self._percentage = 0
            self._state = SessionState.ROLLED_BACK
            self.rollback_reason = reason.strip()
            self.ended_at = datetime.now(timezone.utc)
        logger.warning(f"Session {self.id}: rolled back ({self.rollback_reason})")
        return SessionState.ROLLED_BACK

    def should_route_to_target(self) -> bool:
        # One read of the percentage per decision; no lock needed for an int.
        percentage = self._percentage
        if percentage <= 0:
            return False
        if percentage >= 100:
            return True
        return self._rng.randrange(100) < percentage

    def status(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "source": self.source,
            "state": self._state.value,
            "percentage": self._percentage,
            "rollback_reason": self.rollback_reason,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "stats": self.stats.snapshot().to_dict(),
        }
