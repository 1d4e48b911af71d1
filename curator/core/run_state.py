"""Observable lifecycle of a long-running sync or categorization run."""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# ── Lifecycle ────────────────────────────────────────────────────────

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
ERROR = "error"

SYNC_COUNTERS = ("imported", "skipped", "approved", "pending", "failed")
CATEGORIZATION_COUNTERS = ("successful", "failed", "skipped")
ABSTRACT_REFRESH_COUNTERS = ("updated", "failed")


class RunConflictError(RuntimeError):
    """A run of this kind is already in progress."""


class RunState:
    """Single-writer status record polled by readers.

    ``idle → running → completed | error``; finished states fall back to
    ``idle`` once ``cooldown_seconds`` have passed or on ``reset()``. The
    revert happens lazily whenever the state is read.
    """

    def __init__(
        self,
        kind: str,
        counters: tuple[str, ...] = (),
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.kind = kind
        self.counter_names = tuple(counters)
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.last_success_at: Optional[float] = None
        self._clear()

    def _clear(self) -> None:
        self._status = IDLE
        self.label: Optional[str] = None
        self.phase: Optional[str] = None
        self.processed = 0
        self.total = 0
        self.counters: dict[str, int] = {name: 0 for name in self.counter_names}
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self.error: Optional[str] = None
        self.current_item: Optional[str] = None

    # ── Status ───────────────────────────────────────────────

    @property
    def status(self) -> str:
        self._maybe_revert()
        return self._status

    def is_running(self) -> bool:
        return self.status == RUNNING

    def _maybe_revert(self) -> None:
        if self._status not in (COMPLETED, ERROR) or self.ended_at is None:
            return
        if self._clock() - self.ended_at >= self.cooldown_seconds:
            logger.debug("%s run state reverted to idle after cool-down", self.kind)
            self._clear()

    # ── Transitions ──────────────────────────────────────────

    def start(self, label: str, total: int = 0) -> None:
        """Enter ``running``. Raises RunConflictError if already running."""
        if self.is_running():
            raise RunConflictError(f"{self.kind} run already in progress ({self.label})")
        self._clear()
        self._status = RUNNING
        self.label = label
        self.total = total
        self.started_at = self._clock()
        logger.info("%s run started: %s", self.kind, label)

    def complete(self) -> None:
        if self._status != RUNNING:
            return
        now = self._clock()
        self._status = COMPLETED
        self.ended_at = now
        self.last_success_at = now
        self.current_item = None
        logger.info("%s run completed: %d processed", self.kind, self.processed)

    def fail(self, message: str) -> None:
        self._status = ERROR
        self.ended_at = self._clock()
        self.error = message
        self.current_item = None
        logger.error("%s run failed: %s", self.kind, message)

    def reset(self) -> None:
        self._clear()

    # ── Progress ─────────────────────────────────────────────

    def update_phase(self, phase: str) -> None:
        if self._status != RUNNING:
            return
        self.phase = phase
        logger.info("%s: %s", self.kind, phase)

    def update_progress(
        self,
        processed: int,
        total: Optional[int] = None,
        current_item: Optional[str] = None,
    ) -> None:
        """Set progress; ``processed`` never moves backwards."""
        if self._status != RUNNING:
            return
        self.processed = max(self.processed, processed)
        if total is not None:
            self.total = total
        if current_item is not None:
            self.current_item = current_item

    def increment(self, counter: str, amount: int = 1) -> None:
        if self._status != RUNNING:
            return
        if counter not in self.counters:
            raise ValueError(f"Unknown counter for {self.kind}: {counter}")
        self.counters[counter] += amount

    def set_counters(self, **values: int) -> None:
        if self._status != RUNNING:
            return
        unknown = set(values) - set(self.counters)
        if unknown:
            raise ValueError(f"Unknown counters for {self.kind}: {sorted(unknown)}")
        self.counters.update(values)

    # ── Reporting ────────────────────────────────────────────

    def eta_seconds(self) -> Optional[float]:
        """Elapsed time per processed unit times the units remaining."""
        if self._status != RUNNING or self.started_at is None:
            return None
        if self.processed <= 0 or self.total <= self.processed:
            return None
        elapsed = self._clock() - self.started_at
        return round(elapsed / self.processed * (self.total - self.processed), 1)

    def snapshot(self) -> dict:
        status = self.status
        return {
            "kind": self.kind,
            "status": status,
            "label": self.label,
            "phase": self.phase,
            "processed": self.processed,
            "total": self.total,
            "counters": dict(self.counters),
            "current_item": self.current_item,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "error": self.error,
            "eta_seconds": self.eta_seconds(),
            "last_success_at": _iso(self.last_success_at),
        }


# ── Helpers ──────────────────────────────────────────────────────────


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()
