"""
Action poller: wait for an asynchronous remote action to reach a terminal state.

Config (from AppConfig.poller, or per kind):
poller:
  interval_sec: 5.0     # fixed tick between status reads
  timeout_sec:  300.0   # default deadline when the caller gives none

The loop sleeps first, then reads the task. A tick scheduled after the
deadline is never performed: the poller sleeps until the deadline and reports
TIMED_OUT. The remote action is not cancelled; it may still finish later.
Transient read failures are logged and retried on the next tick.

The `deadline + interval` bound assumes a status read returns promptly. Give
the fetcher a gateway without its own retries (see `Reconciler(poll_gateway=...)`)
so a slow read cannot stretch the wait by a whole backoff cycle.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ActionFailed, TimedOut, TransientError
from .models import RemoteActionTask, TaskStatus

TaskFetcher = Callable[[RemoteActionTask], RemoteActionTask]


class PollState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class SystemClock:
    """Monotonic wall clock; tests substitute a fake with the same two methods."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass
class PollerConfig:
    interval_sec: float = 5.0
    timeout_sec: float = 300.0

    def __post_init__(self) -> None:
        if self.interval_sec <= 0:
            raise ValueError("PollerConfig.interval_sec must be > 0")
        if self.timeout_sec < 0:
            raise ValueError("PollerConfig.timeout_sec must be >= 0")


@dataclass(frozen=True)
class PollResult:
    state: PollState
    task: RemoteActionTask
    polls: int
    elapsed: float


class ActionPoller:
    """Blocking, bounded wait loop over a task status endpoint."""

    def __init__(
        self,
        cfg: Optional[PollerConfig] = None,
        *,
        clock: Optional[SystemClock] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.cfg = cfg or PollerConfig()
        self.clock = clock or SystemClock()
        self.log = logger or logging.getLogger("drec.poller")

    def wait(
        self,
        task: RemoteActionTask,
        fetch: TaskFetcher,
        *,
        timeout_sec: Optional[float] = None,
    ) -> PollResult:
        """
        Re-read `task` every interval until completed/failed or the deadline.
        Returns a PollResult; never raises for FAILED or TIMED_OUT (see raise_for_result).
        """
        timeout = self.cfg.timeout_sec if timeout_sec is None else float(timeout_sec)
        interval = float(self.cfg.interval_sec)
        start = self.clock.now()
        deadline = start + timeout
        next_tick = start + interval
        current = task
        polls = 0
        state = PollState.RUNNING if task.status is TaskStatus.RUNNING else PollState.PENDING

        if task.status.terminal:
            return PollResult(PollState(task.status.value), task, 0, 0.0)

        while True:
            if next_tick > deadline:
                self.clock.sleep(deadline - self.clock.now())
                elapsed = self.clock.now() - start
                self.log.warning(
                    "task %s on %s still %s after %.1fs; giving up waiting (remote action not cancelled)",
                    current.task_id, current.target_resource_id, state.value, elapsed,
                )
                return PollResult(PollState.TIMED_OUT, current, polls, elapsed)

            self.clock.sleep(next_tick - self.clock.now())
            next_tick += interval
            polls += 1
            try:
                current = fetch(current)
            except TransientError as e:
                self.log.warning("task %s status read failed (poll %d), retrying: %s", task.task_id, polls, e)
                continue

            if current.status.terminal:
                elapsed = self.clock.now() - start
                self.log.debug(
                    "task %s reached %s after %d poll(s), %.1fs",
                    current.task_id, current.status.value, polls, elapsed,
                )
                return PollResult(PollState(current.status.value), current, polls, elapsed)

            state = PollState.RUNNING if current.status is TaskStatus.RUNNING else PollState.PENDING
            self.log.debug("task %s status: %s, continuing to wait", current.task_id, current.status.value)


def raise_for_result(result: PollResult, *, identity: str = "") -> RemoteActionTask:
    """Map FAILED to ActionFailed and TIMED_OUT to TimedOut; return the task otherwise."""
    task = result.task
    if result.state is PollState.FAILED:
        detail = task.message or "no status message"
        raise ActionFailed(f"action {task.task_id} failed: {detail}", task=task, identity=identity)
    if result.state is PollState.TIMED_OUT:
        raise TimedOut(
            f"timeout waiting for action {task.task_id}; last_status='{task.status.value}'",
            task=task,
            identity=identity,
        )
    return task
