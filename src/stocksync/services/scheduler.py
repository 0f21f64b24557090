from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

log = logging.getLogger(__name__)

Task = Callable[[], object]


class Scheduler(Protocol):
    def every(self, interval: float, fn: Task) -> None: ...
    def on_became_visible(self, fn: Task) -> None: ...
    def on_unload(self, fn: Task) -> None: ...


@dataclass
class _Periodic:
    interval: float
    fn: Task
    next_run: float


class ManualScheduler:
    """Scheduler driven explicitly by the caller; time only moves on `advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self._periodic: list[_Periodic] = []
        self._visible: list[Task] = []
        self._unload: list[Task] = []

    def every(self, interval: float, fn: Task) -> None:
        self._periodic.append(_Periodic(float(interval), fn, self.now + float(interval)))

    def on_became_visible(self, fn: Task) -> None:
        self._visible.append(fn)

    def on_unload(self, fn: Task) -> None:
        self._unload.append(fn)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and run every periodic task that came due. Returns the run count."""
        target = self.now + float(seconds)
        runs = 0
        while True:
            due = [p for p in self._periodic if p.next_run <= target]
            if not due:
                break
            task = min(due, key=lambda p: p.next_run)
            self.now = task.next_run
            task.next_run += task.interval
            task.fn()
            runs += 1
        self.now = target
        return runs

    def became_visible(self) -> None:
        for fn in list(self._visible):
            fn()

    def unload(self) -> None:
        for fn in list(self._unload):
            try:
                fn()
            except Exception:
                log.exception("unload_hook_failed")


class BlockingScheduler(ManualScheduler):
    """Single-threaded loop over real time, for headless runs."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self._sleep = sleep
        self._clock = clock
        self.now = clock()
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    def run(self, max_runs: int | None = None) -> None:
        runs = 0
        try:
            while not self._stopped and self._periodic:
                next_due = min(p.next_run for p in self._periodic)
                delay = next_due - self._clock()
                if delay > 0:
                    self._sleep(delay)
                runs += self.advance(max(0.0, self._clock() - self.now))
                if max_runs is not None and runs >= max_runs:
                    break
        finally:
            self.unload()
