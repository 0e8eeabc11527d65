"""Self-scheduling runner that repeats an ingestion cycle on a fixed interval."""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from dayroll.exceptions import ConfigurationError, SchedulerCycleError
from dayroll.logging import get_logger

logger = get_logger(__name__)

CycleFn = Callable[[], Awaitable[Any]]
ErrorSink = Callable[[SchedulerCycleError], None]


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    WAITING = "waiting"
    RUNNING = "running"


class IngestionScheduler:
    """
    Runs a cycle, waits `interval` seconds after it finishes, runs it again.

    Only one cycle is ever in flight: a timer firing while a cycle is still
    running is a no-op. A failing cycle is reported to the error sink and
    the schedule carries on. stop() lets an in-flight cycle finish but
    schedules nothing further.

    Must be started from within a running event loop.
    """

    def __init__(
        self,
        run_cycle: CycleFn,
        interval: float,
        run_on_start: bool = True,
        on_error: ErrorSink | None = None,
    ):
        if interval <= 0:
            raise ConfigurationError(
                "Scheduler interval must be greater than zero",
                {"interval": interval},
            )
        self._run_cycle = run_cycle
        self.interval = interval
        self.run_on_start = run_on_start
        self._on_error = on_error

        self._active = False
        self._running = False
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self.cycles_started = 0

    @property
    def state(self) -> SchedulerState:
        if self._running:
            return SchedulerState.RUNNING
        if self._active:
            return SchedulerState.WAITING
        return SchedulerState.STOPPED

    def is_active(self) -> bool:
        return self._active

    def is_running(self) -> bool:
        return self._running

    def start(self, run_immediately: bool | None = None) -> None:
        """Activate the schedule; no-op if already active."""
        if self._active:
            return
        self._active = True
        if run_immediately is None:
            run_immediately = self.run_on_start

        logger.info("Scheduler started", interval=self.interval, run_immediately=run_immediately)
        if run_immediately:
            self._fire()
        else:
            self._schedule_next()

    def stop(self) -> None:
        """Deactivate and cancel the armed timer."""
        if self._active:
            logger.info("Scheduler stopped", cycle_in_flight=self._running)
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait_idle(self) -> None:
        """Wait for an in-flight cycle, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def tick(self) -> None:
        """Run one cycle unless inactive or one is already running."""
        if not self._active or self._running:
            return
        self._running = True
        self.cycles_started += 1
        try:
            await self._run_cycle()
        except Exception as e:
            self._report(SchedulerCycleError(e))
        finally:
            self._running = False
            self._schedule_next()

    def _fire(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self.tick())

    def _schedule_next(self) -> None:
        if not self._active:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.interval, self._fire)

    def _report(self, error: SchedulerCycleError) -> None:
        logger.error(
            "Ingestion cycle failed",
            error=str(error.cause),
            error_type=type(error.cause).__name__,
            exc_info=error.cause,
        )
        if self._on_error is not None:
            self._on_error(error)
