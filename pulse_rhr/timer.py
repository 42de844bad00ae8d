"""Fixed-duration countdown with per-second ticks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Awaitable[None]]
ExpireCallback = Callable[[], Awaitable[None]]


class SessionTimer:
    """Countdown that ticks once per interval and expires once at zero.

    Only one run is active at a time; start() stops any previous run.
    """

    def __init__(self, interval: float = 1.0):
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._run_id = 0
        self._remaining: int | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def remaining(self) -> int | None:
        return self._remaining

    def start(self, duration_seconds: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        """Start a countdown of duration_seconds ticks."""
        if duration_seconds <= 0:
            raise ValueError(f"Timer duration must be positive, got {duration_seconds}")
        self.stop()
        self._run_id += 1
        self._remaining = duration_seconds
        self._task = asyncio.create_task(self._run(self._run_id, duration_seconds, on_tick, on_expire))
        logger.debug("Timer started: %ds", duration_seconds)

    def stop(self) -> None:
        """Cancel pending ticks. Safe from any state, including callbacks."""
        if not self.running:
            return
        self._run_id += 1
        # Never cancel ourselves from inside a callback; the run id check ends the loop
        if self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None
        logger.debug("Timer stopped")

    def _is_current(self, run_id: int) -> bool:
        return run_id == self._run_id

    async def _run(self, run_id: int, duration: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()

        for elapsed in range(1, duration + 1):
            # Sleep to absolute deadlines so slow callbacks don't accumulate drift
            deadline = started + elapsed * self._interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if not self._is_current(run_id):
                return
            self._remaining = duration - elapsed
            await on_tick(self._remaining)
            if not self._is_current(run_id):
                return

        self._task = None
        logger.debug("Timer expired")
        await on_expire()
