"""Periodic background jobs (expired-session purge, idle rate-limit eviction)."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("gatekeeper")


class PeriodicTask:
    """Runs ``job`` every ``interval`` seconds until stopped.

    A failing iteration is logged and the loop carries on; the next run
    gets a fresh chance.
    """

    def __init__(self, name: str, interval: float, job: Callable[[], Awaitable[object]]):
        self.name = name
        self.interval = interval
        self._job = job
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Started %s every %ss", self.name, self.interval)

    async def run_once(self) -> object:
        return await self._job()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._job()
            except Exception:
                logger.exception("%s failed", self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
