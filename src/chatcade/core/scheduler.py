"""Cancellable periodic callbacks on the running asyncio loop."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

import structlog

LOGGER = structlog.get_logger(__name__)

TickCallback = Callable[[], Awaitable[bool]]


class Ticker:
    """Runs one chained callback per key until it returns ``False``.

    Callbacks must check that their target still exists before touching it;
    stopping a key only cancels the pending sleep.
    """

    def __init__(self, *, interval: float = 1.0) -> None:
        self.interval = interval
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    def start(self, key: str, callback: TickCallback, *, interval: float | None = None) -> None:
        self.stop(key)
        delay = self.interval if interval is None else interval
        self._tasks[key] = asyncio.get_running_loop().create_task(self._run(key, callback, delay))

    async def _run(self, key: str, callback: TickCallback, delay: float) -> None:
        try:
            while True:
                await asyncio.sleep(delay)
                try:
                    keep_going = await callback()
                except Exception as exc:  # noqa: BLE001
                    LOGGER.error("timer.failed", key=key, error=str(exc), exc_info=True)
                    return
                if not keep_going:
                    return
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def stop(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def stop_all(self) -> None:
        for key in list(self._tasks):
            self.stop(key)

    def active(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
