"""ScheduledTask — an owned, cancellable asyncio timer.

Used for the token-refresh timer (recurring) and the reconnect delay
(one-shot).  The owner cancels it on reset; nothing keeps running after
the context that started it is gone.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Runs `callback` after `interval` seconds, repeatedly unless `repeat=False`.

    Exceptions from the callback are logged and do not stop a recurring
    timer.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[Any]],
        interval: float,
        repeat: bool = True,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be non-negative")
        self._name = name
        self._callback = callback
        self._interval = interval
        self._repeat = repeat
        self._task: asyncio.Task | None = None
        self._fired = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fired_count(self) -> int:
        return self._fired

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"racesafe:{self._name}")
        logger.debug("Timer '%s' started (every %.1fs, repeat=%s)", self._name, self._interval, self._repeat)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Timer '%s' cancelled", self._name)
        self._task = None

    async def stop(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._fired += 1
            try:
                await self._callback()
            except Exception:
                logger.exception("Timer '%s' callback failed", self._name)
            if not self._repeat:
                return
