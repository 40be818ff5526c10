"""Trailing-edge debounce on the running event loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Run an async callback once input has been quiet for `delay` seconds.

    Each schedule() call cancels the pending timer and starts a new one, so
    a burst of calls results in a single callback invocation carrying the
    last value. Must be used from within a running event loop.
    """

    def __init__(self, delay: float, callback: Callable[[Any], Awaitable[None]]):
        self.delay = delay
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        """True while a timer is waiting or its callback is still running."""
        return self._task is not None and not self._task.done()

    def schedule(self, value: Any) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire(value))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the pending timer and callback, if any, to finish."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def _fire(self, value: Any) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self._callback(value)
        except Exception:
            logger.exception("Debounced callback failed")
