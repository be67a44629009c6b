from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DELAY_SECONDS = 0.3


class Debouncer:
    """Runs only the latest submission once the input has been quiet for ``delay_seconds``.

    Submitting again inside the window cancels the pending task; awaiting a
    cancelled task raises ``asyncio.CancelledError``.
    """

    def __init__(self, delay_seconds: float = DEFAULT_DELAY_SECONDS) -> None:
        self._delay = delay_seconds
        self._pending: asyncio.Task[Any] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def submit(self, func: Callable[..., T], *args: Any) -> asyncio.Task[T]:
        self.cancel()
        task = asyncio.get_running_loop().create_task(self._run(func, *args))
        self._pending = task
        return task

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            logger.debug("pending debounced call cancelled")
            self._pending.cancel()
        self._pending = None

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        await asyncio.sleep(self._delay)
        return func(*args)
