"""
Page channel: the untrusted side's broadcast medium.

Every posted message is copied and delivered on a later loop iteration to
every listener, the poster included, the way a window message bus behaves.
"""

import asyncio
import copy
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

PageListener = Callable[[Any], Any]


class PageChannel:
    def __init__(self) -> None:
        self._listeners: list[PageListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add_listener(self, listener: PageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    def post(self, message: Any) -> None:
        """Fire-and-forget. Must be called from inside a running loop."""
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(self._deliver, listener, copy.deepcopy(message))

    def _deliver(self, listener: PageListener, message: Any) -> None:
        if listener not in self._listeners:
            return
        try:
            out = listener(message)
        except Exception:
            logger.exception("Page listener failed")
            return
        if inspect.iscoroutine(out):
            task = asyncio.ensure_future(out)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Page listener task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for listener tasks started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
