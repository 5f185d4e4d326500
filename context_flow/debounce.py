from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from .models import ChangeEvent

logger = logging.getLogger("context_flow.debounce")

SettleHandler = Callable[[ChangeEvent], Awaitable[None]]


class Debouncer:
    """Collapse bursts of raw events per path into one settled ChangeEvent.

    One timer task per path. A new raw event for a path cancels that path's
    timer and starts a fresh one carrying the latest kind. When a timer
    survives ``quiet`` seconds it leaves the table and hands its event to
    ``on_settle``; from then on it can no longer be cancelled by new raw
    events, so a settled change always runs to completion.
    """

    def __init__(
        self,
        quiet: float,
        on_settle: SettleHandler,
        should_ignore: Optional[Callable[[str], bool]] = None,
        name: str = "files",
    ):
        self.quiet = quiet
        self.name = name
        self._on_settle = on_settle
        self._should_ignore = should_ignore or (lambda _p: False)
        self._timers: Dict[str, Tuple[asyncio.Task, str]] = {}
        self._settling: Set[asyncio.Task] = set()

    @property
    def pending(self) -> Dict[str, str]:
        return {p: kind for p, (_t, kind) in self._timers.items()}

    def push(self, path: str, kind: str, ts: Optional[float] = None) -> bool:
        """Record a raw event; return False if the path is ignored."""
        if self._should_ignore(path):
            return False
        prev = self._timers.pop(path, None)
        if prev is not None:
            prev[0].cancel()
        event = ChangeEvent(path=path, kind=kind, timestamp=ts if ts is not None else time.time())
        task = asyncio.get_running_loop().create_task(self._wait(event))
        self._timers[path] = (task, kind)
        return True

    async def _wait(self, event: ChangeEvent) -> None:
        await asyncio.sleep(self.quiet)
        entry = self._timers.get(event.path)
        if entry is None or entry[0] is not asyncio.current_task():
            return
        del self._timers[event.path]
        task = asyncio.current_task()
        self._settling.add(task)
        try:
            await self._on_settle(event)
        except Exception:
            logger.exception("Unhandled error while processing %s", event.path)
        finally:
            self._settling.discard(task)

    def cancel_all(self) -> None:
        """Drop pending (unsettled) timers. In-flight settles keep running."""
        for task, _kind in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def drain(self) -> None:
        """Wait for every pending timer and in-flight settle to finish."""
        while self._timers or self._settling:
            tasks = [t for t, _k in self._timers.values()] + list(self._settling)
            await asyncio.gather(*tasks, return_exceptions=True)
