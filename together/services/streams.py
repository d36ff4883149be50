from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from together.settings import get_settings

logger = logging.getLogger(__name__)

_UNSET = object()


class Subscription:
    """Polls ``loader`` and yields a snapshot every time the result changes.

    Iteration never ends on its own; call ``unsubscribe()`` to stop it. Iterating
    again afterwards starts over with a fresh first snapshot.
    """

    def __init__(self, loader: Callable[[], Awaitable[Any]], interval: float):
        self._loader = loader
        self._interval = interval
        self._stopped = asyncio.Event()

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def unsubscribe(self) -> None:
        self._stopped.set()

    def __aiter__(self) -> AsyncIterator[Any]:
        self._stopped.clear()
        return self._snapshots()

    async def _snapshots(self) -> AsyncIterator[Any]:
        last = _UNSET
        while not self._stopped.is_set():
            snapshot = await self._loader()
            if snapshot != last:
                last = snapshot
                yield snapshot
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass


def subscribe(loader: Callable[[], Awaitable[Any]], interval: float | None = None) -> Subscription:
    return Subscription(loader, interval if interval is not None else get_settings().stream_poll_seconds)


async def sse_events(subscription: Subscription) -> AsyncIterator[str]:
    try:
        async for snapshot in subscription:
            yield f"data: {json.dumps(snapshot, default=str)}\n\n"
    finally:
        subscription.unsubscribe()
        logger.debug("Stream closed")
