"""Async fan-out bus for interaction signals."""

import asyncio
import logging
from collections import deque

from voxsurvey.interaction.types import InteractionSignal

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 64
_HISTORY_SIZE = 50


class SignalBus:
    """Fan-out signal bus backed by asyncio.Queue.

    Each subscriber gets its own queue. If a subscriber's queue is full the
    signal is dropped for that subscriber (with a warning) so a stalled
    client never blocks the interaction engine. The most recent signals are
    also kept for clients that connect late.
    """

    def __init__(self, maxsize: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._subscribers: list[asyncio.Queue[InteractionSignal]] = []
        self._lock = asyncio.Lock()
        self._maxsize = maxsize
        self._history: deque[InteractionSignal] = deque(maxlen=_HISTORY_SIZE)

    async def emit(self, signal: InteractionSignal) -> None:
        """Push *signal* to every subscriber queue."""
        self._history.append(signal)
        async with self._lock:
            subscribers = list(self._subscribers)

        for queue in subscribers:
            try:
                queue.put_nowait(signal)
            except asyncio.QueueFull:
                logger.warning(
                    "Subscriber queue full — dropping signal %s for one subscriber",
                    signal.kind.value,
                )

    async def subscribe(self) -> asyncio.Queue[InteractionSignal]:
        """Create and return a new subscriber queue."""
        queue: asyncio.Queue[InteractionSignal] = asyncio.Queue(maxsize=self._maxsize)
        async with self._lock:
            self._subscribers.append(queue)
        logger.debug("New signal subscriber (total: %d)", len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[InteractionSignal]) -> None:
        """Remove a subscriber queue. No-op if the queue is not registered."""
        async with self._lock:
            try:
                self._subscribers.remove(queue)
                logger.debug(
                    "Signal subscriber removed (remaining: %d)", len(self._subscribers)
                )
            except ValueError:
                logger.debug("Attempted to unsubscribe an unknown queue — ignoring")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent(self, limit: int = 10) -> list[InteractionSignal]:
        """Return up to *limit* most recent signals, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]
