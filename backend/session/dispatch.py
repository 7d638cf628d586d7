"""
Serialized dispatch queue.

Background listeners post events here from any thread or callback; the
owning context drains them one at a time, in arrival order, so session
state only ever has a single writer.
"""

import asyncio
import logging
import threading
from collections import deque

from config import DISPATCH_INTERVAL

logger = logging.getLogger(__name__)


class Dispatcher:
    """Lock-guarded FIFO of events awaiting the owning context."""

    def __init__(self) -> None:
        self._queue: deque = deque()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def post(self, event) -> None:
        """Enqueue an event. Safe to call from any thread."""
        with self._lock:
            self._queue.append(event)

    def drain(self, handler) -> int:
        """
        Apply handler to everything queued right now and return the count.

        Never blocks. Events posted while draining are left for the next
        drain.
        """
        with self._lock:
            batch = self._queue
            self._queue = deque()

        for event in batch:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error handling {type(event).__name__}")
        return len(batch)

    async def run(self, handler, interval: float = DISPATCH_INTERVAL) -> None:
        """Drain periodically until cancelled."""
        while True:
            self.drain(handler)
            await asyncio.sleep(interval)
