import logging
import time
from collections import OrderedDict
from typing import Callable, Protocol, Tuple

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def check(self, client_key: str) -> bool:
        """Count one request for ``client_key``; ``False`` means reject it."""
        ...


class InMemoryRateLimiter:
    """
    Fixed-window counter per client, held in a bounded LRU map.
    Process-local: swap in a shared store when running several workers.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 15 * 60,
        capacity: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.capacity = capacity
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, int]]" = OrderedDict()

    def check(self, client_key: str) -> bool:
        now = self._clock()
        window_start, count = self._entries.get(client_key, (now, 0))
        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        if count >= self.max_requests:
            logger.warning(f"[RATE] {client_key} exceeded {self.max_requests} requests per window")
            return False

        self._entries[client_key] = (window_start, count + 1)
        self._entries.move_to_end(client_key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
        return True

    def retry_after(self, client_key: str) -> int:
        """Seconds until the client's current window expires."""
        entry = self._entries.get(client_key)
        if entry is None:
            return 0
        remaining = self.window_seconds - (self._clock() - entry[0])
        return max(0, int(remaining + 0.999))
