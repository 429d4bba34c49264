"""Fixed-window, per-client request limiter (in memory)."""
import logging
import math
import threading
import time
from typing import Callable, Optional

from fastapi import Request

from fileforge import config
from fileforge.errors import RateLimitError

logger = logging.getLogger("fileforge.ratelimit")


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests if max_requests is not None else config.RATE_LIMIT_REQUESTS_PER_MINUTE
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # client -> (count, window reset time)
        self._entries: dict[str, tuple[int, float]] = {}
        self._next_prune = 0.0

    def check(self, client: str) -> None:
        """Count one request for ``client``; RateLimitError once the window is full.

        Closed windows are dropped at most once per window, so the table only
        holds clients seen recently.
        """
        now = self._clock()
        with self._lock:
            if now >= self._next_prune:
                self._prune(now)
            count, reset_at = self._entries.get(client, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + self.window_seconds
            if count >= self.max_requests:
                retry_after = max(1, math.ceil(reset_at - now))
                logger.info("Rate limit hit for %s (retry in %ss)", client, retry_after)
                raise RateLimitError(retry_after)
            self._entries[client] = (count + 1, reset_at)

    def _prune(self, now: float) -> int:
        expired = [c for c, (_, reset_at) in self._entries.items() if reset_at <= now]
        for client in expired:
            del self._entries[client]
        self._next_prune = now + self.window_seconds
        return len(expired)

    def cleanup(self) -> int:
        with self._lock:
            return self._prune(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
