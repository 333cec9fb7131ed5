"""Process-wide throttle for outbound search and metadata requests.

One instance is shared by every client that talks to an upstream API, so
requests from all guilds are spaced at least ``min_interval`` apart.
Calls rejected with a rate-limit signal are retried with exponential
backoff; exhausting the retries raises :class:`UpstreamError`.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from spotipy.exceptions import SpotifyException
from yt_dlp.utils import DownloadError

from .errors import UpstreamError

log = logging.getLogger(__name__)

T = TypeVar("T")

MIN_INTERVAL = 1.0
BACKOFF_BASE = 1.0
MAX_RETRIES = 3


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, SpotifyException):
        return exc.http_status == 429
    if isinstance(exc, DownloadError):
        msg = str(exc)
        return "HTTP Error 429" in msg or "Too Many Requests" in msg
    return False


class RequestThrottle:
    def __init__(
        self,
        min_interval: float = MIN_INTERVAL,
        *,
        backoff_base: float = BACKOFF_BASE,
        max_retries: int = MAX_RETRIES,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self.backoff_base = backoff_base
        self.max_retries = max_retries
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Block until the next request slot is free, then claim it."""
        async with self._lock:
            if self._last is not None:
                delay = self._last + self.min_interval - self._clock()
                if delay > 0:
                    await self._sleep(delay)
            self._last = self._clock()

    async def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking upstream call in the default executor, throttled."""
        loop = asyncio.get_running_loop()
        attempt = 0
        while True:
            await self.wait()
            try:
                return await loop.run_in_executor(
                    None, functools.partial(func, *args, **kwargs)
                )
            except Exception as exc:
                if not is_rate_limited(exc):
                    raise
                if attempt >= self.max_retries:
                    log.warning("Rate limited %d times, giving up: %s", attempt + 1, exc)
                    raise UpstreamError("rate limit retries exhausted") from exc
                delay = self.backoff_base * 2 ** attempt
                log.info("Rate limited, retrying in %.1fs (attempt %d)", delay, attempt + 1)
                await self._sleep(delay)
                attempt += 1
