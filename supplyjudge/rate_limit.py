import asyncio
import time
from typing import Optional
from .utils.logging import get_logger

log = get_logger(__name__)


class AsyncRateLimiter:
    """Minimum spacing between dispatched calls, scoped to one owner.

    Each analysis client holds its own limiter; there is no module-level
    registry, so two clients never throttle each other.
    """

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self.last_dispatch: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None

    async def acquire(self) -> float:
        """Wait out the remaining interval and mark a dispatch. Returns seconds waited."""
        # created lazily so the limiter can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            waited = 0.0
            if self.last_dispatch is not None:
                wait = self.min_interval - (time.monotonic() - self.last_dispatch)
                if wait > 0:
                    log.info(f"Rate limiting: waiting {wait:.1f}s before next call")
                    await asyncio.sleep(wait)
                    waited = wait
            self.last_dispatch = time.monotonic()
            return waited

    def reset(self):
        self.last_dispatch = None
