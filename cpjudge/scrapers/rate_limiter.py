import threading
import time


class RateLimiter:
    """Politeness delay: enforces a minimum interval between requests."""

    def __init__(self, min_interval: float = 1.0, clock=time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last_request_time = None
        self._lock = threading.Lock()

    def wait(self, cancel_event: threading.Event = None) -> float:
        """Block until the next request may go out. Returns the time slept."""
        with self._lock:
            slept = 0.0
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.min_interval:
                    slept = self.min_interval - elapsed
                    if cancel_event is not None:
                        cancel_event.wait(slept)
                    else:
                        time.sleep(slept)
            self._last_request_time = self._clock()
            return slept


_platform_limiters = {}
_registry_lock = threading.Lock()


def get_platform_limiter(platform, min_interval: float = 1.0) -> RateLimiter:
    """Get or create the limiter shared by every session talking to ``platform``."""
    with _registry_lock:
        limiter = _platform_limiters.get(platform)
        if limiter is None:
            limiter = RateLimiter(min_interval)
            _platform_limiters[platform] = limiter
        else:
            limiter.min_interval = min_interval
        return limiter
