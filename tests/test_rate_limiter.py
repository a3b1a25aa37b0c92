import threading

from cpjudge.scrapers.rate_limiter import RateLimiter, get_platform_limiter


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class RecordingEvent(threading.Event):
    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


class TestRateLimiter:
    def test_first_call_does_not_wait(self):
        limiter = RateLimiter(min_interval=1.0, clock=FakeClock())
        assert limiter.wait() == 0.0

    def test_waits_remaining_interval(self):
        clock = FakeClock()
        event = RecordingEvent()
        limiter = RateLimiter(min_interval=1.0, clock=clock)
        limiter.wait(event)
        clock.now += 0.25
        slept = limiter.wait(event)
        assert slept == 0.75
        assert event.waits == [0.75]

    def test_no_wait_after_interval_elapsed(self):
        clock = FakeClock()
        limiter = RateLimiter(min_interval=1.0, clock=clock)
        limiter.wait()
        clock.now += 5
        assert limiter.wait() == 0.0

    def test_zero_interval(self):
        limiter = RateLimiter(min_interval=0, clock=FakeClock())
        limiter.wait()
        assert limiter.wait() == 0.0


class TestPlatformLimiter:
    def test_shared_per_platform(self):
        a = get_platform_limiter('test-platform-a', 2.0)
        assert get_platform_limiter('test-platform-a', 2.0) is a
        assert get_platform_limiter('test-platform-b', 2.0) is not a

    def test_interval_updated(self):
        limiter = get_platform_limiter('test-platform-c', 2.0)
        get_platform_limiter('test-platform-c', 0.5)
        assert limiter.min_interval == 0.5
