from waitlist_tracker.rate_limiter import FetchRateLimiter, flight_key


class TickingClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def test_first_fetch_is_allowed():
    limiter = FetchRateLimiter(interval=600, clock=TickingClock())

    assert limiter.can_fetch("100|2024-12-29")
    assert limiter.time_until_next_fetch("100|2024-12-29") == 0.0


def test_recorded_fetch_blocks_until_interval_passes():
    clock = TickingClock()
    limiter = FetchRateLimiter(interval=600, clock=clock)
    key = flight_key("100", "2024-12-29")

    limiter.record_fetch(key)
    clock.value += 60

    assert not limiter.can_fetch(key)
    assert limiter.time_until_next_fetch(key) == 540

    clock.value += 540
    assert limiter.can_fetch(key)


def test_keys_are_independent():
    clock = TickingClock()
    limiter = FetchRateLimiter(interval=600, clock=clock)

    limiter.record_fetch(flight_key("100", "2024-12-29"))

    assert limiter.can_fetch(flight_key("100", "2024-12-30"))
    assert limiter.can_fetch(flight_key("101", "2024-12-29"))


def test_clear_forgets_fetch():
    limiter = FetchRateLimiter(interval=600, clock=TickingClock())
    key = flight_key("100", "2024-12-29")
    limiter.record_fetch(key)

    limiter.clear(key)
    limiter.clear(key)

    assert limiter.can_fetch(key)
    assert key not in limiter.last_fetch
