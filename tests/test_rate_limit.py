from donation_ledger.core.rate_limit import DynamoRateLimitStore, InMemoryRateLimitStore, RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_in_memory_limiter_blocks_after_limit_and_resets():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryRateLimitStore(), limit=2, window_seconds=60, clock=clock)

    assert limiter.check("ip").allowed
    assert limiter.check("ip").allowed
    denied = limiter.check("ip")
    assert not denied.allowed
    assert denied.retry_after_seconds == 60
    assert limiter.check("other").allowed

    clock.now += 61
    assert limiter.check("ip").allowed


def test_dynamo_limiter_shares_fixed_windows(data_access):
    clock = FakeClock(now=125.0)
    first = RateLimiter(DynamoRateLimitStore(data_access), limit=1, window_seconds=60, clock=clock)
    second = RateLimiter(DynamoRateLimitStore(data_access), limit=1, window_seconds=60, clock=clock)

    assert first.check("ip").allowed
    denied = second.check("ip")
    assert not denied.allowed
    assert denied.retry_after_seconds == 55

    clock.now = 180.0
    assert second.check("ip").allowed


def test_in_memory_store_drops_expired_buckets():
    clock = FakeClock()
    store = InMemoryRateLimitStore()
    limiter = RateLimiter(store, limit=5, window_seconds=60, clock=clock)
    for i in range(50):
        limiter.check(f"client-{i}")
    assert len(store) == 50

    clock.now += 120
    limiter.check("fresh")

    assert len(store) == 1
