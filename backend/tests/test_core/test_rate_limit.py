from raisetracker.core.rate_limit import SlidingWindowLimiter

WINDOW = 900.0


def test_allows_up_to_limit_then_blocks():
    limiter = SlidingWindowLimiter()
    results = [limiter.is_allowed("10.0.0.1", 5, WINDOW, now=100.0 + i) for i in range(6)]
    assert results == [True, True, True, True, True, False]


def test_window_slides():
    limiter = SlidingWindowLimiter()
    for i in range(5):
        assert limiter.is_allowed("10.0.0.1", 5, WINDOW, now=float(i))
    assert not limiter.is_allowed("10.0.0.1", 5, WINDOW, now=10.0)

    # First attempt (t=0) falls out of the window
    assert limiter.is_allowed("10.0.0.1", 5, WINDOW, now=WINDOW + 0.5)
    assert not limiter.is_allowed("10.0.0.1", 5, WINDOW, now=WINDOW + 0.6)


def test_keys_are_independent():
    limiter = SlidingWindowLimiter()
    for _ in range(5):
        limiter.is_allowed("10.0.0.1", 5, WINDOW, now=1.0)
    assert not limiter.is_allowed("10.0.0.1", 5, WINDOW, now=2.0)
    assert limiter.is_allowed("10.0.0.2", 5, WINDOW, now=2.0)


def test_clear_resets_one_key():
    limiter = SlidingWindowLimiter()
    for _ in range(5):
        limiter.is_allowed("10.0.0.1", 5, WINDOW, now=1.0)
        limiter.is_allowed("10.0.0.2", 5, WINDOW, now=1.0)

    limiter.clear("10.0.0.1")

    assert limiter.is_allowed("10.0.0.1", 5, WINDOW, now=2.0)
    assert not limiter.is_allowed("10.0.0.2", 5, WINDOW, now=2.0)


def test_blocked_attempts_do_not_extend_lockout():
    limiter = SlidingWindowLimiter()
    for i in range(5):
        limiter.is_allowed("k", 5, WINDOW, now=float(i))
    for i in range(10):
        assert not limiter.is_allowed("k", 5, WINDOW, now=100.0 + i)
    assert limiter.is_allowed("k", 5, WINDOW, now=WINDOW + 0.5)


def test_sweep_forgets_idle_keys():
    limiter = SlidingWindowLimiter()
    limiter.is_allowed("10.0.0.1", 5, WINDOW, now=0.0)
    limiter.is_allowed("10.0.0.2", 5, WINDOW, now=500.0)

    removed = limiter.sweep(WINDOW, now=WINDOW + 1.0)

    assert removed == 1
    assert len(limiter) == 1
    assert "10.0.0.1" not in limiter._locks
    assert "10.0.0.2" in limiter._locks


def test_many_one_off_addresses_do_not_accumulate():
    limiter = SlidingWindowLimiter()
    for i in range(100):
        limiter.is_allowed(f"10.0.1.{i}", 5, WINDOW, now=float(i))

    # Once the window has passed, the next attempt sweeps the idle addresses
    assert limiter.is_allowed("10.0.2.1", 5, WINDOW, now=2 * WINDOW)
    assert len(limiter) == 1
    assert list(limiter._locks) == ["10.0.2.1"]


def test_swept_key_starts_fresh():
    limiter = SlidingWindowLimiter()
    for i in range(5):
        limiter.is_allowed("k", 5, WINDOW, now=float(i))
    limiter.sweep(WINDOW, now=WINDOW + 10.0)

    assert limiter.is_allowed("k", 5, WINDOW, now=WINDOW + 11.0)


def test_clear_drops_the_key_lock():
    limiter = SlidingWindowLimiter()
    limiter.is_allowed("10.0.0.1", 5, WINDOW, now=1.0)

    limiter.clear("10.0.0.1")

    assert len(limiter) == 0
    assert limiter._locks == {}
