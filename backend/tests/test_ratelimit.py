from __future__ import annotations

import json

from pipelines.ratelimit import FileRateLimitStore, MemoryRateLimitStore, RateLimiter


class _Clock:
    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


def test_disabled_interval_always_allows():
    limiter = RateLimiter(MemoryRateLimitStore())
    assert limiter.check_and_record(0, "overall") is None
    assert limiter.check_and_record(0, "overall") is None


def test_second_call_inside_interval_is_rejected_without_moving_the_window():
    clock = _Clock()
    store = MemoryRateLimitStore()
    limiter = RateLimiter(store, clock=clock)

    assert limiter.check_and_record(1_000, "overall") is None
    clock.now += 400
    rejected = limiter.check_and_record(1_000, "overall")

    assert rejected is not None
    assert rejected.error_code == "RATE_LIMIT"
    assert rejected.step == "overall"
    assert rejected.retryable is True
    assert store.get("overall") == 1_000_000

    clock.now += 600
    assert limiter.check_and_record(1_000, "overall") is None
    assert store.get("overall") == 1_001_000


def test_keys_are_independent():
    limiter = RateLimiter(MemoryRateLimitStore(), clock=_Clock())
    assert limiter.check_and_record(1_000, "overall") is None
    assert limiter.check_and_record(1_000, "search") is None
    assert limiter.check_and_record(1_000, "search") is not None


def test_file_store_persists_last_run(tmp_path):
    store = FileRateLimitStore(tmp_path / "state")
    limiter = RateLimiter(store, clock=_Clock(5_000))

    assert limiter.check_and_record(1_000, "gamma") is None
    path = tmp_path / "state" / "ratelimit_gamma.json"
    assert json.loads(path.read_text()) == {"lastRunAt": 5_000}

    second = RateLimiter(FileRateLimitStore(tmp_path / "state"), clock=_Clock(5_500))
    assert second.check_and_record(1_000, "gamma") is not None


def test_corrupt_state_allows_the_call(tmp_path):
    (tmp_path / "ratelimit_overall.json").write_text("{not json")
    limiter = RateLimiter(FileRateLimitStore(tmp_path), clock=_Clock(10_000))

    assert limiter.check_and_record(1_000, "overall") is None
    assert json.loads((tmp_path / "ratelimit_overall.json").read_text()) == {"lastRunAt": 10_000}


def test_unwritable_store_still_allows(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file, not a directory")
    limiter = RateLimiter(FileRateLimitStore(blocker), clock=_Clock())

    assert limiter.check_and_record(1_000, "overall") is None
