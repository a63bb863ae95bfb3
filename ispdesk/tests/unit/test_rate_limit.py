from __future__ import annotations

import threading

import pytest
from starlette.requests import Request

from ispdesk.apps.api import rate_limit
from ispdesk.core.config import Settings


class _Clock:
    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, delta_ms: int) -> None:
        self.now_ms += delta_ms


def _limiter(clock: _Clock, *, sweep_probability: float = 0.0) -> rate_limit.FixedWindowRateLimiter:
    return rate_limit.FixedWindowRateLimiter(
        time_provider=clock,
        sweep_probability=sweep_probability,
        random_provider=lambda: 0.5,
    )


def _make_request(headers: dict[str, str] | None = None) -> Request:
    # Minimal ASGI scope; header names must be lowercase bytes.
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/v1/tickets/track",
        "scheme": "http",
        "server": ("test", 80),
        "client": ("test", 1234),
        "headers": [
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in (headers or {}).items()
        ],
        "query_string": b"",
    }
    return Request(scope)


def test_window_admits_quota_then_denies_until_reset() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=60_000, max_requests=3)

    first = limiter.check("trackFolio:1.2.3.4", config)
    second = limiter.check("trackFolio:1.2.3.4", config)
    third = limiter.check("trackFolio:1.2.3.4", config)
    assert [first.remaining, second.remaining, third.remaining] == [2, 1, 0]
    assert all(decision.allowed for decision in (first, second, third))
    assert first.reset_in_ms == 60_000

    clock.advance(20)
    fourth = limiter.check("trackFolio:1.2.3.4", config)
    assert fourth.allowed is False
    assert fourth.remaining == 0
    assert fourth.reset_in_ms == 59_980

    clock.advance(61_000 - 20)
    fifth = limiter.check("trackFolio:1.2.3.4", config)
    assert fifth.allowed is True
    assert fifth.remaining == 2
    assert fifth.reset_in_ms == 60_000


def test_quota_bound_holds_within_one_window() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=5)

    admitted = 0
    for _ in range(20):
        clock.advance(10)
        if limiter.check("default:client", config).allowed:
            admitted += 1
    assert admitted == 5


def test_remaining_never_increases_within_a_window() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=10_000, max_requests=4)

    remaining = [limiter.check("k", config).remaining for _ in range(7)]
    assert remaining == sorted(remaining, reverse=True)
    assert remaining[-1] == 0


def test_denied_checks_do_not_extend_the_window() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=1)

    assert limiter.check("k", config).allowed
    for _ in range(5):
        clock.advance(100)
        limiter.check("k", config)
    clock.advance(500)
    assert limiter.check("k", config).allowed


def test_keys_are_isolated() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=60_000, max_requests=1)

    assert limiter.check("trackFolio:a", config).allowed
    assert not limiter.check("trackFolio:a", config).allowed
    assert limiter.check("trackFolio:b", config).allowed
    assert limiter.check("createTicket:a", config).allowed


def test_boundary_burst_is_admitted() -> None:
    # Fixed windows let a client use its quota at the end of one window and the start of the next.
    clock = _Clock()
    limiter = _limiter(clock)
    config = rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=2)

    limiter.check("k", config)
    clock.advance(990)
    assert limiter.check("k", config).allowed
    clock.advance(10)
    assert limiter.check("k", config).allowed
    assert limiter.check("k", config).allowed


def test_sweep_removes_only_expired_windows() -> None:
    clock = _Clock()
    limiter = _limiter(clock)
    short = rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=5)
    long = rate_limit.RateLimitConfig(interval_ms=60_000, max_requests=5)

    limiter.check("short", short)
    limiter.check("long", long)
    clock.advance(1_000)

    assert limiter.sweep() == 1
    assert limiter.store.get("short") is None
    assert limiter.store.get("long") is not None


def test_probabilistic_sweep_runs_when_draw_is_below_probability() -> None:
    clock = _Clock()
    limiter = rate_limit.FixedWindowRateLimiter(
        time_provider=clock,
        sweep_probability=0.01,
        random_provider=lambda: 0.001,
    )
    config = rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=5)
    limiter.check("stale", config)
    clock.advance(5_000)

    limiter.check("fresh", config)
    assert limiter.store.get("stale") is None
    assert len(limiter.store) == 1


def test_custom_store_is_used() -> None:
    store = rate_limit.InMemoryRateLimitStore()
    limiter = rate_limit.FixedWindowRateLimiter(store=store, time_provider=_Clock(), sweep_probability=0.0)
    limiter.check("k", rate_limit.RateLimitConfig(interval_ms=1_000, max_requests=2))
    entry = store.get("k")
    assert entry is not None
    assert entry.count == 1


def test_concurrent_checks_never_exceed_quota() -> None:
    limiter = rate_limit.FixedWindowRateLimiter(time_provider=_Clock(), sweep_probability=0.0)
    config = rate_limit.RateLimitConfig(interval_ms=60_000, max_requests=50)
    results: list[bool] = []
    results_lock = threading.Lock()

    def _worker() -> None:
        for _ in range(20):
            allowed = limiter.check("shared", config).allowed
            with results_lock:
                results.append(allowed)

    threads = [threading.Thread(target=_worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert sum(results) == 50


@pytest.mark.parametrize("interval_ms,max_requests", [(0, 5), (-1, 5), (1_000, 0), (1_000, -3)])
def test_invalid_config_is_rejected(interval_ms: int, max_requests: int) -> None:
    with pytest.raises(ValueError):
        rate_limit.RateLimitConfig(interval_ms=interval_ms, max_requests=max_requests)


def test_reset_seconds_round_up() -> None:
    decision = rate_limit.RateLimitDecision(allowed=False, remaining=0, reset_in_ms=59_980)
    assert decision.reset_in_s == 60
    exceeded = rate_limit.RateLimitExceeded(
        limit_name="trackFolio",
        decision=rate_limit.RateLimitDecision(allowed=False, remaining=0, reset_in_ms=1),
    )
    assert exceeded.retry_after_s == 1


def test_presets_follow_settings() -> None:
    presets = rate_limit.build_presets(Settings())
    assert presets[rate_limit.LIMIT_TRACK_FOLIO] == rate_limit.RateLimitConfig(60_000, 5)
    assert presets[rate_limit.LIMIT_CREATE_TICKET] == rate_limit.RateLimitConfig(60_000, 3)
    assert presets[rate_limit.LIMIT_COVERAGE_CHECK] == rate_limit.RateLimitConfig(60_000, 20)
    assert presets[rate_limit.LIMIT_LOGIN] == rate_limit.RateLimitConfig(300_000, 5)
    assert presets[rate_limit.LIMIT_DEFAULT] == rate_limit.RateLimitConfig(60_000, 60)


def test_unknown_preset_fails_at_build_time() -> None:
    with pytest.raises(ValueError):
        rate_limit.rate_limited("doesNotExist")


def test_client_identifier_prefers_first_forwarded_address() -> None:
    request = _make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "10.0.0.2"})
    assert rate_limit.get_client_identifier(request) == "203.0.113.7"


def test_client_identifier_falls_back_to_real_ip_then_unknown() -> None:
    assert rate_limit.get_client_identifier(_make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"
    assert rate_limit.get_client_identifier(_make_request()) == rate_limit.UNKNOWN_CLIENT
