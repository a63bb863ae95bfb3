"""Per-client admission control for public and staff endpoints.

Quotas are fixed-window counters keyed by ``"{limit_name}:{client}"``. A
window opens on the first request for a key and admits ``max_requests``
until ``interval_ms`` has elapsed; the next request after that opens a fresh
window. Because windows are fixed, a client can get up to twice the
configured rate through around a window boundary.

State lives in a process-local store unless another ``RateLimitStore`` is
injected, so several API instances each enforce their own quota.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import random
import threading
import time
from typing import Callable, Iterable, Protocol

from fastapi import Request, Response

from ispdesk.core.config import Settings, get_settings


logger = logging.getLogger(__name__)

LIMIT_TRACK_FOLIO = "trackFolio"
LIMIT_CREATE_TICKET = "createTicket"
LIMIT_COVERAGE_CHECK = "coverageCheck"
LIMIT_LOGIN = "login"
LIMIT_DEFAULT = "default"

UNKNOWN_CLIENT = "unknown"

RATE_LIMIT_MESSAGE = "Demasiadas solicitudes. Por favor, espera un momento."


@dataclass(frozen=True)
class RateLimitConfig:
    interval_ms: int
    max_requests: int

    def __post_init__(self) -> None:
        # Misconfiguration must fail at startup, never per request.
        if self.interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {self.interval_ms}")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {self.max_requests}")


@dataclass
class RateLimitEntry:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in_ms: int

    @property
    def reset_in_s(self) -> int:
        return int(math.ceil(self.reset_in_ms / 1000.0))


class RateLimitStore(Protocol):
    # Swappable backing map so a shared cache can replace the in-process dict.
    def get(self, key: str) -> RateLimitEntry | None: ...

    def set(self, key: str, entry: RateLimitEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def items(self) -> Iterable[tuple[str, RateLimitEntry]]: ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}

    def get(self, key: str) -> RateLimitEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: RateLimitEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def items(self) -> list[tuple[str, RateLimitEntry]]:
        return list(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class FixedWindowRateLimiter:
    def __init__(
        self,
        *,
        store: RateLimitStore | None = None,
        time_provider: Callable[[], int] | None = None,
        sweep_probability: float = 0.01,
        random_provider: Callable[[], float] | None = None,
    ) -> None:
        # Time and randomness are injectable for deterministic tests.
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._time_provider = time_provider or _monotonic_ms
        self._sweep_probability = sweep_probability
        self._random = random_provider or random.random
        self._lock = threading.Lock()

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def check(self, key: str, config: RateLimitConfig) -> RateLimitDecision:
        """Count one request against ``key`` and decide whether to admit it."""
        if self._random() < self._sweep_probability:
            self.sweep()

        with self._lock:
            now = self._time_provider()
            entry = self._store.get(key)

            if entry is None or now >= entry.reset_at_ms:
                self._store.set(key, RateLimitEntry(count=1, reset_at_ms=now + config.interval_ms))
                return RateLimitDecision(
                    allowed=True,
                    remaining=config.max_requests - 1,
                    reset_in_ms=config.interval_ms,
                )

            if entry.count >= config.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_in_ms=entry.reset_at_ms - now,
                )

            entry.count += 1
            self._store.set(key, entry)
            return RateLimitDecision(
                allowed=True,
                remaining=config.max_requests - entry.count,
                reset_in_ms=entry.reset_at_ms - now,
            )

    def sweep(self) -> int:
        # One deletion pass over expired windows; skipping it only costs memory.
        with self._lock:
            now = self._time_provider()
            expired = [key for key, entry in self._store.items() if now >= entry.reset_at_ms]
            for key in expired:
                self._store.delete(key)
        if expired:
            logger.debug("rate_limit_sweep removed=%s", len(expired))
        return len(expired)


class RateLimitExceeded(Exception):
    def __init__(self, *, limit_name: str, decision: RateLimitDecision) -> None:
        super().__init__(f"Rate limit exceeded for {limit_name}")
        self.limit_name = limit_name
        self.decision = decision

    @property
    def retry_after_s(self) -> int:
        return max(1, self.decision.reset_in_s)


def build_presets(settings: Settings) -> dict[str, RateLimitConfig]:
    return {
        LIMIT_TRACK_FOLIO: RateLimitConfig(
            settings.rl_track_folio_interval_ms, settings.rl_track_folio_max_requests
        ),
        LIMIT_CREATE_TICKET: RateLimitConfig(
            settings.rl_create_ticket_interval_ms, settings.rl_create_ticket_max_requests
        ),
        LIMIT_COVERAGE_CHECK: RateLimitConfig(
            settings.rl_coverage_check_interval_ms, settings.rl_coverage_check_max_requests
        ),
        LIMIT_LOGIN: RateLimitConfig(settings.rl_login_interval_ms, settings.rl_login_max_requests),
        LIMIT_DEFAULT: RateLimitConfig(
            settings.rl_default_interval_ms, settings.rl_default_max_requests
        ),
    }


def get_client_identifier(request: Request) -> str:
    # Clients behind the same misconfigured proxy share the "unknown" bucket.
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return UNKNOWN_CLIENT


_rate_limiter: FixedWindowRateLimiter | None = None
_presets: dict[str, RateLimitConfig] | None = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter(
            sweep_probability=get_settings().rl_sweep_probability
        )
    return _rate_limiter


def get_presets() -> dict[str, RateLimitConfig]:
    global _presets
    if _presets is None:
        _presets = build_presets(get_settings())
    return _presets


def configure_rate_limiter(limiter: FixedWindowRateLimiter) -> None:
    # Install a limiter with a different store or clock, e.g. in tests.
    global _rate_limiter
    _rate_limiter = limiter


def reset_rate_limiter_state() -> None:
    global _rate_limiter, _presets
    _rate_limiter = None
    _presets = None


RATE_LIMIT_STATE_ATTR = "rate_limit_decision"


def apply_rate_limit_headers(request: Request, response: Response) -> None:
    """Annotate ``response`` with the quota left after this request was admitted."""
    decision = getattr(request.state, RATE_LIMIT_STATE_ATTR, None)
    if decision is None or response.status_code == 429:
        return
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_in_s)


def rate_limited(limit_name: str = LIMIT_DEFAULT) -> Callable[[Request], None]:
    """Build a dependency that admits the request against ``limit_name``.

    The decision for an admitted request is kept on ``request.state`` and the
    request middleware copies it into ``X-RateLimit-Remaining`` and
    ``X-RateLimit-Reset`` on whatever response the handler produces, errors
    included. Denied requests raise :class:`RateLimitExceeded`, which the app
    renders as a 429 with ``Retry-After``.
    """
    if limit_name not in build_presets(get_settings()):
        raise ValueError(f"Unknown rate limit preset: {limit_name}")

    def _enforce(request: Request) -> None:
        if not get_settings().rate_limit_enabled:
            return
        client = get_client_identifier(request)
        decision = get_rate_limiter().check(f"{limit_name}:{client}", get_presets()[limit_name])
        if not decision.allowed:
            logger.warning(
                "rate_limited limit=%s client=%s path=%s retry_after_ms=%s",
                limit_name,
                client,
                request.url.path,
                decision.reset_in_ms,
            )
            raise RateLimitExceeded(limit_name=limit_name, decision=decision)
        setattr(request.state, RATE_LIMIT_STATE_ATTR, decision)

    return _enforce
