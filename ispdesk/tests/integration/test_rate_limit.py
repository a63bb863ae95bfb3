from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from ispdesk.apps.api.main import create_app
from ispdesk.apps.api import rate_limit
from ispdesk.core.config import get_settings
from ispdesk.tests.utils.auth import create_test_api_key


def _apply_rate_limit_env(monkeypatch, **overrides: str) -> None:
    # Set rate limit env vars and reset cached settings/limiter state.
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("RL_SWEEP_PROBABILITY", "0")
    for key, value in overrides.items():
        monkeypatch.setenv(key, str(value))
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()


def _build_app(monkeypatch, **env_overrides: str):
    _apply_rate_limit_env(monkeypatch, **env_overrides)
    return create_app()


def _track_body() -> dict:
    return {"folio": "CON-2026-000001", "phone_last4": "1234"}


@pytest.mark.asyncio
async def test_track_quota_then_throttle(monkeypatch) -> None:
    app = _build_app(monkeypatch, RL_TRACK_FOLIO_MAX_REQUESTS=2)
    client_headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(
            "/v1/tickets",
            json={
                "type": "fault",
                "full_name": "José Ruiz",
                "phone": "9617654321",
                "address": "Avenida Norte 45, Colonia Sur",
                "fault_description": "Sin señal desde ayer por la tarde",
            },
            headers={"X-Forwarded-For": "203.0.113.50"},
        )
        folio = created.json()["data"]["folio"]
        first = await client.post(
            "/v1/tickets/track", json={"folio": folio, "phone_last4": "4321"}, headers=client_headers
        )
        second = await client.post("/v1/tickets/track", json=_track_body(), headers=client_headers)
        third = await client.post(
            "/v1/tickets/track", json={"folio": folio, "phone_last4": "4321"}, headers=client_headers
        )

    assert created.status_code == 201
    assert created.headers["X-RateLimit-Remaining"] == "2"
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert first.headers["X-RateLimit-Reset"] == "60"
    # Misses still count against the quota and report what is left.
    assert second.status_code == 404
    assert second.headers["X-RateLimit-Remaining"] == "0"
    assert second.headers["X-RateLimit-Reset"] == "60"

    assert third.status_code == 429
    assert third.json() == {
        "error": rate_limit.RATE_LIMIT_MESSAGE,
        "retryAfter": int(third.headers["Retry-After"]),
    }
    assert 1 <= int(third.headers["Retry-After"]) <= 60


@pytest.mark.asyncio
async def test_quota_is_per_client_and_per_preset(monkeypatch) -> None:
    app = _build_app(monkeypatch, RL_TRACK_FOLIO_MAX_REQUESTS=1)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        a_first = await client.post(
            "/v1/tickets/track", json=_track_body(), headers={"X-Real-IP": "198.51.100.1"}
        )
        a_second = await client.post(
            "/v1/tickets/track", json=_track_body(), headers={"X-Real-IP": "198.51.100.1"}
        )
        b_first = await client.post(
            "/v1/tickets/track", json=_track_body(), headers={"X-Real-IP": "198.51.100.2"}
        )
        a_coverage = await client.get(
            "/v1/coverage/check", params={"cp": "29000"}, headers={"X-Real-IP": "198.51.100.1"}
        )

    assert a_first.status_code == 404
    assert a_second.status_code == 429
    assert b_first.status_code == 404
    assert a_coverage.status_code == 200


@pytest.mark.asyncio
async def test_staff_routes_use_default_preset(monkeypatch) -> None:
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="tech")
    app = _build_app(monkeypatch, RL_DEFAULT_MAX_REQUESTS=1)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.get("/v1/tickets", headers=headers)
        second = await client.get("/v1/tickets", headers=headers)

    assert first.status_code == 200
    assert second.status_code == 429
    assert "Retry-After" in second.headers


@pytest.mark.asyncio
async def test_rate_limit_disabled_admits_everything(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("RL_TRACK_FOLIO_MAX_REQUESTS", "1")
    get_settings.cache_clear()
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        responses = [await client.post("/v1/tickets/track", json=_track_body()) for _ in range(4)]

    assert [response.status_code for response in responses] == [404, 404, 404, 404]
    assert "X-RateLimit-Remaining" not in responses[0].headers


@pytest.mark.asyncio
async def test_error_responses_carry_quota_headers(monkeypatch) -> None:
    app = _build_app(monkeypatch, RL_TRACK_FOLIO_MAX_REQUESTS=5, RL_COVERAGE_CHECK_MAX_REQUESTS=4)
    headers = {"X-Real-IP": "192.0.2.10"}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        malformed = await client.post(
            "/v1/tickets/track", json={"folio": "nope", "phone_last4": "12"}, headers=headers
        )
        bad_postal_code = await client.get(
            "/v1/coverage/check", params={"cp": "12"}, headers=headers
        )

    assert malformed.status_code == 400
    assert malformed.headers["X-RateLimit-Remaining"] == "4"
    assert bad_postal_code.status_code == 400
    assert bad_postal_code.headers["X-RateLimit-Remaining"] == "3"
    assert bad_postal_code.headers["X-RateLimit-Reset"] == "60"


class _RecordingStore(rate_limit.InMemoryRateLimitStore):
    def __init__(self) -> None:
        super().__init__()
        self.keys: list[str] = []

    def set(self, key: str, entry: rate_limit.RateLimitEntry) -> None:
        self.keys.append(key)
        super().set(key, entry)


@pytest.mark.asyncio
async def test_configured_limiter_store_and_clock_are_used(monkeypatch) -> None:
    app = _build_app(monkeypatch, RL_TRACK_FOLIO_MAX_REQUESTS=1)
    store = _RecordingStore()
    now = {"ms": 0}
    rate_limit.configure_rate_limiter(
        rate_limit.FixedWindowRateLimiter(
            store=store, time_provider=lambda: now["ms"], sweep_probability=0.0
        )
    )
    headers = {"X-Real-IP": "192.0.2.20"}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/v1/tickets/track", json=_track_body(), headers=headers)
        blocked = await client.post("/v1/tickets/track", json=_track_body(), headers=headers)
        now["ms"] = 60_000
        reopened = await client.post("/v1/tickets/track", json=_track_body(), headers=headers)

    assert first.status_code == 404
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "60"
    assert "X-RateLimit-Remaining" not in blocked.headers
    assert reopened.status_code == 404
    assert reopened.headers["X-RateLimit-Remaining"] == "0"
    assert store.keys == ["trackFolio:192.0.2.20", "trackFolio:192.0.2.20"]
