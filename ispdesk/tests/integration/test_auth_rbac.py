from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from ispdesk.apps.api.main import create_app
from ispdesk.core.config import get_settings
from ispdesk.tests.utils.auth import create_test_api_key


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_protected_endpoint_requires_auth() -> None:
    get_settings.cache_clear()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        missing = await client.get("/v1/tickets")
        malformed = await client.get("/v1/tickets", headers={"Authorization": "Token abc"})
        unknown = await client.get("/v1/tickets", headers={"Authorization": "Bearer ispk_nope"})

    for response in (missing, malformed, unknown):
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_revoked_expired_and_inactive_keys_are_rejected() -> None:
    _revoked, revoked_headers, _user_a, _key_a = await create_test_api_key(
        role="admin", key_revoked=True
    )
    _expired, expired_headers, _user_b, _key_b = await create_test_api_key(
        role="admin", key_expires_at=_utc_now() - timedelta(minutes=5)
    )
    _inactive, inactive_headers, _user_c, _key_c = await create_test_api_key(
        role="admin", user_active=False
    )
    _valid, valid_headers, _user_d, _key_d = await create_test_api_key(
        role="admin", key_expires_at=_utc_now() + timedelta(days=1)
    )

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        revoked = await client.get("/v1/tickets", headers=revoked_headers)
        expired = await client.get("/v1/tickets", headers=expired_headers)
        inactive = await client.get("/v1/tickets", headers=inactive_headers)
        valid = await client.get("/v1/tickets", headers=valid_headers)

    assert revoked.status_code == 401
    assert expired.status_code == 401
    assert expired.json()["error"]["message"] == "API key expired"
    assert inactive.status_code == 401
    assert valid.status_code == 200


@pytest.mark.asyncio
async def test_role_ordering_is_enforced() -> None:
    _tech_key, tech_headers, _tech_id, _tech_key_id = await create_test_api_key(role="tech")
    _master_key, master_headers, _master_id, _master_key_id = await create_test_api_key(role="master")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        tech_list = await client.get("/v1/tickets", headers=tech_headers)
        tech_audit = await client.get("/v1/audit/logs", headers=tech_headers)
        tech_payment = await client.post(
            "/v1/payments",
            json={"contract_id": "x", "amount": "100", "payment_method": "cash"},
            headers=tech_headers,
        )
        master_audit = await client.get("/v1/audit/logs", headers=master_headers)

    assert tech_list.status_code == 200
    assert tech_audit.status_code == 403
    assert tech_audit.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert tech_payment.status_code == 403
    assert master_audit.status_code == 200


@pytest.mark.asyncio
async def test_dev_headers_are_used_when_auth_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_ENABLED", "false")
    get_settings.cache_clear()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        anonymous = await client.get("/v1/tickets")
        as_tech = await client.get(
            "/v1/audit/logs", headers={"X-Staff-Id": "dev-1", "X-Role": "tech"}
        )
        as_admin = await client.get("/v1/audit/logs", headers={"X-Staff-Id": "dev-1"})

    assert anonymous.status_code == 401
    assert as_tech.status_code == 403
    assert as_admin.status_code == 200


@pytest.mark.asyncio
async def test_public_endpoints_need_no_key() -> None:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        health = await client.get("/v1/health")
        coverage = await client.get("/v1/coverage/check", params={"cp": "29000"})

    assert health.status_code == 200
    assert coverage.status_code == 200
