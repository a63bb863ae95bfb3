from __future__ import annotations

from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from ispdesk.apps.api.main import create_app
from ispdesk.domain.lifecycle import compute_payment_urgency, days_until, next_payment_date
from ispdesk.tests.utils.auth import create_test_api_key
from ispdesk.tests.utils.seed import create_package


def _customer() -> dict:
    return {
        "full_name": "Rosa Hernández",
        "phone": "9612223344",
        "address": "Calle Palmas 12, Colonia Jardines",
        "location": "Tuxtla Gutiérrez",
    }


async def _create_contract(client: AsyncClient, headers: dict, package_id: str, **overrides) -> dict:
    body = {"customer": _customer(), "package_id": package_id, "payment_day": 10}
    body.update(overrides)
    response = await client.post("/v1/contracts", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _complete_installation(
    client: AsyncClient, headers: dict, order_id: str, technician_id: str
) -> dict:
    last = None
    steps = (
        {"status": "assigned", "assigned_to": technician_id},
        {"status": "in_progress"},
        {"status": "completed"},
    )
    for body in steps:
        last = await client.patch(f"/v1/work-orders/{order_id}/status", json=body, headers=headers)
        assert last.status_code == 200, last.text
    return last.json()["data"]


@pytest.mark.asyncio
async def test_contract_activation_and_payment_approval() -> None:
    package_id = await create_package()
    _raw_key, headers, staff_id, _key_id = await create_test_api_key(role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _create_contract(client, headers, package_id)
        contract = created["contract"]
        installation = created["installation_order"]
        assert contract["status"] == "pending_installation"
        assert contract["service_number"].startswith("SRV-")
        assert contract["monthly_fee"] == 399.0
        assert contract["installation_fee"] == 500.0
        assert installation["type"] == "installation"
        assert installation["status"] == "pending"

        early = await client.post(f"/v1/contracts/{contract['id']}/activate", headers=headers)
        assert early.status_code == 409
        assert early.json()["error"]["code"] == "PRECONDITION_FAILED"
        assert early.json()["error"]["details"]["field"] == "work_orders"

        completed = await _complete_installation(client, headers, installation["id"], staff_id)
        assert completed["completed_date"] is not None

        activated = await client.post(
            f"/v1/contracts/{contract['id']}/activate",
            json={"installed_modem": "ZTE-F660"},
            headers=headers,
        )
        assert activated.status_code == 200
        assert activated.json()["data"]["status"] == "active"
        assert activated.json()["data"]["installed_modem"] == "ZTE-F660"

        again = await client.post(f"/v1/contracts/{contract['id']}/activate", headers=headers)
        assert again.status_code == 409

        payment = await client.post(
            "/v1/payments",
            json={
                "contract_id": contract["id"],
                "amount": "399.00",
                "payment_method": "cash",
                "payment_type": "monthly",
            },
            headers=headers,
        )
        assert payment.status_code == 201
        payment_data = payment.json()["data"]
        assert payment_data["status"] == "pending"
        assert payment_data["amount"] == 399.0

        approved = await client.post(f"/v1/payments/{payment_data['id']}/approve", headers=headers)
        twice = await client.post(f"/v1/payments/{payment_data['id']}/approve", headers=headers)
        billing = await client.get(f"/v1/contracts/{contract['id']}/billing", headers=headers)

    expected_next = next_payment_date(10, date.today())
    assert approved.status_code == 200
    approved_data = approved.json()["data"]
    assert approved_data["payment"]["status"] == "approved"
    assert approved_data["payment"]["processed_by"] == staff_id
    assert approved_data["payment"]["paid_at"] is not None
    assert approved_data["next_payment_date"] == expected_next.isoformat()
    assert twice.status_code == 409

    billing_data = billing.json()["data"]
    days = days_until(expected_next)
    assert billing_data["days_until_due"] == days
    assert billing_data["urgency"]["tier"] == compute_payment_urgency(days).tier.value


@pytest.mark.asyncio
async def test_reject_and_cancel_leave_billing_untouched() -> None:
    package_id = await create_package()
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="counter")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _create_contract(client, headers, package_id)
        contract_id = created["contract"]["id"]
        payments = []
        for _ in range(2):
            response = await client.post(
                "/v1/payments",
                json={"contract_id": contract_id, "amount": "500", "payment_method": "transfer"},
                headers=headers,
            )
            payments.append(response.json()["data"]["id"])

        rejected = await client.post(
            f"/v1/payments/{payments[0]}/reject",
            json={"reason": "Comprobante ilegible"},
            headers=headers,
        )
        cancelled = await client.post(f"/v1/payments/{payments[1]}/cancel", headers=headers)
        approve_rejected = await client.post(f"/v1/payments/{payments[0]}/approve", headers=headers)
        contract = await client.get(f"/v1/contracts/{contract_id}", headers=headers)
        billing = await client.get(f"/v1/contracts/{contract_id}/billing", headers=headers)

    assert rejected.status_code == 200
    assert rejected.json()["data"]["status"] == "rejected"
    assert "Comprobante ilegible" in rejected.json()["data"]["notes"]
    assert cancelled.json()["data"]["status"] == "cancelled"
    assert approve_rejected.status_code == 409
    assert contract.json()["data"]["next_payment_date"] is None
    # Pending-installation contracts have no urgency.
    assert billing.json()["data"]["urgency"] is None


@pytest.mark.asyncio
async def test_contract_status_changes_require_admin() -> None:
    package_id = await create_package()
    _counter_key, counter_headers, _counter_id, _ck = await create_test_api_key(role="counter")
    _admin_key, admin_headers, _admin_id, _ak = await create_test_api_key(role="admin")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _create_contract(client, counter_headers, package_id, payment_day=31)
        contract_id = created["contract"]["id"]

        by_counter = await client.patch(
            f"/v1/contracts/{contract_id}/status", json={"status": "cancelled"}, headers=counter_headers
        )
        suspend_pending = await client.patch(
            f"/v1/contracts/{contract_id}/status", json={"status": "suspended"}, headers=admin_headers
        )
        cancelled = await client.patch(
            f"/v1/contracts/{contract_id}/status",
            json={"status": "cancelled", "reason": "Cliente desistió"},
            headers=admin_headers,
        )
        payment_after_cancel = await client.post(
            "/v1/payments",
            json={"contract_id": contract_id, "amount": "100", "payment_method": "cash"},
            headers=counter_headers,
        )

    assert by_counter.status_code == 403
    assert suspend_pending.status_code == 409
    assert suspend_pending.json()["error"]["code"] == "INVALID_TRANSITION"
    data = cancelled.json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancellation_date"] == date.today().isoformat()
    assert "Cliente desistió" in data["notes"]
    assert payment_after_cancel.status_code == 409


@pytest.mark.asyncio
async def test_contract_creation_validates_inputs() -> None:
    active_id = await create_package()
    retired_id = await create_package(name="Retirado", is_active=False)
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="counter")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        retired = await client.post(
            "/v1/contracts",
            json={"customer": _customer(), "package_id": retired_id, "payment_day": 5},
            headers=headers,
        )
        both_missing = await client.post(
            "/v1/contracts", json={"package_id": active_id, "payment_day": 5}, headers=headers
        )
        bad_day = await client.post(
            "/v1/contracts",
            json={"customer": _customer(), "package_id": active_id, "payment_day": 32},
            headers=headers,
        )
        first = await _create_contract(client, headers, active_id, service_number="SRV-2026-000777")
        duplicate = await client.post(
            "/v1/contracts",
            json={
                "customer_id": first["contract"]["customer_id"],
                "package_id": active_id,
                "payment_day": 5,
                "service_number": "SRV-2026-000777",
            },
            headers=headers,
        )

    assert retired.status_code == 422
    assert retired.json()["error"]["code"] == "PACKAGE_INVALID"
    assert both_missing.status_code == 422
    assert bad_day.status_code == 422
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "SERVICE_NUMBER_TAKEN"


@pytest.mark.asyncio
async def test_work_order_cannot_skip_steps() -> None:
    package_id = await create_package()
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="counter")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _create_contract(client, headers, package_id)
        repair = await client.post(
            "/v1/work-orders",
            json={"contract_id": created["contract"]["id"], "type": "repair", "priority": "high"},
            headers=headers,
        )
        order_id = repair.json()["data"]["id"]
        skipped = await client.patch(
            f"/v1/work-orders/{order_id}/status", json={"status": "completed"}, headers=headers
        )
        cancelled = await client.patch(
            f"/v1/work-orders/{order_id}/status", json={"status": "cancelled"}, headers=headers
        )

    assert repair.status_code == 201
    assert repair.json()["data"]["priority"] == "high"
    assert skipped.status_code == 409
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["completed_date"] is None


@pytest.mark.asyncio
async def test_work_order_assignment_requires_technician() -> None:
    package_id = await create_package()
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="counter")
    _tech_key, _tech_headers, tech_id, _tk = await create_test_api_key(role="tech", full_name="Técnico Uno")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await _create_contract(client, headers, package_id)
        order_id = created["installation_order"]["id"]
        unassigned = await client.patch(
            f"/v1/work-orders/{order_id}/status", json={"status": "assigned"}, headers=headers
        )
        unknown_tech = await client.patch(
            f"/v1/work-orders/{order_id}/status",
            json={"status": "assigned", "assigned_to": "no-such-staff"},
            headers=headers,
        )
        assigned = await client.patch(
            f"/v1/work-orders/{order_id}/status",
            json={"status": "assigned", "assigned_to": tech_id},
            headers=headers,
        )

    assert unassigned.status_code == 422
    assert unassigned.json()["error"]["code"] == "ASSIGNEE_REQUIRED"
    assert unassigned.json()["error"]["details"]["field"] == "assigned_to"
    assert unknown_tech.status_code == 422
    assert unknown_tech.json()["error"]["code"] == "ASSIGNEE_INVALID"
    assert assigned.status_code == 200
    assert assigned.json()["data"]["status"] == "assigned"
    assert assigned.json()["data"]["assigned_to"] == tech_id
