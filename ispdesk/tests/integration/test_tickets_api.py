from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from ispdesk.apps.api.main import create_app
from ispdesk.core.config import get_settings
from ispdesk.domain.models import Ticket
from ispdesk.persistence.db import SessionLocal
from ispdesk.services.tickets import TRACK_INVALID_MESSAGE, TRACK_NOT_FOUND_MESSAGE
from ispdesk.tests.utils.auth import create_test_api_key


def _contract_payload(**overrides) -> dict:
    payload = {
        "type": "contract",
        "full_name": "María López Pérez",
        "phone": "9611234567",
        "email": "maria@example.com",
        "address": "Calle Central 123, Barrio Centro",
        "postal_code": "29000",
        "preferred_schedule": "Mañanas",
    }
    payload.update(overrides)
    return payload


def _fault_payload(**overrides) -> dict:
    payload = {
        "type": "fault",
        "full_name": "José Ruiz",
        "phone": "9617654321",
        "address": "Avenida Norte 45, Colonia Sur",
        "service_number": "SRV-2026-000123",
        "fault_description": "Sin señal desde ayer por la tarde",
    }
    payload.update(overrides)
    return payload


def _build_app(monkeypatch):
    # Intake tests create more tickets than the public quota allows.
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    get_settings.cache_clear()
    return create_app()


async def _ticket_id(folio: str) -> str:
    async with SessionLocal() as session:
        result = await session.execute(select(Ticket.id).where(Ticket.folio == folio))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_create_contract_ticket_and_track_it(monkeypatch) -> None:
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_contract_payload())
        assert created.status_code == 201
        body = created.json()
        folio = body["data"]["folio"]
        assert folio.startswith("CON-")
        assert body["data"]["status"] == "NEW"
        assert body["data"]["status_label"] == "Recibida"
        assert body["meta"]["request_id"]

        tracked = await client.post(
            "/v1/tickets/track", json={"folio": folio.lower(), "phone_last4": "4567"}
        )

    assert tracked.status_code == 200
    data = tracked.json()["data"]
    assert data["found"] is True
    assert data["folio"] == folio
    assert data["type_label"] == "Contratación"
    assert data["current_status"] == "NEW"
    assert [step["status"] for step in data["timeline"]] == [
        "NEW",
        "VALIDATION",
        "CONTACTED",
        "SCHEDULED",
        "INSTALLED",
    ]
    assert data["timeline"][0]["current"] is True
    assert data["timeline"][0]["date"] is not None


@pytest.mark.asyncio
async def test_fault_ticket_gets_fault_folio_and_status(monkeypatch) -> None:
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_fault_payload())

    assert created.status_code == 201
    folio = created.json()["data"]["folio"]
    assert folio.startswith("FAL-")
    async with SessionLocal() as session:
        ticket = (await session.execute(select(Ticket).where(Ticket.folio == folio))).scalar_one()
        assert ticket.fault_status == "NEW"
        assert ticket.contract_status is None
        assert ticket.phone_last4 == "4321"


@pytest.mark.asyncio
async def test_create_ticket_rejects_bad_input(monkeypatch) -> None:
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        bad_phone = await client.post("/v1/tickets", json=_contract_payload(phone="12345"))
        unknown_type = await client.post("/v1/tickets", json=_contract_payload(type="upgrade"))
        extra_field = await client.post("/v1/tickets", json=_fault_payload(contract_status="NEW"))

    assert bad_phone.status_code == 422
    assert bad_phone.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"
    assert unknown_type.status_code == 422
    assert extra_field.status_code == 422


@pytest.mark.asyncio
async def test_track_answers_generically_for_bad_or_unknown_folios(monkeypatch) -> None:
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_contract_payload())
        folio = created.json()["data"]["folio"]

        malformed = await client.post("/v1/tickets/track", json={"folio": "ABC", "phone_last4": "4567"})
        empty = await client.post("/v1/tickets/track", json={})
        wrong_phone = await client.post(
            "/v1/tickets/track", json={"folio": folio, "phone_last4": "0000"}
        )
        unknown = await client.post(
            "/v1/tickets/track", json={"folio": "FAL-2026-999999", "phone_last4": "4567"}
        )

    assert malformed.status_code == 400
    assert malformed.json()["error"]["message"] == TRACK_INVALID_MESSAGE
    assert empty.status_code == 400
    assert wrong_phone.status_code == 404
    assert unknown.status_code == 404
    # A wrong phone and an unknown folio are indistinguishable.
    assert wrong_phone.json()["error"] == unknown.json()["error"]
    assert unknown.json()["error"]["message"] == TRACK_NOT_FOUND_MESSAGE
    assert unknown.json()["error"]["details"] == {"found": False}


@pytest.mark.asyncio
async def test_staff_moves_ticket_through_progression(monkeypatch) -> None:
    _raw_key, headers, staff_id, _key_id = await create_test_api_key(role="counter")
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_contract_payload())
        folio = created.json()["data"]["folio"]
        ticket_id = await _ticket_id(folio)

        validation = await client.patch(
            f"/v1/tickets/{ticket_id}/status",
            json={"status": "VALIDATION", "reason": "Documentos recibidos"},
            headers=headers,
        )
        assert validation.status_code == 200
        assert validation.json()["data"]["status"] == "VALIDATION"

        skipped = await client.patch(
            f"/v1/tickets/{ticket_id}/status", json={"status": "INSTALLED"}, headers=headers
        )
        assert skipped.status_code == 409
        error = skipped.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"]["field"] == "contract_status"
        assert error["details"]["reason"] == "invalid-transition"

        unknown = await client.patch(
            f"/v1/tickets/{ticket_id}/status", json={"status": "DIAGNOSIS"}, headers=headers
        )
        assert unknown.status_code == 422
        assert unknown.json()["error"]["code"] == "UNKNOWN_STATUS"

        await client.patch(f"/v1/tickets/{ticket_id}/status", json={"status": "CONTACTED"}, headers=headers)
        scheduled = await client.patch(
            f"/v1/tickets/{ticket_id}/status",
            json={
                "status": "SCHEDULED",
                "scheduled_date": "2026-11-03",
                "scheduled_time_start": "09:00",
                "scheduled_time_end": "12:00",
            },
            headers=headers,
        )
        assert scheduled.status_code == 200
        assert scheduled.json()["data"]["scheduled_date"] == "2026-11-03"

        note = await client.post(
            f"/v1/tickets/{ticket_id}/notes",
            json={"content": "El técnico llegará por la mañana", "is_public": True},
            headers=headers,
        )
        assert note.status_code == 201

        tracked = await client.post(
            "/v1/tickets/track", json={"folio": folio, "phone_last4": "4567"}
        )
        detail = await client.get(f"/v1/tickets/{ticket_id}", headers=headers)

    data = tracked.json()["data"]
    assert data["current_status"] == "SCHEDULED"
    assert data["status_label"] == "Cita agendada"
    assert data["scheduled_time"] == "09:00 - 12:00"
    assert data["public_note"] == "El técnico llegará por la mañana"
    assert [step["completed"] for step in data["timeline"]] == [True, True, True, False, False]
    assert data["timeline"][3]["note"] == "El técnico llegará por la mañana"

    detail_data = detail.json()["data"]
    assert [row["new_status"] for row in detail_data["history"]] == [
        "NEW",
        "VALIDATION",
        "CONTACTED",
        "SCHEDULED",
    ]
    assert detail_data["history"][1]["changed_by"] == staff_id
    event_types = [event["event_type"] for event in detail_data["events"]]
    assert event_types.count("status_change") == 3
    assert "note_public" in event_types


@pytest.mark.asyncio
async def test_cancelled_ticket_is_terminal(monkeypatch) -> None:
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="admin")
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_fault_payload())
        ticket_id = await _ticket_id(created.json()["data"]["folio"])

        cancelled = await client.patch(
            f"/v1/tickets/{ticket_id}/status", json={"status": "CANCELLED"}, headers=headers
        )
        reopened = await client.patch(
            f"/v1/tickets/{ticket_id}/status", json={"status": "DIAGNOSIS"}, headers=headers
        )

    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["status_label"] == "Cancelado"
    assert reopened.status_code == 409


@pytest.mark.asyncio
async def test_internal_notes_stay_off_the_public_timeline(monkeypatch) -> None:
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="tech")
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post("/v1/tickets", json=_fault_payload())
        folio = created.json()["data"]["folio"]
        ticket_id = await _ticket_id(folio)

        note = await client.post(
            f"/v1/tickets/{ticket_id}/notes",
            json={"content": "Cliente con adeudo previo"},
            headers=headers,
        )
        tracked = await client.post("/v1/tickets/track", json={"folio": folio, "phone_last4": "4321"})

    assert note.status_code == 201
    assert note.json()["data"]["is_visible_to_customer"] is False
    data = tracked.json()["data"]
    assert data["public_note"] is None
    assert all(step["note"] is None for step in data["timeline"])


@pytest.mark.asyncio
async def test_assign_and_list_tickets(monkeypatch) -> None:
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="counter")
    _tech_key, _tech_headers, tech_id, _tech_key_id = await create_test_api_key(
        role="tech", full_name="Técnico Uno"
    )
    _gone_key, _gone_headers, inactive_id, _gone_key_id = await create_test_api_key(
        role="tech", user_active=False
    )
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/v1/tickets", json=_contract_payload())
        await client.post("/v1/tickets", json=_fault_payload())
        await client.post("/v1/tickets", json=_fault_payload(full_name="Ana Gómez"))
        ticket_id = await _ticket_id(first.json()["data"]["folio"])

        assigned = await client.post(
            f"/v1/tickets/{ticket_id}/assign", json={"staff_id": tech_id}, headers=headers
        )
        rejected = await client.post(
            f"/v1/tickets/{ticket_id}/assign", json={"staff_id": inactive_id}, headers=headers
        )
        faults = await client.get("/v1/tickets", params={"type": "fault", "limit": 1}, headers=headers)
        search = await client.get("/v1/tickets", params={"search": "Gómez"}, headers=headers)

    assert assigned.status_code == 200
    assert assigned.json()["data"]["assigned_to"] == tech_id
    assert rejected.status_code == 422
    assert rejected.json()["error"]["code"] == "ASSIGNEE_INVALID"

    page = faults.json()["data"]
    assert page["total"] == 2
    assert len(page["items"]) == 1
    assert page["next_offset"] == 1
    assert search.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_unknown_ticket_returns_not_found(monkeypatch) -> None:
    _raw_key, headers, _staff_id, _key_id = await create_test_api_key(role="tech")
    app = _build_app(monkeypatch)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/v1/tickets/does-not-exist", headers=headers)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"
