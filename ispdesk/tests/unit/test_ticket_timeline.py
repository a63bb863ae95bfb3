from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from ispdesk.services import tickets
from ispdesk.services.folios import draw_code, format_code, is_valid_folio
from ispdesk.services.lifecycle import ensure_allowed, lifecycle_http_error
from ispdesk.domain.lifecycle import LifecycleResult


T0 = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)


@dataclass
class _History:
    new_status: str
    created_at: datetime


@dataclass
class _Event:
    event_type: str
    content: str | None
    created_at: datetime


def test_status_labels() -> None:
    assert tickets.status_label("contract", "SCHEDULED") == "Cita agendada"
    assert tickets.status_label("fault", "SCHEDULED") == "Visita agendada"
    assert tickets.status_label("fault", "SOMETHING_ELSE") == "SOMETHING_ELSE"


def test_timeline_marks_completed_and_current_steps() -> None:
    history = [
        _History("NEW", T0),
        _History("VALIDATION", T0 + timedelta(hours=1)),
        _History("CONTACTED", T0 + timedelta(hours=2)),
    ]
    events = [
        _Event("note_public", "Te llamaremos mañana", T0 + timedelta(hours=1, minutes=5)),
        _Event("note_public", "Cita por confirmar", T0 + timedelta(hours=2, minutes=5)),
    ]
    timeline = tickets.build_timeline("contract", "CONTACTED", history, events)

    assert [step.status for step in timeline] == ["NEW", "VALIDATION", "CONTACTED", "SCHEDULED", "INSTALLED"]
    assert [step.completed for step in timeline] == [True, True, False, False, False]
    assert [step.current for step in timeline] == [False, False, True, False, False]
    assert timeline[1].date == T0 + timedelta(hours=1)
    assert timeline[1].note == "Te llamaremos mañana"
    assert timeline[2].note == "Cita por confirmar"
    assert timeline[0].note is None
    assert timeline[3].date is None


def test_final_step_counts_as_completed() -> None:
    history = [_History(status, T0 + timedelta(hours=i)) for i, status in enumerate(
        ["NEW", "DIAGNOSIS", "SCHEDULED", "IN_PROGRESS", "RESOLVED"]
    )]
    timeline = tickets.build_timeline("fault", "RESOLVED", history, [])
    assert all(step.completed for step in timeline)
    assert timeline[-1].current
    assert timeline[-1].label == "Resuelto ✓"


def test_cancelled_ticket_keeps_reached_steps() -> None:
    history = [
        _History("NEW", T0),
        _History("DIAGNOSIS", T0 + timedelta(hours=1)),
        _History("CANCELLED", T0 + timedelta(hours=2)),
    ]
    timeline = tickets.build_timeline("fault", "CANCELLED", history, [])
    assert [step.completed for step in timeline] == [True, True, False, False, False]
    assert not any(step.current for step in timeline)


def test_folio_format() -> None:
    assert format_code("CON", 2026, 42) == "CON-2026-000042"
    drawn = draw_code("FAL")
    assert is_valid_folio(drawn)
    assert not is_valid_folio("SRV-2026-000001")
    assert not is_valid_folio("CON-2026-12345")


def test_lifecycle_rejections_map_to_http_errors() -> None:
    conflict = lifecycle_http_error(
        LifecycleResult(ok=False, reason="invalid-transition", message="nope", field="status")
    )
    assert conflict.status_code == 409
    assert conflict.detail["code"] == "INVALID_TRANSITION"
    assert conflict.detail["field"] == "status"

    unknown = lifecycle_http_error(LifecycleResult(ok=False, reason="unknown-status", message="?"))
    assert unknown.status_code == 422
    assert unknown.detail["code"] == "UNKNOWN_STATUS"

    with pytest.raises(HTTPException) as excinfo:
        ensure_allowed(LifecycleResult(ok=False, reason="precondition-failed", message="x"))
    assert excinfo.value.detail["code"] == "PRECONDITION_FAILED"
    assert ensure_allowed(LifecycleResult(ok=True)).ok
