"""Append-only audit trail written from SQLAlchemy mapper events.

Every flush that inserts, updates or deletes a row of an audited model emits
an ``audit_logs`` row on the same connection, so the audit entry commits or
rolls back together with the change it describes.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import event, inspect
from sqlalchemy.orm import Mapper, object_session

from ispdesk.core.errors import AuditLogImmutableError
from ispdesk.domain.lifecycle import AuditAction
from ispdesk.domain.models import AuditLog, Base
from ispdesk.services.audit import current_actor, sanitize_data


logger = logging.getLogger(__name__)

_registered = False


def _is_audited(target: object) -> bool:
    return bool(getattr(type(target), "__audited__", False))


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    return sanitize_data(to_jsonable_python(values))


def _snapshot(mapper: Mapper, target: object) -> dict[str, Any]:
    # Read from the instance dict so expired attributes never trigger a load mid-flush.
    state = inspect(target)
    return {attr.key: state.dict.get(attr.key) for attr in mapper.column_attrs}


def _changes(mapper: Mapper, target: object) -> tuple[dict[str, Any], dict[str, Any]]:
    state = inspect(target)
    old_data: dict[str, Any] = {}
    new_data: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        old_data[attr.key] = history.deleted[0] if history.deleted else None
        new_data[attr.key] = history.added[0] if history.added else None
    return old_data, new_data


def _record_id(mapper: Mapper, target: object) -> str:
    identity = mapper.primary_key_from_instance(target)
    return ":".join(str(part) for part in identity)


def _performed_by(target: object) -> str | None:
    session = object_session(target)
    if session is None:
        return None
    return current_actor(session.info)


def _write(connection, *, mapper: Mapper, target: object, action: AuditAction, old, new) -> None:
    connection.execute(
        AuditLog.__table__.insert().values(
            table_name=mapper.local_table.name,
            record_id=_record_id(mapper, target),
            action=action.value,
            old_data=_jsonable(old) if old is not None else None,
            new_data=_jsonable(new) if new is not None else None,
            performed_by=_performed_by(target),
        )
    )


def _after_insert(mapper: Mapper, connection, target: object) -> None:
    if not _is_audited(target):
        return
    _write(
        connection,
        mapper=mapper,
        target=target,
        action=AuditAction.INSERT,
        old=None,
        new=_snapshot(mapper, target),
    )


def _after_update(mapper: Mapper, connection, target: object) -> None:
    if not _is_audited(target):
        return
    old_data, new_data = _changes(mapper, target)
    if not new_data:
        return
    _write(
        connection,
        mapper=mapper,
        target=target,
        action=AuditAction.UPDATE,
        old=old_data,
        new=new_data,
    )


def _after_delete(mapper: Mapper, connection, target: object) -> None:
    if not _is_audited(target):
        return
    _write(
        connection,
        mapper=mapper,
        target=target,
        action=AuditAction.DELETE,
        old=_snapshot(mapper, target),
        new=None,
    )


def _reject_audit_mutation(mapper: Mapper, connection, target: AuditLog) -> None:
    logger.error("audit_log_mutation_rejected id=%s", target.id)
    raise AuditLogImmutableError(f"audit_logs row {target.id} is append-only")


def register_audit_hooks() -> None:
    global _registered
    if _registered:
        return
    event.listen(Base, "after_insert", _after_insert, propagate=True)
    event.listen(Base, "after_update", _after_update, propagate=True)
    event.listen(Base, "after_delete", _after_delete, propagate=True)
    event.listen(AuditLog, "before_update", _reject_audit_mutation)
    event.listen(AuditLog, "before_delete", _reject_audit_mutation)
    _registered = True
