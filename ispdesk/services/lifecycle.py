from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ispdesk.domain.lifecycle import (
    REASON_INVALID_TRANSITION,
    REASON_PRECONDITION_FAILED,
    REASON_UNKNOWN_STATUS,
    LifecycleResult,
)


logger = logging.getLogger(__name__)

_REASON_TO_HTTP: dict[str, tuple[int, str]] = {
    REASON_INVALID_TRANSITION: (409, "INVALID_TRANSITION"),
    REASON_PRECONDITION_FAILED: (409, "PRECONDITION_FAILED"),
    REASON_UNKNOWN_STATUS: (422, "UNKNOWN_STATUS"),
}


def lifecycle_http_error(result: LifecycleResult) -> HTTPException:
    # The field detail lets forms highlight the offending input.
    status_code, code = _REASON_TO_HTTP.get(result.reason or "", (409, "CONFLICT"))
    return HTTPException(
        status_code=status_code,
        detail={
            "code": code,
            "message": result.message or "Change rejected",
            "field": result.field,
            "reason": result.reason,
        },
    )


def ensure_allowed(result: LifecycleResult) -> LifecycleResult:
    if not result.ok:
        raise lifecycle_http_error(result)
    return result


async def commit_or_conflict(session: AsyncSession, *, entity: str) -> None:
    """Commit a status change, turning a lost optimistic-lock race into a 409.

    Versioned rows are written with ``WHERE version = <loaded>``; when another
    request committed first the flush matches no row and raises
    ``StaleDataError``.
    """
    try:
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        logger.warning("concurrent_update_rejected entity=%s", entity)
        raise HTTPException(
            status_code=409,
            detail={
                "code": "CONCURRENT_UPDATE",
                "message": f"The {entity} was changed by another request; reload and retry",
            },
        ) from exc
