from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.core.config import get_settings
from ispdesk.domain.models import ApiKey, StaffUser
from ispdesk.persistence.db import get_session
from ispdesk.services.audit import bind_actor, get_request_context
from ispdesk.services.auth.api_keys import hash_api_key, normalize_role, role_allows


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; closed on success and error alike.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    staff_id: str
    role: str
    api_key_id: str
    auth_method: str = "api_key"


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _principal_from_dev_headers(request: Request) -> Principal:
    # Only reachable with AUTH_ENABLED=false, for local development.
    staff_id = request.headers.get("X-Staff-Id")
    if not staff_id:
        raise _auth_error("X-Staff-Id header is required when auth is disabled")
    try:
        role = normalize_role(request.headers.get("X-Role", "admin"))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(staff_id=staff_id, role=role, api_key_id="dev-bypass", auth_method="dev_bypass")


def _log_auth_failure(request: Request, reason: str) -> None:
    ctx = get_request_context(request)
    logger.warning(
        "auth_failure reason=%s path=%s ip=%s request_id=%s",
        reason,
        request.url.path,
        ctx["ip_address"],
        ctx["request_id"],
    )


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    if not settings.auth_enabled:
        principal = _principal_from_dev_headers(request)
        bind_actor(db, principal.staff_id)
        return principal

    try:
        bearer_token = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    except HTTPException:
        _log_auth_failure(request, "malformed_header")
        raise
    if not bearer_token:
        _log_auth_failure(request, "missing_key")
        raise _auth_error("Missing API key")

    try:
        result = await db.execute(
            select(ApiKey, StaffUser)
            .join(StaffUser, ApiKey.user_id == StaffUser.id)
            .where(ApiKey.key_hash == hash_api_key(bearer_token))
        )
    except SQLAlchemyError as exc:
        logger.error("auth_lookup_failed path=%s", request.url.path, exc_info=exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc

    row = result.first()
    if row is None:
        _log_auth_failure(request, "unknown_key")
        raise _auth_error("Invalid API key")
    api_key, user = row
    if api_key.revoked_at is not None or not user.is_active:
        _log_auth_failure(request, "revoked_or_inactive")
        raise _auth_error("API key is revoked or inactive")
    if api_key.expires_at is not None and _as_utc(api_key.expires_at) <= datetime.now(timezone.utc):
        _log_auth_failure(request, "expired")
        raise _auth_error("API key expired")
    try:
        role = normalize_role(user.role)
    except ValueError as exc:
        _log_auth_failure(request, "unsupported_role")
        raise _forbidden_error(str(exc)) from exc

    bind_actor(db, user.id)
    return Principal(staff_id=user.id, role=role, api_key_id=api_key.id)


def require_role(minimum_role: str):
    normalize_role(minimum_role)

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            logger.warning(
                "rbac_denied staff_id=%s role=%s required=%s",
                principal.staff_id,
                principal.role,
                minimum_role,
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency
