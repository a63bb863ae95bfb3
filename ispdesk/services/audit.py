from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request


_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "hash"]
_REDACTED_VALUE = "[REDACTED]"

ACTOR_INFO_KEY = "actor_id"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_data(value: Any) -> Any:
    # Recursively scrub credential-like fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_data(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_data(item) for item in value]
    return value


def bind_actor(session: AsyncSession, actor_id: str | None) -> None:
    """Attribute every audit row written by this session to ``actor_id``."""
    session.info[ACTOR_INFO_KEY] = actor_id


def current_actor(info: dict[str, Any]) -> str | None:
    return info.get(ACTOR_INFO_KEY)


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Request identifiers and client hints for log lines; never credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}
