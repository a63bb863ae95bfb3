from __future__ import annotations

from datetime import datetime, timezone

from ispdesk.domain.models import ApiKey, StaffUser
from ispdesk.persistence.db import SessionLocal
from ispdesk.services.auth.api_keys import generate_api_key, normalize_role


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def create_test_api_key(
    *,
    role: str,
    name: str = "test-key",
    full_name: str = "Test Staff",
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    # Provision a staff user + API key pair for integration tests.
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        user = StaffUser(full_name=full_name, role=normalize_role(role), is_active=user_active)
        session.add(user)
        await session.flush()
        session.add(
            ApiKey(
                id=key_id,
                user_id=user.id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name=name,
                expires_at=key_expires_at,
                revoked_at=_utc_now() if key_revoked else None,
            )
        )
        await session.commit()
        user_id = user.id

    headers = {"Authorization": f"Bearer {raw_key}"}
    return raw_key, headers, user_id, key_id
