from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ispdesk.domain.models import ApiKey, StaffUser
from ispdesk.services.auth.api_keys import generate_api_key, normalize_role


async def get_staff_user(session: AsyncSession, staff_id: str) -> StaffUser | None:
    result = await session.execute(select(StaffUser).where(StaffUser.id == staff_id))
    return result.scalar_one_or_none()


async def get_staff_user_by_email(session: AsyncSession, email: str) -> StaffUser | None:
    result = await session.execute(select(StaffUser).where(StaffUser.email == email))
    return result.scalar_one_or_none()


async def create_staff_user(
    session: AsyncSession,
    *,
    full_name: str,
    role: str,
    email: str | None = None,
    phone: str | None = None,
) -> StaffUser:
    user = StaffUser(full_name=full_name, role=normalize_role(role), email=email, phone=phone)
    session.add(user)
    await session.flush()
    return user


async def issue_api_key(
    session: AsyncSession,
    *,
    user_id: str,
    name: str | None = None,
) -> tuple[ApiKey, str]:
    # The raw key is only ever returned here; the row keeps its hash.
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    api_key = ApiKey(
        id=key_id,
        user_id=user_id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
    )
    session.add(api_key)
    await session.flush()
    return api_key, raw_key


async def revoke_api_key(session: AsyncSession, key_id: str) -> ApiKey | None:
    # ORM attribute update, not a bulk UPDATE, so the change reaches the audit log.
    result = await session.execute(select(ApiKey).where(ApiKey.id == key_id))
    api_key = result.scalar_one_or_none()
    if api_key is None:
        return None
    if api_key.revoked_at is None:
        api_key.revoked_at = datetime.now(timezone.utc)
    return api_key
