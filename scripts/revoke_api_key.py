from __future__ import annotations

import argparse
import asyncio
import sys

from ispdesk.persistence.db import SessionLocal
from ispdesk.persistence.repos import staff as staff_repo
from ispdesk.services.audit import bind_actor


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Revoke a staff API key by id")
    parser.add_argument("key_id", help="API key id to revoke")
    return parser


async def _revoke_key(key_id: str) -> int:
    # The row is kept with revoked_at set so the audit trail still resolves it.
    async with SessionLocal() as session:
        bind_actor(session, "revoke_api_key")
        api_key = await staff_repo.revoke_api_key(session, key_id)
        if api_key is None:
            raise ValueError("API key not found")
        await session.commit()
    print(f"Revoked API key {key_id} ({api_key.key_prefix})")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke_key(args.key_id))
    except Exception as exc:  # noqa: BLE001 - surface revocation failures clearly
        print(f"revoke_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
