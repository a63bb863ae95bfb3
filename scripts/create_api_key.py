from __future__ import annotations

import argparse
import asyncio
import sys

from ispdesk.persistence.db import SessionLocal
from ispdesk.persistence.repos import staff as staff_repo
from ispdesk.services.audit import bind_actor
from ispdesk.services.auth.api_keys import normalize_role


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a staff API key")
    parser.add_argument("--role", required=True, help="Role: tech|counter|admin|master")
    parser.add_argument("--name", required=True, help="Key label shown to operators")
    parser.add_argument("--staff-id", default=None, help="Existing staff user id to attach")
    parser.add_argument("--email", default=None, help="Staff email, used to find or create the user")
    parser.add_argument("--full-name", default=None, help="Full name when creating the user")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)

    async with SessionLocal() as session:
        bind_actor(session, "create_api_key")
        user = None
        if args.staff_id:
            user = await staff_repo.get_staff_user(session, args.staff_id)
            if user is None:
                raise ValueError(f"Staff user {args.staff_id} does not exist")
        elif args.email:
            user = await staff_repo.get_staff_user_by_email(session, args.email)

        if user is None:
            if not args.full_name:
                raise ValueError("--full-name is required when creating a staff user")
            user = await staff_repo.create_staff_user(
                session, full_name=args.full_name, role=role, email=args.email
            )
        elif user.role != role:
            user.role = role

        api_key, raw_key = await staff_repo.issue_api_key(session, user_id=user.id, name=args.name)
        await session.commit()

    print("API key created:")
    print(f"  staff_id: {user.id}")
    print(f"  key_id: {api_key.id}")
    print(f"  key_prefix: {api_key.key_prefix}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
