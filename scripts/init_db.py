from __future__ import annotations

import argparse
import asyncio
from decimal import Decimal
import sys

from sqlalchemy import select

from ispdesk.domain.models import Base, Municipality, PostalCode, ServicePackage
from ispdesk.persistence.db import SessionLocal, engine
from ispdesk.services.audit import bind_actor


# Small catalogue so coverage checks and contract intake work on a fresh database.
DEMO_PACKAGES = (
    {"name": "Internet 20 Mbps", "type": "internet", "speed_mbps": 20, "monthly_price": Decimal("299.00")},
    {"name": "Internet 50 Mbps", "type": "internet", "speed_mbps": 50, "monthly_price": Decimal("399.00")},
    {"name": "TV Básica", "type": "tv", "channels_count": 80, "monthly_price": Decimal("249.00")},
    {
        "name": "Combo 50 Mbps + TV",
        "type": "combo",
        "speed_mbps": 50,
        "channels_count": 80,
        "monthly_price": Decimal("549.00"),
    },
)

DEMO_MUNICIPALITIES = (
    {"name": "Tuxtla Gutiérrez", "coverage_status": "available"},
    {"name": "Chiapa de Corzo", "coverage_status": "partial"},
    {"name": "Ocosingo", "coverage_status": "coming_soon"},
    {"name": "Tapachula", "coverage_status": "not_available"},
)

# Keyed by municipality name.
DEMO_POSTAL_CODES = {
    "Tuxtla Gutiérrez": {"code": "29000", "coverage_status": "available"},
    "Chiapa de Corzo": {"code": "29160", "coverage_status": "partial"},
    "Ocosingo": {"code": "29950", "coverage_status": "coming_soon"},
    "Tapachula": {"code": "30700", "coverage_status": "not_available"},
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create tables and optionally seed demo data")
    parser.add_argument("--seed", action="store_true", help="Insert demo packages and postal codes")
    return parser


async def _seed() -> None:
    async with SessionLocal() as session:
        bind_actor(session, "init_db")
        existing = await session.execute(select(ServicePackage.id).limit(1))
        if existing.first() is None:
            session.add_all(ServicePackage(**values) for values in DEMO_PACKAGES)
        existing = await session.execute(select(Municipality.id).limit(1))
        if existing.first() is None:
            for values in DEMO_MUNICIPALITIES:
                municipality = Municipality(**values)
                session.add(municipality)
                await session.flush()
                session.add(
                    PostalCode(municipality_id=municipality.id, **DEMO_POSTAL_CODES[municipality.name])
                )
        await session.commit()


async def _run(args: argparse.Namespace) -> int:
    # Local development only; deployed databases are managed with alembic.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if args.seed:
        await _seed()
    await engine.dispose()
    print("database ready")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface setup failures clearly
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
