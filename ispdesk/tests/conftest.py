from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before ispdesk.persistence.db is imported.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="ispdesk-tests-")
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'ispdesk-test.db')}"
)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from ispdesk.apps.api import rate_limit
from ispdesk.core.config import get_settings
from ispdesk.domain.models import Base
from ispdesk.persistence.db import engine


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables built from the model metadata.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settings_and_limiter() -> None:
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
    yield
    get_settings.cache_clear()
    rate_limit.reset_rate_limiter_state()
