from __future__ import annotations

from datetime import date
import logging
import re
import secrets
from typing import Awaitable, Callable

from ispdesk.core.config import get_settings
from ispdesk.core.errors import FolioGenerationError
from ispdesk.domain.lifecycle import TicketType


logger = logging.getLogger(__name__)

FOLIO_PREFIXES: dict[TicketType, str] = {
    TicketType.CONTRACT: "CON",
    TicketType.FAULT: "FAL",
}
SERVICE_NUMBER_PREFIX = "SRV"

FOLIO_PATTERN = re.compile(r"^(CON|FAL)-\d{4}-\d{6}$")


def format_code(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year:04d}-{sequence:06d}"


def draw_code(prefix: str, today: date | None = None) -> str:
    year = (today or date.today()).year
    return format_code(prefix, year, secrets.randbelow(1_000_000))


def is_valid_folio(value: str) -> bool:
    return bool(FOLIO_PATTERN.match(value))


async def generate_unique_code(
    prefix: str,
    exists: Callable[[str], Awaitable[bool]],
    *,
    today: date | None = None,
    max_attempts: int | None = None,
) -> str:
    """Draw ``PREFIX-YYYY-NNNNNN`` codes until one is not taken."""
    attempts = max_attempts or get_settings().folio_max_attempts
    for attempt in range(1, attempts + 1):
        candidate = draw_code(prefix, today)
        if not await exists(candidate):
            return candidate
        logger.info("folio_collision prefix=%s attempt=%s", prefix, attempt)
    raise FolioGenerationError(f"Could not allocate a unique {prefix} code after {attempts} attempts")
