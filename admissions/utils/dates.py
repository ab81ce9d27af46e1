from datetime import datetime, timezone
from typing import Optional

from dateutil import parser
from dateutil.relativedelta import relativedelta
from loguru import logger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; day is clamped to the end of shorter months"""
    return value + relativedelta(months=months)


def parse_gateway_timestamp(value: Optional[str]) -> datetime:
    """Parse Paystack's ISO-8601 paid_at, falling back to now"""
    if not value:
        return utc_now()
    try:
        return ensure_utc(parser.isoparse(value))
    except (ValueError, OverflowError):
        logger.warning(f"Unparseable gateway timestamp {value!r}, using current time")
        return utc_now()
