"""
Utility functions for the application.
"""
import re

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.core.exceptions import OrderValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return a timezone-aware datetime.

    Some drivers (SQLite) hand back naive datetimes even for timezone-aware
    columns; everything we store is UTC so a naive value is read as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a remote payload. Returns None if unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        return None


# Largest magnitude a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal("9999999999.99")


def safe_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """
    Convert a remote amount (string, int, float, None) to a 2dp Decimal.

    Unparseable values fall back to default; parseable amounts that cannot be
    stored (infinite, NaN or too large) raise OrderValidationError.
    """
    if value is None or value == "":
        return default
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        raise OrderValidationError(f"Amount {value!r} is out of range")
    return amount.quantize(Decimal("0.01"))


def safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def clean_location_name(location: Any) -> Optional[str]:
    """Strip the numeric zone code some stores prefix to city/state values ("12:Cairo")."""
    if not location:
        return None
    return re.sub(r"^\d+:", "", str(location)).strip() or None


def isoformat_utc(value: datetime) -> str:
    """Format a datetime the way the remote store expects in query filters."""
    return ensure_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
