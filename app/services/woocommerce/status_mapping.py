# app/services/woocommerce/status_mapping.py
"""
Translation between the remote store's order status vocabulary and OrderStatus.

Both directions are total: any input (None, empty, malformed, a date string)
produces a valid status and nothing here raises.

Lookup order for remote -> local:
    1. date-shaped value     -> DELIVERED (the store sometimes reports the
                                completion date in the status field)
    2. tenant override table -> always wins
    3. default table
    4. strip the "wc-" prefix and retry overrides, then defaults
    5. keyword heuristics    -> best effort, logged every time
    6. PENDING
"""

import json
import logging
import re
from typing import Any, Dict, Mapping, Optional, Union

from app.core.enums import OrderStatus

logger = logging.getLogger(__name__)

VENDOR_PREFIX = "wc-"
DEFAULT_REMOTE_STATUS = "pending"

DATE_STATUS_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)

DEFAULT_REMOTE_TO_LOCAL: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "on-hold": OrderStatus.PENDING,
    "completed": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.REFUNDED,
    "failed": OrderStatus.CANCELLED,
    "checkout-draft": OrderStatus.PENDING,
    "trash": OrderStatus.CANCELLED,
}

DEFAULT_LOCAL_TO_REMOTE: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "pending",
    OrderStatus.CONFIRMED: "processing",
    OrderStatus.PROCESSING: "processing",
    OrderStatus.SHIPPED: "completed",
    OrderStatus.DELIVERED: "completed",
    OrderStatus.CANCELLED: "cancelled",
    OrderStatus.REFUNDED: "refunded",
}

# Checked in order; first substring hit wins
KEYWORD_HEURISTICS = (
    (("complet", "deliver"), OrderStatus.DELIVERED),
    (("process", "confirm"), OrderStatus.PROCESSING),
    (("cancel", "refund"), OrderStatus.CANCELLED),
    (("hold", "wait"), OrderStatus.PENDING),
    (("ship",), OrderStatus.SHIPPED),
)

OverrideTable = Union[Mapping[str, Any], str, None]


def normalize_status(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def parse_override_table(overrides: OverrideTable) -> Dict[str, OrderStatus]:
    """
    Normalise a tenant override table (dict or JSON text) into
    {normalised remote status: OrderStatus}. Unknown local values are dropped.
    """
    if not overrides:
        return {}

    table = overrides
    if isinstance(overrides, str):
        try:
            table = json.loads(overrides)
        except ValueError:
            logger.warning("Ignoring status mapping that is not valid JSON")
            return {}

    if not isinstance(table, Mapping):
        return {}

    parsed: Dict[str, OrderStatus] = {}
    for remote_status, local_status in table.items():
        key = normalize_status(remote_status)
        value = str(local_status or "").strip().upper()
        if not key:
            continue
        if value not in OrderStatus.values():
            logger.warning(f"Ignoring status mapping {remote_status!r} -> {local_status!r}: unknown local status")
            continue
        parsed[key] = OrderStatus(value)
    return parsed


def _guess_from_keywords(normalized: str) -> Optional[OrderStatus]:
    for keywords, status in KEYWORD_HEURISTICS:
        if any(keyword in normalized for keyword in keywords):
            return status
    return None


def to_local(external_status: Any, overrides: OverrideTable = None) -> OrderStatus:
    """Map a remote order status to the local OrderStatus."""
    raw = "" if external_status is None else str(external_status).strip()

    if DATE_STATUS_PATTERN.match(raw):
        logger.debug(f"Remote status {raw!r} looks like a date, treating as delivered")
        return OrderStatus.DELIVERED

    normalized = normalize_status(raw)
    if not normalized:
        return OrderStatus.PENDING

    table = parse_override_table(overrides)
    if normalized in table:
        return table[normalized]
    if normalized in DEFAULT_REMOTE_TO_LOCAL:
        return DEFAULT_REMOTE_TO_LOCAL[normalized]

    if normalized.startswith(VENDOR_PREFIX):
        stripped = normalized[len(VENDOR_PREFIX):]
        if stripped in table:
            return table[stripped]
        if stripped in DEFAULT_REMOTE_TO_LOCAL:
            return DEFAULT_REMOTE_TO_LOCAL[stripped]

    guessed = _guess_from_keywords(normalized)
    if guessed is not None:
        logger.warning(f"Best-effort status guess: remote status {raw!r} mapped to {guessed.value} by keyword")
        return guessed

    logger.warning(f"Unrecognised remote status {raw!r}, defaulting to {OrderStatus.PENDING.value}")
    return OrderStatus.PENDING


def to_external(local_status: Any, overrides: OverrideTable = None) -> str:
    """
    Map a local status to the remote vocabulary: reverse lookup through the
    tenant override table first, then the default table, then "pending".
    """
    if isinstance(local_status, OrderStatus):
        value = local_status.value
    else:
        value = str(local_status or "").strip().upper()

    for remote_status, mapped in parse_override_table(overrides).items():
        if mapped.value == value:
            return remote_status

    if value in OrderStatus.values():
        return DEFAULT_LOCAL_TO_REMOTE.get(OrderStatus(value), DEFAULT_REMOTE_STATUS)
    return DEFAULT_REMOTE_STATUS
