"""Human-readable unique order numbers."""
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

ORDER_NUMBER_PREFIX = "ORD"


def _candidate(timestamp: str) -> str:
    suffix = uuid.uuid4().hex[:8].upper()
    return f"{ORDER_NUMBER_PREFIX}-{timestamp}-{suffix}"


def generate_order_number(exists: Callable[[str], bool], now: Optional[datetime] = None) -> str:
    """
    Build ``ORD-<yyyyMMddHHmmss UTC>-<8 hex chars>`` unused by any order.

    Args:
        exists: Returns True when an order already has the candidate number
        now: Timestamp to embed, defaults to the current UTC time

    Returns:
        An order number ``exists`` reported as free
    """
    timestamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    order_number = _candidate(timestamp)
    while exists(order_number):
        order_number = _candidate(timestamp)
    return order_number
