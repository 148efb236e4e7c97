"""Reference numbers for orders and invoices.

Each ``(year, month, period_type, period_number)`` bucket owns one counter
document in ``invoice_counters``; numbers are handed out by an atomic
``$inc`` so concurrent checkouts never share a sequence.
"""

from datetime import datetime
from typing import Optional

from pymongo import ReturnDocument

from .extensions import mongo
from .helpers import utcnow

PERIOD_TYPES = ("order", "one-time", "weekly", "monthly")
PERIOD_CODES = {"weekly": "W", "monthly": "M"}


def _check_period_type(period_type: str) -> None:
    if period_type not in PERIOD_TYPES:
        raise ValueError(f"Unknown period type: {period_type!r}")


def increment_sequence(year: int, month: int, period_type: str, period_number: int = 1) -> int:
    _check_period_type(period_type)
    counter = mongo.db.invoice_counters.find_one_and_update(
        {
            "year": year,
            "month": month,
            "period_type": period_type,
            "period_number": period_number,
        },
        {"$inc": {"sequence": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["sequence"])


def get_next_sequence(year: int, month: int, period_type: str, period_number: int = 1) -> int:
    """Peek at the sequence the next number in this bucket would get."""
    _check_period_type(period_type)
    counter = mongo.db.invoice_counters.find_one(
        {
            "year": year,
            "month": month,
            "period_type": period_type,
            "period_number": period_number,
        }
    )
    if not counter:
        return 1
    return int(counter.get("sequence") or 0) + 1


def get_current_period_number(period_type: str, start: Optional[datetime] = None) -> int:
    if period_type not in PERIOD_CODES:
        raise ValueError(f"Unknown billing period: {period_type!r}")
    if period_type == "monthly":
        return 1
    start = start or utcnow()
    return (start.day - 1) // 7 + 1


def generate_order_reference(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    sequence = increment_sequence(now.year, now.month, "order")
    return f"ORD-{now.year}{now.month:02d}-{sequence:04d}"


def generate_one_time_invoice_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    sequence = increment_sequence(now.year, now.month, "one-time")
    return f"INV-{now.year}{now.month:02d}-{sequence:04d}"


def generate_period_invoice_number(
    period_type: str, period_number: int, now: Optional[datetime] = None
) -> str:
    if period_type not in PERIOD_CODES:
        raise ValueError(f"Unknown billing period: {period_type!r}")
    now = now or utcnow()
    sequence = increment_sequence(now.year, now.month, period_type, period_number)
    return (
        f"PER-{now.year}{now.month:02d}-{PERIOD_CODES[period_type]}-"
        f"{period_number:02d}-{sequence:03d}"
    )
