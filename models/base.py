# models/base.py
"""
Base model and mixins for all database tables.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import BigInteger, Column, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

CENT = Decimal("0.01")


def _get_current_time():
    return datetime.now(timezone.utc)


class Money(TypeDecorator):
    """
    Decimal amount stored as an integer number of minor units (paise).

    Column arithmetic (col + :amount) and comparisons (col >= :amount) run on
    integers in every dialect, SQLite included. Bound values go through the
    same conversion because the type is reused for compared values.

    Example:
        Decimal("0.80") <-> 80
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return int((value.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-2)

    def coerce_compared_value(self, op, value):
        return self


class AuditMixin:
    createdAt = Column(DateTime, default=_get_current_time, index=True)
    updatedAt = Column(DateTime, default=_get_current_time, onupdate=_get_current_time)
