"""
Detention time and amount calculation.

Pure functions only: no I/O, no clock reads. Callers pass "now" as the
departure when computing a live total for an active event.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from app.models.detention_event import DetentionCalculation

CENTS = Decimal('0.01')
MINUTE_SECONDS = Decimal('60')


def round_currency(amount: Decimal) -> Decimal:
    """Round to cents, half-up"""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def elapsed_minutes(arrival_time: datetime, departure_time: datetime) -> int:
    """Whole minutes between two instants, rounded half-up. May be negative."""
    seconds = Decimal(str((departure_time - arrival_time).total_seconds()))
    return int((seconds / MINUTE_SECONDS).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def calculate_detention(
    arrival_time: datetime,
    departure_time: datetime,
    grace_period_minutes: int,
    hourly_rate: Union[Decimal, int, str]
) -> DetentionCalculation:
    """
    Billable minutes and amount for one stay.

    Negative elapsed time (departure before arrival, usually device clock
    skew) is clamped to zero and flagged with clock_skew instead of failing.
    A negative grace period or rate is treated as zero.
    """
    total = elapsed_minutes(arrival_time, departure_time)
    clock_skew = total < 0
    if clock_skew:
        total = 0

    grace = max(0, grace_period_minutes)
    rate = max(Decimal('0'), Decimal(str(hourly_rate)))

    detention_minutes = max(0, total - grace)
    amount = round_currency(Decimal(detention_minutes) * rate / MINUTE_SECONDS)

    return DetentionCalculation(
        total_elapsed_minutes=total,
        detention_minutes=detention_minutes,
        total_amount=amount,
        clock_skew=clock_skew
    )


def grace_period_end(arrival_time: datetime, grace_period_minutes: int) -> datetime:
    return arrival_time + timedelta(minutes=max(0, grace_period_minutes))


def is_in_grace_period(arrival_time: datetime, as_of: datetime, grace_period_minutes: int) -> bool:
    return as_of < grace_period_end(arrival_time, grace_period_minutes)
