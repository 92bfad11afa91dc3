"""
billing.py
Billing-cycle recurrence: next expiration dates and anchor-day transitions.

Every function here is pure. Dates come in as parameters; nothing reads the
system clock, so renewals computed late or early land on the same day.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from models import CADENCE_MONTHS, PlanCadence, RecurrenceResult

MIN_ANCHOR = 1
MAX_ANCHOR = 31


class InvalidAnchorError(ValueError):
    pass


class UnknownCadenceError(ValueError):
    pass


# ---------- Calendar helpers ----------

def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - timedelta(days=1)).day


def last_day_of_month(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    Overflowing days clamp to the month end; they never roll into the next month.
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    day = min(start.day, days_in_month(y, m))
    return date(y, m, day)


# ---------- Input checks ----------

def validate_anchor(anchor) -> int:
    # bool is an int subclass; True would silently become anchor 1
    if isinstance(anchor, bool) or not isinstance(anchor, int):
        raise InvalidAnchorError(f"Anchor day must be an integer, got {anchor!r}.")
    if not MIN_ANCHOR <= anchor <= MAX_ANCHOR:
        raise InvalidAnchorError(f"Anchor day must be between {MIN_ANCHOR} and {MAX_ANCHOR}, got {anchor}.")
    return anchor


def coerce_cadence(value) -> PlanCadence:
    """
    Accept a PlanCadence or its name ("monthly", " QUARTERLY ").
    """
    if isinstance(value, PlanCadence):
        return value
    if isinstance(value, str):
        try:
            return PlanCadence(value.strip().upper())
        except ValueError:
            pass
    raise UnknownCadenceError(f"Unknown plan cadence: {value!r}.")


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected a date, got {type(value).__name__}.")


# ---------- Engine ----------

def compute_next_expiration(anchor: int, cadence: PlanCadence | str, from_date: date) -> date:
    """
    Next expiration one cadence period after ``from_date``, pinned to the anchor day.

    The target month is ``from_date`` plus the cadence offset. If the anchor does
    not exist in that month the result is the month's last day; the anchor itself
    is untouched, so a later month long enough gets the anchor day back
    (Mar 31 -> Apr 30 -> May 31).
    """
    anchor = validate_anchor(anchor)
    cadence = coerce_cadence(cadence)
    from_date = _as_date(from_date)

    target = add_months(from_date, CADENCE_MONTHS[cadence])
    last_day = days_in_month(target.year, target.month)
    if anchor > last_day:
        return target.replace(day=last_day)
    return target.replace(day=anchor)


def extend_active(anchor: int, current_expiry: date, cadence: PlanCadence | str) -> date:
    """
    Maintenance renewal: extend from the current expiry, keeping the anchor.
    """
    return compute_next_expiration(anchor, cadence, current_expiry)


def reactivate(payment_date: date, cadence: PlanCadence | str) -> RecurrenceResult:
    """
    Reactivation: the payment day becomes the new anchor and the cycle restarts there.
    """
    payment_date = _as_date(payment_date)
    new_anchor = payment_date.day
    return RecurrenceResult(
        next_expiration=compute_next_expiration(new_anchor, cadence, payment_date),
        anchor=new_anchor,
    )
