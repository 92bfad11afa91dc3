"""
models.py
Lightweight domain helpers (plan cadences, statuses, dataclasses).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from enum import Enum


class PlanCadence(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


# Months added per renewal
CADENCE_MONTHS = {
    PlanCadence.MONTHLY: 1,
    PlanCadence.QUARTERLY: 3,
    PlanCadence.YEARLY: 12,
}

# Default prices seeded into the plans table
PLAN_PRICES = {
    PlanCadence.MONTHLY: 300.0,
    PlanCadence.QUARTERLY: 800.0,
    PlanCadence.YEARLY: 3000.0,
}

PAYMENT_METHODS = ("cash", "card", "transfer")

# Days after the first failed charge on which the renewal job retries.
# Failing the last one rejects the subscription.
RETRY_DAYS = (3, 7)


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_CANCELLATION = "PENDING_CANCELLATION"
    GRACE_PERIOD = "GRACE_PERIOD"
    REJECTED = "REJECTED"
    REJECTED_FATAL = "REJECTED_FATAL"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class RecurrenceResult:
    next_expiration: date
    anchor: int


@dataclass(frozen=True)
class Subscription:
    id: int | None
    member_name: str
    plan: PlanCadence
    anchor_day: int  # 1..31, only replaced on reactivation
    start_date: date
    end_date: date
    status: MembershipStatus
    auto_renew: bool = True
    grace_since: date | None = None  # first failed charge of the current cycle
    retries: int = 0  # retry attempts used since grace_since


@dataclass(frozen=True)
class Payment:
    id: int | None
    subscription_id: int
    amount: float
    date: date
    method: str  # cash/card/transfer
    notes: str | None


@dataclass(frozen=True)
class ChargeResult:
    approved: bool
    fatal: bool = False  # card blacklisted / high risk: no point retrying
    detail: str | None = None


@dataclass(frozen=True)
class ChangeRequest:
    id: int | None
    subscription_id: int
    effective_at: date
    new_plan: PlanCadence | None
    new_auto_renew: bool | None
    status: str  # 'PENDING' or 'APPLIED'
