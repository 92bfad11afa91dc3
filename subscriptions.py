"""
subscriptions.py
Subscription lifecycle (create, renew, reactivate, cancel, payment failures), its storage
and the daily billing job.

Lifecycle functions never mutate: they return an updated Subscription which the
caller persists with save_subscription().
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Callable

import billing
import db
from models import (
    RETRY_DAYS,
    ChangeRequest,
    ChargeResult,
    MembershipStatus,
    Payment,
    PlanCadence,
    Subscription,
)

logger = logging.getLogger("Billing.Subscriptions")

# A payment on these states starts a new billing relationship
REACTIVATABLE = (MembershipStatus.REJECTED, MembershipStatus.EXPIRED, MembershipStatus.CANCELLED)
RENEWABLE = (MembershipStatus.ACTIVE, MembershipStatus.GRACE_PERIOD)

Charge = Callable[[Subscription], ChargeResult]


class SubscriptionStateError(Exception):
    pass


# ---------- Lifecycle ----------

def new_subscription(member_name: str, plan: PlanCadence | str, start_date: date) -> Subscription:
    first = billing.reactivate(start_date, plan)
    return Subscription(
        id=None,
        member_name=member_name.strip(),
        plan=billing.coerce_cadence(plan),
        anchor_day=first.anchor,
        start_date=start_date,
        end_date=first.next_expiration,
        status=MembershipStatus.ACTIVE,
        auto_renew=True,
    )


def extend_active_subscription(sub: Subscription) -> Subscription:
    """
    Maintenance renewal (on time or during grace): the new period starts at the
    old expiry and the anchor day is kept.
    """
    next_end = billing.extend_active(sub.anchor_day, sub.end_date, sub.plan)
    return replace(
        sub,
        start_date=sub.end_date,
        end_date=next_end,
        status=MembershipStatus.ACTIVE,
        grace_since=None,
        retries=0,
    )


def reactivate_from_debt(sub: Subscription, payment_date: date) -> Subscription:
    """
    Reactivation: the previous anchor is discarded and the cycle restarts at the payment date.
    A cancelled subscription paid again renews automatically like a new one.
    """
    result = billing.reactivate(payment_date, sub.plan)
    logger.info(
        "Reactivating subscription %s: anchor %s -> %s",
        sub.id, sub.anchor_day, result.anchor,
    )
    return replace(
        sub,
        anchor_day=result.anchor,
        start_date=payment_date,
        end_date=result.next_expiration,
        status=MembershipStatus.ACTIVE,
        auto_renew=True,
        grace_since=None,
        retries=0,
    )


def settle_payment(sub: Subscription, payment_date: date) -> Subscription:
    if sub.status in RENEWABLE:
        return extend_active_subscription(sub)
    if sub.status in REACTIVATABLE:
        return reactivate_from_debt(sub, payment_date)
    raise SubscriptionStateError(f"Cannot apply a payment to a subscription in state {sub.status.value}.")


def register_payment_failure(sub: Subscription, fatal: bool, on: date) -> Subscription:
    if fatal:
        logger.error("Fatal payment failure for subscription %s", sub.id)
        return replace(sub, status=MembershipStatus.REJECTED_FATAL, grace_since=None, retries=0)
    if sub.status in (MembershipStatus.REJECTED, MembershipStatus.GRACE_PERIOD):
        return sub
    return replace(sub, status=MembershipStatus.GRACE_PERIOD, grace_since=on, retries=0)


def reject_after_retries(sub: Subscription) -> Subscription:
    logger.warning("Retries exhausted for subscription %s, marking as rejected", sub.id)
    return replace(sub, status=MembershipStatus.REJECTED, grace_since=None, retries=0)


def cancel_subscription(sub: Subscription) -> Subscription:
    if sub.status == MembershipStatus.ACTIVE:
        # Access runs until end_date, then it will not renew
        return replace(sub, status=MembershipStatus.PENDING_CANCELLATION, auto_renew=False)
    if sub.status == MembershipStatus.GRACE_PERIOD:
        return replace(sub, status=MembershipStatus.CANCELLED, auto_renew=False, grace_since=None, retries=0)
    return sub


def is_due(sub: Subscription, on: date) -> bool:
    return sub.status == MembershipStatus.ACTIVE and sub.auto_renew and sub.end_date <= on


def is_retry_due(sub: Subscription, on: date) -> bool:
    if sub.status != MembershipStatus.GRACE_PERIOD or sub.grace_since is None:
        return False
    if sub.retries >= len(RETRY_DAYS):
        return False
    return (on - sub.grace_since).days >= RETRY_DAYS[sub.retries]


# ---------- Storage ----------

_UPDATE_SUBSCRIPTION = """
    UPDATE subscriptions
    SET member_name=?, plan=?, anchor_day=?, start_date=?, end_date=?, status=?, auto_renew=?,
        grace_since=?, retries=?
    WHERE id=?
"""

_INSERT_PAYMENT = "INSERT INTO payments(subscription_id, amount, date, method, notes) VALUES(?,?,?,?,?)"


def _subscription_params(sub: Subscription) -> tuple:
    return (
        sub.member_name,
        sub.plan.value,
        sub.anchor_day,
        sub.start_date.isoformat(),
        sub.end_date.isoformat(),
        sub.status.value,
        int(sub.auto_renew),
        sub.grace_since.isoformat() if sub.grace_since else None,
        sub.retries,
    )


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        member_name=row["member_name"],
        plan=PlanCadence(row["plan"]),
        anchor_day=row["anchor_day"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        status=MembershipStatus(row["status"]),
        auto_renew=bool(row["auto_renew"]),
        grace_since=date.fromisoformat(row["grace_since"]) if row["grace_since"] else None,
        retries=row["retries"],
    )


def _row_to_payment(row) -> Payment:
    return Payment(
        id=row["id"],
        subscription_id=row["subscription_id"],
        amount=float(row["amount"]),
        date=date.fromisoformat(row["date"]),
        method=row["method"],
        notes=row["notes"],
    )


def _row_to_change_request(row) -> ChangeRequest:
    return ChangeRequest(
        id=row["id"],
        subscription_id=row["subscription_id"],
        effective_at=date.fromisoformat(row["effective_at"]),
        new_plan=PlanCadence(row["new_plan"]) if row["new_plan"] else None,
        new_auto_renew=None if row["new_auto_renew"] is None else bool(row["new_auto_renew"]),
        status=row["status"],
    )


def save_subscription(sub: Subscription) -> Subscription:
    if sub.id is None:
        sub_id = db.execute(
            """
            INSERT INTO subscriptions(member_name, plan, anchor_day, start_date, end_date, status, auto_renew,
                grace_since, retries)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            _subscription_params(sub),
        )
        logger.info("Created subscription %s for %s (%s)", sub_id, sub.member_name, sub.plan.value)
        return replace(sub, id=sub_id)

    db.execute(_UPDATE_SUBSCRIPTION, _subscription_params(sub) + (sub.id,))
    return sub


def get_subscription(sub_id: int) -> Subscription | None:
    row = db.fetch_one("SELECT * FROM subscriptions WHERE id = ?", (sub_id,))
    return _row_to_subscription(row) if row else None


def list_subscriptions(status: MembershipStatus | None = None) -> list[Subscription]:
    if status is None:
        rows = db.fetch_all("SELECT * FROM subscriptions ORDER BY end_date ASC, id ASC")
    else:
        rows = db.fetch_all(
            "SELECT * FROM subscriptions WHERE status = ? ORDER BY end_date ASC, id ASC",
            (status.value,),
        )
    return [_row_to_subscription(r) for r in rows]


def record_payment(sub_id: int, amount: float, paid_on: date, method: str, notes: str | None = None) -> int:
    return db.execute(_INSERT_PAYMENT, (sub_id, amount, paid_on.isoformat(), method, notes))


def save_paid_subscription(
    sub: Subscription, amount: float, paid_on: date, method: str, notes: str | None = None
) -> Subscription:
    """
    Store a payment and the subscription it renewed in one transaction.
    """
    with db.get_conn() as conn:
        conn.execute(_INSERT_PAYMENT, (sub.id, amount, paid_on.isoformat(), method, notes))
        conn.execute(_UPDATE_SUBSCRIPTION, _subscription_params(sub) + (sub.id,))
    return sub


def list_payments(sub_id: int) -> list[Payment]:
    rows = db.fetch_all(
        "SELECT * FROM payments WHERE subscription_id = ? ORDER BY date DESC, id DESC",
        (sub_id,),
    )
    return [_row_to_payment(r) for r in rows]


def request_change(
    sub_id: int,
    effective_at: date,
    new_plan: PlanCadence | str | None = None,
    new_auto_renew: bool | None = None,
) -> int:
    if new_plan is None and new_auto_renew is None:
        raise ValueError("A change request needs a new plan or a new auto-renew setting.")
    plan = billing.coerce_cadence(new_plan).value if new_plan is not None else None
    auto_renew = None if new_auto_renew is None else int(new_auto_renew)
    return db.execute(
        "INSERT INTO change_requests(subscription_id, effective_at, new_plan, new_auto_renew) VALUES(?,?,?,?)",
        (sub_id, effective_at.isoformat(), plan, auto_renew),
    )


def list_pending_changes(on: date) -> list[ChangeRequest]:
    rows = db.fetch_all(
        """
        SELECT * FROM change_requests
        WHERE status = 'PENDING' AND effective_at <= ?
        ORDER BY effective_at ASC, id ASC
        """,
        (on.isoformat(),),
    )
    return [_row_to_change_request(r) for r in rows]


# ---------- Daily job ----------

def _attempt_charge(sub: Subscription, charge: Charge) -> ChargeResult:
    # Gateway / network errors are soft failures: the subscription gets retried
    try:
        return charge(sub)
    except Exception as e:
        logger.exception("Error charging subscription %s", sub.id)
        return ChargeResult(approved=False, detail=str(e))


def _renew_paid(sub: Subscription, on: date) -> Subscription:
    amount = db.plan_price(sub.plan.value)
    renewed = save_paid_subscription(extend_active_subscription(sub), amount, on, "card", "Automatic renewal")
    logger.info("Renewed subscription %s until %s", sub.id, renewed.end_date.isoformat())
    return renewed


def apply_pending_changes(on: date) -> list[Subscription]:
    """
    Apply plan / auto-renew change requests effective on or before ``on``.
    Runs before renewals so the new plan is the one charged and extended.
    """
    updated = []
    for change in list_pending_changes(on):
        sub = get_subscription(change.subscription_id)
        if sub is None:
            continue
        if change.new_plan is not None:
            logger.info("Changing plan of subscription %s from %s to %s", sub.id, sub.plan.value, change.new_plan.value)
            sub = replace(sub, plan=change.new_plan)
        if change.new_auto_renew is not None:
            logger.info("Changing auto_renew of subscription %s to %s", sub.id, change.new_auto_renew)
            sub = replace(sub, auto_renew=change.new_auto_renew)

        with db.get_conn() as conn:
            conn.execute(_UPDATE_SUBSCRIPTION, _subscription_params(sub) + (sub.id,))
            conn.execute("UPDATE change_requests SET status = 'APPLIED' WHERE id = ?", (change.id,))
        updated.append(sub)
    return updated


def process_due_renewals(on: date, charge: Charge) -> list[Subscription]:
    """
    Renew every active subscription whose end_date is on or before ``on``.

    ``charge`` performs the actual collection. Successful charges extend from the
    stored expiry, so running the job late does not move anybody's billing day.
    Soft failures (including exceptions raised by ``charge``) start the grace
    period; fatal ones reject the subscription outright.
    """
    updated = []
    due = [s for s in list_subscriptions(MembershipStatus.ACTIVE) if is_due(s, on)]
    logger.info("Processing %d due renewal(s) for %s", len(due), on.isoformat())

    for sub in due:
        result = _attempt_charge(sub, charge)
        if result.approved:
            renewed = _renew_paid(sub, on)
        else:
            renewed = save_subscription(register_payment_failure(sub, result.fatal, on))
            logger.warning("Charge failed for subscription %s (%s), now %s", sub.id, result.detail, renewed.status.value)
        updated.append(renewed)
    return updated


def process_retries(on: date, charge: Charge) -> list[Subscription]:
    """
    Retry grace-period subscriptions on the days listed in RETRY_DAYS (counted
    from the first failure). A soft failure on the last retry rejects them.
    """
    updated = []
    pending = [s for s in list_subscriptions(MembershipStatus.GRACE_PERIOD) if is_retry_due(s, on)]
    logger.info("Processing %d retry attempt(s) for %s", len(pending), on.isoformat())

    for sub in pending:
        result = _attempt_charge(sub, charge)
        if result.approved:
            renewed = _renew_paid(sub, on)
        elif result.fatal:
            renewed = save_subscription(register_payment_failure(sub, True, on))
        elif sub.retries + 1 >= len(RETRY_DAYS):
            renewed = save_subscription(reject_after_retries(sub))
        else:
            renewed = save_subscription(replace(sub, retries=sub.retries + 1))
            logger.info("Retry %d failed for subscription %s", renewed.retries, sub.id)
        updated.append(renewed)
    return updated


def run_billing_cycle(on: date, charge: Charge) -> dict[str, list[Subscription]]:
    """
    The daily run: pending changes, then expirations, then retries.
    """
    logger.info("Starting billing cycle for %s", on.isoformat())
    return {
        "changes": apply_pending_changes(on),
        "renewals": process_due_renewals(on, charge),
        "retries": process_retries(on, charge),
    }
