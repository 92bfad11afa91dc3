"""
utils.py
Validation, dates, renewal projections, exports, sample data.
"""

from __future__ import annotations

from datetime import date, timedelta
import pandas as pd

import billing
import db
import subscriptions


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def project_schedule(anchor: int, cadence, start: date, periods: int = 12) -> pd.DataFrame:
    """
    Chain maintenance renewals from ``start`` and show where each period ends.
    ``clamped`` marks periods whose end fell short of the anchor day.
    """
    rows = []
    current = start
    for period in range(1, periods + 1):
        end = billing.extend_active(anchor, current, cadence)
        rows.append({"period": period, "start": current, "end": end, "clamped": end.day != anchor})
        current = end
    return pd.DataFrame(rows, columns=["period", "start", "end", "clamped"])


def validate_subscription_inputs(member_name: str, plan, start_date: str) -> list[str]:
    errors: list[str] = []
    if not member_name.strip():
        errors.append("Member name is required.")
    try:
        billing.coerce_cadence(plan)
    except billing.UnknownCadenceError:
        errors.append("Plan must be MONTHLY, QUARTERLY or YEARLY.")
    try:
        parse_iso(start_date)
    except (TypeError, ValueError):
        errors.append("Start date must be a valid ISO date (YYYY-MM-DD).")
    return errors


def subscriptions_to_csv_bytes(rows) -> bytes:
    df = pd.DataFrame([dict(r) for r in rows])
    return df.to_csv(index=False).encode("utf-8")


def fetch_payments_export():
    return db.fetch_all(
        """
        SELECT p.id, p.subscription_id, s.member_name, p.amount, p.date, p.method, p.notes
        FROM payments p
        JOIN subscriptions s ON s.id = p.subscription_id
        ORDER BY p.date DESC, p.id DESC
        """
    )


def payments_to_csv_bytes(rows) -> bytes:
    df = pd.DataFrame([dict(r) for r in rows])
    return df.to_csv(index=False).encode("utf-8")


def revenue_summary_by_month() -> pd.DataFrame:
    rows = db.fetch_all(
        """
        SELECT strftime('%Y-%m', date) AS month, SUM(amount) AS revenue
        FROM payments
        GROUP BY strftime('%Y-%m', date)
        ORDER BY month DESC
        """
    )
    df = pd.DataFrame([dict(r) for r in rows])
    if df.empty:
        return pd.DataFrame(columns=["month", "revenue"])
    return df


def insert_sample_data(today: date) -> None:
    """
    Insert 3 subscriptions and their first payments (adds new rows each run).
    """
    # Paid one month ago, so due today (or a few days ago when last month was shorter)
    s1 = subscriptions.save_subscription(
        subscriptions.new_subscription("Ahmed Hassan", "MONTHLY", billing.add_months(today, -1))
    )

    s2 = subscriptions.save_subscription(
        subscriptions.new_subscription("Mona Ali", "QUARTERLY", today - timedelta(days=10))
    )

    # Lapsed after failed retries
    s3 = subscriptions.new_subscription("Omar Samy", "MONTHLY", today - timedelta(days=60))
    s3 = subscriptions.save_subscription(subscriptions.reject_after_retries(s3))

    for sub in (s1, s2, s3):
        subscriptions.record_payment(sub.id, db.plan_price(sub.plan.value), sub.start_date, "cash", "Sample payment")
