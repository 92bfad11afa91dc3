"""
app.py
Streamlit Gym Billing (owner-only): subscriptions, renewals and the billing-cycle calculator.
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
import os
from datetime import date, timedelta
from dataclasses import asdict

import pandas as pd
import streamlit as st

import billing
import db
import subscriptions
import utils
from models import CADENCE_MONTHS, PAYMENT_METHODS, ChargeResult, MembershipStatus, PlanCadence

st.set_page_config(page_title="Gym Billing", layout="wide")

PLAN_OPTIONS = [p.value for p in PlanCadence]
STATUS_OPTIONS = [s.value for s in MembershipStatus]


def init_once():
    logging.basicConfig(
        level=os.environ.get("GYM_BILLING_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db.init_db()


def subscriptions_frame(subs) -> pd.DataFrame:
    if not subs:
        return pd.DataFrame(columns=[
            "id", "member_name", "plan", "anchor_day", "start_date", "end_date", "status", "auto_renew",
            "grace_since", "retries",
        ])
    df = pd.DataFrame([asdict(s) for s in subs])
    df["plan"] = df["plan"].map(lambda p: p.value)
    df["status"] = df["status"].map(lambda s: s.value)
    return df


def subscription_label(sub) -> str:
    return f"{sub.member_name} ({sub.plan.value}) - ID {sub.id}"


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    today = date.today()
    all_subs = subscriptions.list_subscriptions()
    counts = {s: 0 for s in MembershipStatus}
    for sub in all_subs:
        counts[sub.status] += 1

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Active", counts[MembershipStatus.ACTIVE])
    c2.metric("Grace period", counts[MembershipStatus.GRACE_PERIOD])
    c3.metric("Rejected", counts[MembershipStatus.REJECTED] + counts[MembershipStatus.REJECTED_FATAL])
    c4.metric("Pending cancellation", counts[MembershipStatus.PENDING_CANCELLATION])

    st.divider()

    st.subheader("Due for renewal (today or earlier)")
    due = [s for s in all_subs if subscriptions.is_due(s, today)]
    if due:
        st.dataframe(subscriptions_frame(due), use_container_width=True, hide_index=True)
    else:
        st.caption("No subscriptions due.")

    in_7 = today + timedelta(days=7)
    st.subheader("Expiring in the next 7 days")
    soon = [s for s in all_subs if s.status == MembershipStatus.ACTIVE and today < s.end_date <= in_7]
    if soon:
        st.dataframe(subscriptions_frame(soon), use_container_width=True, hide_index=True)
    else:
        st.caption("No subscriptions expiring in the next 7 days.")


def subscription_form():
    st.subheader("➕ New subscription")

    col1, col2, col3 = st.columns(3)
    with col1:
        member_name = st.text_input("Member name")
    with col2:
        plan = st.selectbox("Plan", options=PLAN_OPTIONS)
    with col3:
        start_date = st.date_input("Payment / start date", value=date.today()).isoformat()

    errors = utils.validate_subscription_inputs(member_name, plan, start_date)
    for e in errors:
        st.error(e)

    preview = None
    if not errors:
        preview = subscriptions.new_subscription(member_name, plan, utils.parse_iso(start_date))
        st.info(f"Anchor day: **{preview.anchor_day}** | First expiration: **{preview.end_date.isoformat()}**")

    record_payment = st.toggle("Record first payment", value=True)
    pay_method = st.selectbox("Payment method", PAYMENT_METHODS, disabled=not record_payment)

    if st.button("Create", type="primary", disabled=preview is None):
        sub = subscriptions.save_subscription(preview)
        if record_payment:
            subscriptions.record_payment(sub.id, db.plan_price(sub.plan.value), sub.start_date, pay_method)
        st.success("Subscription created.")
        st.rerun()


def subscriptions_page():
    st.header("👥 Subscriptions")

    with st.sidebar:
        st.subheader("Filters")
        status_filter = st.selectbox("Status", ["All"] + STATUS_OPTIONS)

    status = None if status_filter == "All" else MembershipStatus(status_filter)
    subs = subscriptions.list_subscriptions(status)
    st.dataframe(subscriptions_frame(subs), use_container_width=True, hide_index=True)

    st.divider()

    if subs:
        options = {subscription_label(s): s for s in subs}
        chosen = options[st.selectbox("Subscription", list(options.keys()))]
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Cancel subscription"):
                updated = subscriptions.cancel_subscription(chosen)
                if updated == chosen:
                    st.warning(f"Nothing to cancel in state {chosen.status.value}.")
                else:
                    subscriptions.save_subscription(updated)
                    st.success(f"Subscription is now {updated.status.value}.")
                    st.rerun()
        with c2:
            if st.button("Mark retries exhausted"):
                subscriptions.save_subscription(subscriptions.reject_after_retries(chosen))
                st.rerun()

        st.subheader("Schedule a change")
        c1, c2, c3 = st.columns(3)
        with c1:
            new_plan = st.selectbox("New plan", ["(keep)"] + PLAN_OPTIONS)
        with c2:
            new_auto_renew = st.selectbox("Auto-renew", ["(keep)", "on", "off"])
        with c3:
            effective_at = st.date_input("Effective from", value=chosen.end_date)
        if st.button("Schedule change"):
            try:
                subscriptions.request_change(
                    chosen.id,
                    effective_at,
                    new_plan=None if new_plan == "(keep)" else new_plan,
                    new_auto_renew=None if new_auto_renew == "(keep)" else new_auto_renew == "on",
                )
            except ValueError as e:
                st.error(str(e))
            else:
                st.success("Change scheduled; it is applied by the next billing run on or after that date.")

        payments = subscriptions.list_payments(chosen.id)
        st.subheader("Payment history")
        if payments:
            st.dataframe(pd.DataFrame([asdict(p) for p in payments]), use_container_width=True, hide_index=True)
        else:
            st.caption("No payments for this subscription yet.")

    st.divider()
    subscription_form()


def renewals_page():
    st.header("🔁 Renewals")

    subs = [
        s for s in subscriptions.list_subscriptions()
        if s.status in subscriptions.RENEWABLE + subscriptions.REACTIVATABLE
    ]
    if not subs:
        st.info("No subscriptions can take a payment right now.")
        return

    options = {subscription_label(s): s for s in subs}
    sub = options[st.selectbox("Subscription", list(options.keys()))]
    st.write(
        f"Plan: **{sub.plan.value}** | Anchor day: **{sub.anchor_day}** | "
        f"End: **{sub.end_date.isoformat()}** | Status: **{sub.status.value}**"
    )

    col1, col2, col3 = st.columns(3)
    with col1:
        pay_date = st.date_input("Payment date", value=date.today())
    with col2:
        amount = st.text_input("Amount", value=str(db.plan_price(sub.plan.value)))
    with col3:
        method = st.selectbox("Method", PAYMENT_METHODS)

    try:
        preview = subscriptions.settle_payment(sub, pay_date)
    except subscriptions.SubscriptionStateError as e:
        st.error(str(e))
        return

    if preview.anchor_day != sub.anchor_day:
        st.warning(f"Reactivation: anchor day resets from {sub.anchor_day} to {preview.anchor_day}.")
    st.info(f"New expiration: **{preview.end_date.isoformat()}**")

    if st.button("Record payment", type="primary"):
        try:
            amt = float(amount)
        except ValueError:
            st.error("Amount must be numeric.")
            return
        if amt <= 0:
            st.error("Amount must be > 0.")
            return
        subscriptions.save_paid_subscription(preview, amt, pay_date, method)
        st.success("Payment recorded.")
        st.rerun()

    st.divider()

    st.subheader("Daily billing run")
    st.caption(
        "Applies pending plan changes, renews due subscriptions and runs retries. "
        "Every charge is treated as approved; use it to catch up on renewals collected at the counter."
    )
    run_on = st.date_input("Run for date", value=date.today(), key="run_on")
    if st.button("Run billing cycle"):
        result = subscriptions.run_billing_cycle(run_on, lambda _sub: ChargeResult(approved=True))
        st.success(
            f"{len(result['changes'])} change(s) applied, {len(result['renewals'])} renewal(s), "
            f"{len(result['retries'])} retry(ies)."
        )


def calculator_page():
    st.header("🧮 Billing cycle calculator")

    col1, col2, col3 = st.columns(3)
    with col1:
        anchor = st.number_input("Anchor day", min_value=1, max_value=31, value=31, step=1)
    with col2:
        plan = st.selectbox("Plan", PLAN_OPTIONS)
    with col3:
        from_date = st.date_input("From date", value=date(2024, 3, 31))

    try:
        next_exp = billing.compute_next_expiration(int(anchor), plan, from_date)
    except (billing.InvalidAnchorError, billing.UnknownCadenceError) as e:
        st.error(str(e))
        return

    st.metric("Next expiration", next_exp.isoformat())
    st.caption(f"{CADENCE_MONTHS[PlanCadence(plan)]} month(s) per period.")

    reset = billing.reactivate(from_date, plan)
    st.write(
        f"Reactivating with a payment on {from_date.isoformat()} gives anchor "
        f"**{reset.anchor}** and expiration **{reset.next_expiration.isoformat()}**."
    )

    st.subheader("Projected schedule")
    periods = st.slider("Periods", min_value=1, max_value=36, value=12)
    st.dataframe(
        utils.project_schedule(int(anchor), plan, from_date, periods),
        use_container_width=True,
        hide_index=True,
    )


def reports_page():
    st.header("🧾 Reports")

    st.subheader("Export subscriptions to CSV")
    rows = db.fetch_all("SELECT * FROM subscriptions ORDER BY id DESC")
    if rows:
        st.download_button(
            "Download subscriptions.csv",
            data=utils.subscriptions_to_csv_bytes(rows),
            file_name="subscriptions.csv",
            mime="text/csv",
        )
    else:
        st.caption("No subscriptions to export.")

    st.divider()

    st.subheader("Export payments to CSV")
    payments = utils.fetch_payments_export()
    if payments:
        st.download_button(
            "Download payments.csv",
            data=utils.payments_to_csv_bytes(payments),
            file_name="payments.csv",
            mime="text/csv",
        )
    else:
        st.caption("No payments to export.")

    st.divider()

    st.subheader("Revenue summary by month")
    st.dataframe(utils.revenue_summary_by_month(), use_container_width=True, hide_index=True)

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 3 sample subscriptions + payments for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(date.today())
        st.success("Sample data inserted.")
        st.rerun()


def main_app():
    st.sidebar.title("🏋️ Gym Billing")

    pages = ["Dashboard", "Subscriptions", "Renewals", "Calculator", "Reports"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Subscriptions":
        subscriptions_page()
    elif st.session_state.page == "Renewals":
        renewals_page()
    elif st.session_state.page == "Calculator":
        calculator_page()
    elif st.session_state.page == "Reports":
        reports_page()


# --------- App entry ---------

def run():
    init_once()
    main_app()


if __name__ == "__main__":
    run()
