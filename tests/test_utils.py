from datetime import date

import billing
import db
import subscriptions
import utils
from models import MembershipStatus


def test_project_schedule_shows_clamped_periods():
    df = utils.project_schedule(31, "MONTHLY", date(2024, 1, 31), periods=4)

    assert list(df.columns) == ["period", "start", "end", "clamped"]
    assert list(df["end"]) == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)]
    assert list(df["clamped"]) == [True, False, True, False]
    # each period starts where the previous one ended
    assert list(df["start"])[1:] == list(df["end"])[:-1]


def test_project_schedule_yearly():
    df = utils.project_schedule(29, "YEARLY", date(2024, 2, 29), periods=4)
    assert list(df["end"]) == [date(2025, 2, 28), date(2026, 2, 28), date(2027, 2, 28), date(2028, 2, 29)]


def test_validate_subscription_inputs():
    assert utils.validate_subscription_inputs("Ana", "MONTHLY", "2024-01-31") == []

    errors = utils.validate_subscription_inputs("  ", "WEEKLY", "2024-02-30")
    assert len(errors) == 3


def test_revenue_summary_empty(temp_db):
    df = utils.revenue_summary_by_month()
    assert df.empty
    assert list(df.columns) == ["month", "revenue"]


def test_revenue_summary_by_month(temp_db):
    sub = subscriptions.save_subscription(subscriptions.new_subscription("Ana", "MONTHLY", date(2024, 5, 15)))
    subscriptions.record_payment(sub.id, 300.0, date(2024, 5, 15), "cash")
    subscriptions.record_payment(sub.id, 100.0, date(2024, 5, 20), "card")
    subscriptions.record_payment(sub.id, 300.0, date(2024, 6, 15), "cash")

    df = utils.revenue_summary_by_month()
    assert df.to_dict("records") == [
        {"month": "2024-06", "revenue": 300.0},
        {"month": "2024-05", "revenue": 400.0},
    ]


def test_insert_sample_data(temp_db):
    today = date(2024, 6, 15)
    utils.insert_sample_data(today)

    subs = subscriptions.list_subscriptions()
    assert len(subs) == 3
    assert [s.member_name for s in subs if subscriptions.is_due(s, today)] == ["Ahmed Hassan"]
    assert [s.member_name for s in subs if s.status == MembershipStatus.REJECTED] == ["Omar Samy"]
    assert db.fetch_one("SELECT COUNT(*) AS c FROM payments")["c"] == 3


def test_subscriptions_csv_export(temp_db):
    subscriptions.save_subscription(subscriptions.new_subscription("Ana", "QUARTERLY", date(2024, 5, 15)))
    rows = db.fetch_all("SELECT * FROM subscriptions")

    csv = utils.subscriptions_to_csv_bytes(rows).decode("utf-8")
    header, line = csv.strip().splitlines()
    assert header.split(",") == [
        "id", "member_name", "plan", "anchor_day", "start_date", "end_date", "status", "auto_renew",
        "grace_since", "retries",
    ]
    assert "2024-08-15" in line


def test_sample_data_respects_anchor_after_short_month(temp_db):
    today = date(2024, 3, 31)
    utils.insert_sample_data(today)

    subs = {s.member_name: s for s in subscriptions.list_subscriptions()}
    ahmed = subs["Ahmed Hassan"]
    assert ahmed.start_date == date(2024, 2, 29)
    assert ahmed.anchor_day == 29
    assert ahmed.end_date == date(2024, 3, 29)
    assert subscriptions.is_due(ahmed, today)
    for sub in subs.values():
        expected_day = min(sub.anchor_day, billing.days_in_month(sub.end_date.year, sub.end_date.month))
        assert sub.end_date.day == expected_day


def test_payments_csv_export(temp_db):
    ana = subscriptions.save_subscription(subscriptions.new_subscription("Ana", "MONTHLY", date(2024, 5, 15)))
    omar = subscriptions.save_subscription(subscriptions.new_subscription("Omar", "YEARLY", date(2024, 5, 1)))
    subscriptions.record_payment(omar.id, 3000.0, date(2024, 5, 1), "transfer")
    subscriptions.record_payment(ana.id, 300.0, date(2024, 5, 15), "cash", "Front desk")

    rows = utils.fetch_payments_export()
    csv = utils.payments_to_csv_bytes(rows).decode("utf-8")
    header, *lines = csv.strip().splitlines()

    assert header.split(",") == ["id", "subscription_id", "member_name", "amount", "date", "method", "notes"]
    assert len(lines) == 2
    assert "Ana" in lines[0] and "2024-05-15" in lines[0] and "Front desk" in lines[0]
    assert "Omar" in lines[1] and "2024-05-01" in lines[1]
