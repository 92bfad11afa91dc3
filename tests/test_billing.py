from datetime import date, datetime, timedelta

import pytest

import billing
from models import CADENCE_MONTHS, PlanCadence, RecurrenceResult


@pytest.mark.parametrize(
    "year, month, expected",
    [
        (2023, 2, 28),
        (2024, 2, 29),
        (1900, 2, 28),
        (2000, 2, 29),
        (2024, 4, 30),
        (2024, 12, 31),
    ],
)
def test_days_in_month(year, month, expected):
    assert billing.days_in_month(year, month) == expected


def test_last_day_of_month():
    assert billing.last_day_of_month(date(2024, 2, 3)) == date(2024, 2, 29)
    assert billing.last_day_of_month(date(2023, 12, 31)) == date(2023, 12, 31)


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2024, 1, 31), 13, date(2025, 2, 28)),
        (date(2024, 12, 15), 1, date(2025, 1, 15)),
        (date(2024, 8, 31), 3, date(2024, 11, 30)),
        (date(2024, 2, 29), 12, date(2025, 2, 28)),
    ],
)
def test_add_months_clamps_instead_of_rolling_over(start, months, expected):
    assert billing.add_months(start, months) == expected


@pytest.mark.parametrize("cadence", list(PlanCadence))
@pytest.mark.parametrize("from_date", [date(2023, 1, 31), date(2024, 2, 29), date(2024, 12, 15)])
def test_anchors_up_to_28_never_clamp(cadence, from_date):
    for anchor in range(1, 29):
        result = billing.compute_next_expiration(anchor, cadence, from_date)
        assert result.day == anchor


def test_anchor_snapback_after_short_month():
    april = billing.compute_next_expiration(31, PlanCadence.MONTHLY, date(2024, 3, 31))
    assert april == date(2024, 4, 30)

    may = billing.compute_next_expiration(31, PlanCadence.MONTHLY, april)
    assert may == date(2024, 5, 31)


@pytest.mark.parametrize(
    "anchor, from_date, expected",
    [
        (30, date(2024, 1, 30), date(2024, 2, 29)),
        (31, date(2023, 1, 31), date(2023, 2, 28)),
        (29, date(2023, 1, 29), date(2023, 2, 28)),
        (31, date(2024, 12, 31), date(2025, 1, 31)),
        (5, date(2024, 1, 31), date(2024, 2, 5)),
    ],
)
def test_monthly_month_end_cases(anchor, from_date, expected):
    assert billing.compute_next_expiration(anchor, PlanCadence.MONTHLY, from_date) == expected


@pytest.mark.parametrize(
    "anchor, from_date, expected",
    [
        (31, date(2024, 11, 30), date(2025, 2, 28)),
        (31, date(2025, 2, 28), date(2025, 5, 31)),
        (15, date(2024, 11, 15), date(2025, 2, 15)),
    ],
)
def test_quarterly_adds_three_months(anchor, from_date, expected):
    assert billing.compute_next_expiration(anchor, PlanCadence.QUARTERLY, from_date) == expected


@pytest.mark.parametrize(
    "anchor, from_date, expected",
    [
        (29, date(2024, 2, 29), date(2025, 2, 28)),
        (29, date(2027, 2, 28), date(2028, 2, 29)),
        (10, date(2024, 7, 10), date(2025, 7, 10)),
    ],
)
def test_yearly_adds_twelve_months(anchor, from_date, expected):
    assert billing.compute_next_expiration(anchor, PlanCadence.YEARLY, from_date) == expected


def test_result_lands_in_target_month_and_moves_forward():
    start = date(2023, 1, 1)
    for offset in range(0, 731, 3):
        from_date = start + timedelta(days=offset)
        for cadence in PlanCadence:
            target = billing.add_months(from_date.replace(day=1), CADENCE_MONTHS[cadence])
            last_day = billing.days_in_month(target.year, target.month)
            for anchor in range(1, 32):
                result = billing.compute_next_expiration(anchor, cadence, from_date)
                assert result > from_date
                assert (result.year, result.month) == (target.year, target.month)
                assert result.day == min(anchor, last_day)


def test_same_inputs_give_same_result():
    first = billing.compute_next_expiration(31, PlanCadence.QUARTERLY, date(2024, 11, 30))
    second = billing.compute_next_expiration(31, PlanCadence.QUARTERLY, date(2024, 11, 30))
    assert first == second


def test_extend_active_counts_from_expiry():
    # Paid during grace on June 20; the cycle still runs from the June 15 expiry
    assert billing.extend_active(15, date(2024, 6, 15), PlanCadence.MONTHLY) == date(2024, 7, 15)


def test_reactivate_resets_anchor_to_payment_day():
    result = billing.reactivate(date(2024, 7, 10), PlanCadence.MONTHLY)
    assert result == RecurrenceResult(next_expiration=date(2024, 8, 10), anchor=10)


def test_reactivate_on_month_end_keeps_new_anchor():
    result = billing.reactivate(date(2024, 1, 31), PlanCadence.MONTHLY)
    assert result.anchor == 31
    assert result.next_expiration == date(2024, 2, 29)


@pytest.mark.parametrize("value", ["monthly", " QUARTERLY ", "Yearly", PlanCadence.MONTHLY])
def test_cadence_accepts_names(value):
    assert isinstance(billing.coerce_cadence(value), PlanCadence)


def test_datetime_is_reduced_to_date():
    result = billing.compute_next_expiration(31, "MONTHLY", datetime(2024, 3, 31, 23, 59))
    assert result == date(2024, 4, 30)
    assert not isinstance(result, datetime)


@pytest.mark.parametrize("anchor", [0, 32, -1, True, 15.0, "15", None])
def test_invalid_anchor_fails_fast(anchor):
    with pytest.raises(billing.InvalidAnchorError):
        billing.compute_next_expiration(anchor, PlanCadence.MONTHLY, date(2024, 1, 1))


@pytest.mark.parametrize("cadence", ["WEEKLY", "", None, 1])
def test_unknown_cadence_fails_fast(cadence):
    with pytest.raises(billing.UnknownCadenceError):
        billing.compute_next_expiration(15, cadence, date(2024, 1, 1))


def test_input_errors_are_value_errors():
    assert issubclass(billing.InvalidAnchorError, ValueError)
    assert issubclass(billing.UnknownCadenceError, ValueError)


def test_from_date_must_be_a_date():
    with pytest.raises(TypeError):
        billing.compute_next_expiration(15, PlanCadence.MONTHLY, "2024-01-15")
