from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models import ExpenseCategory
from periods import add_months, month_period, parse_month_key, trailing_months, week_period
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate, RegisterIn, closest_category


def test_expense_errors_are_collected_together() -> None:
    with pytest.raises(ValidationError) as excinfo:
        ExpenseIn(category="Groceries!!", amount=Decimal("0"), description="x" * 201)

    fields = {err["loc"][0] for err in excinfo.value.errors()}
    assert fields == {"category", "amount", "description"}


def test_category_error_suggests_close_match() -> None:
    with pytest.raises(ValidationError) as excinfo:
        ExpenseIn(category="Trvel", amount=Decimal("5"))

    message = excinfo.value.errors()[0]["msg"]
    assert message.startswith("Please select a valid category")
    assert "did you mean 'Travel'" in message


def test_closest_category_gives_up_on_distant_input() -> None:
    assert closest_category("healthcar") == ExpenseCategory.healthcare
    assert closest_category("completely unrelated") is None


def test_amount_bounds_and_precision() -> None:
    assert ExpenseIn(category="Other", amount=Decimal("1000000")).amount == Decimal("1000000")
    assert ExpenseIn(category="Other", amount=Decimal("0.01")).amount == Decimal("0.01")
    for bad in ("1000000.01", "0.001", "-5"):
        with pytest.raises(ValidationError):
            ExpenseIn(category="Other", amount=Decimal(bad))


def test_expense_date_accepts_iso_datetime() -> None:
    expense = ExpenseIn(category="Other", amount=Decimal("1"), date="2024-01-15T23:30:00Z")

    assert expense.date == date(2024, 1, 15)


def test_update_tracks_supplied_fields_only() -> None:
    update = ExpenseUpdate.model_validate({"amount": "12.50"})

    assert update.model_fields_set == {"amount"}
    assert update.amount == Decimal("12.50")
    assert update.category is None


def test_budget_month_and_limit_validation() -> None:
    assert BudgetIn(month="2024-12", limit=Decimal("0")).limit == Decimal("0")
    for payload in (
        {"month": "2024-13", "limit": "10"},
        {"month": "24-01", "limit": "10"},
        {"limit": "-1"},
    ):
        with pytest.raises(ValidationError):
            BudgetIn.model_validate(payload)


def test_register_normalizes_email_and_name() -> None:
    data = RegisterIn(name="  Ada  ", email="Ada@Example.COM", password=" secret ")

    assert data.name == "Ada"
    assert data.email == "ada@example.com"
    assert data.password == " secret "


def test_register_rejects_short_password_and_bad_email() -> None:
    with pytest.raises(ValidationError) as excinfo:
        RegisterIn(name="Ada", email="not-an-email", password="123")

    fields = {err["loc"][0] for err in excinfo.value.errors()}
    assert fields == {"email", "password"}


def test_month_helpers() -> None:
    assert parse_month_key("2024-02") == (2024, 2)
    with pytest.raises(ValueError):
        parse_month_key("2024-00")
    assert month_period("2024-02").end == date(2024, 2, 29)
    assert add_months(date(2024, 1, 31), -1) == date(2023, 12, 1)
    assert trailing_months(3, today=date(2024, 2, 10)) == ["2023-12", "2024-01", "2024-02"]


def test_week_period_starts_on_sunday() -> None:
    sunday = week_period(date(2024, 1, 14))
    saturday = week_period(date(2024, 1, 20))

    assert sunday == saturday
    assert sunday.start == date(2024, 1, 14)
    assert sunday.slug == "Jan 14 - Jan 20"
    assert week_period(date(2023, 12, 31)).slug == "Dec 31 - Jan 6"


def test_budget_limit_has_upper_bound() -> None:
    assert BudgetIn(limit=Decimal("1000000000")).limit == Decimal("1000000000")
    with pytest.raises(ValidationError):
        BudgetIn(limit=Decimal("1000000000.01"))
