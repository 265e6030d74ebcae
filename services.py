from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_CEILING, Decimal
from typing import Optional

from sqlalchemy import extract, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import AuthError, hash_password, verify_password
from models import (
    Budget,
    Expense,
    ExpenseCategory,
    User,
    percentage_of,
    round_half_up,
)
from periods import (
    Period,
    add_months,
    month_key,
    month_label,
    month_period,
    parse_month_key,
    short_month_label,
    today_local,
    trailing_months,
    week_period,
    year_period,
)
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate, LoginIn, RegisterIn

logger = logging.getLogger(__name__)


MAX_PAGE = 1_000_000


class NotFound(ValueError):
    pass


def amount_to_cents(amount: Decimal) -> int:
    return int(round_half_up(Decimal(amount) * 100))


def cents_to_amount(cents: int) -> float:
    return cents / 100


@dataclass
class ExpenseFilters:
    category: Optional[ExpenseCategory] = None
    month: Optional[str] = None


@dataclass
class ExpensePage:
    items: list[Expense]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size)


@dataclass
class BudgetAlerts:
    alerts: list[dict[str, object]]
    budget: Optional[Budget]

    @property
    def has_alerts(self) -> bool:
        return bool(self.alerts)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def register(self, data: RegisterIn) -> User:
        existing = self.session.scalar(select(User).where(User.email == data.email))
        if existing:
            raise ValueError("Email already registered")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("Email already registered") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        user = self.session.scalar(select(User).where(User.email == data.email))
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthError("Invalid email or password")
        return user


class BudgetService:
    def __init__(
        self, session: Session, user_id: int, *, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today

    def current_month(self) -> str:
        return month_key(self.today or today_local())

    def find(self, month: str) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.month == month)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def _get_or_create(self, month: str) -> Budget:
        budget = self.find(month)
        if budget:
            return budget
        budget = Budget(user_id=self.user_id, month=month, limit_cents=0, spent_cents=0)
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request created the row between our read and insert.
            self.session.rollback()
            budget = self.find(month)
            if budget is None:
                raise
            return budget
        self.session.refresh(budget)
        return budget

    def set_limit(self, data: BudgetIn) -> Budget:
        month = data.month or self.current_month()
        parse_month_key(month)
        limit_cents = amount_to_cents(data.limit)
        budget = self.find(month)
        if budget is None:
            budget = Budget(
                user_id=self.user_id, month=month, limit_cents=limit_cents, spent_cents=0
            )
            self.session.add(budget)
        else:
            budget.limit_cents = limit_cents
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            budget = self.find(month)
            if budget is None:
                raise
            budget.limit_cents = limit_cents
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(budget)
        logger.info(
            f"budget_set: user_id={self.user_id} month={month} "
            f"limit_cents={budget.limit_cents}"
        )
        return budget

    def get(self, month: Optional[str] = None) -> Budget:
        """Return the month's budget, creating an empty one if none exists yet."""
        month = month or self.current_month()
        parse_month_key(month)
        return self._get_or_create(month)

    def _bump_spent(self, month: str, delta_cents: int) -> int:
        result = self.session.execute(
            update(Budget)
            .where(Budget.user_id == self.user_id, Budget.month == month)
            .values(spent_cents=Budget.spent_cents + delta_cents)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def increment(self, month: str, delta_cents: int, *, create: bool = True) -> None:
        parse_month_key(month)
        matched = self._bump_spent(month, delta_cents)
        if matched == 0 and create:
            self.session.add(
                Budget(
                    user_id=self.user_id,
                    month=month,
                    limit_cents=0,
                    spent_cents=delta_cents,
                )
            )
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                self._bump_spent(month, delta_cents)
            else:
                logger.info(
                    f"budget_created: user_id={self.user_id} month={month} "
                    f"spent_cents={delta_cents}"
                )
                return
        self.session.commit()
        logger.info(
            f"budget_spent_adjusted: user_id={self.user_id} month={month} "
            f"delta_cents={delta_cents} matched={matched}"
        )

    def history(self) -> list[Budget]:
        """Twelve months ending with the current one, oldest first.

        Months without a stored row are returned as unsaved empty budgets.
        """
        months = trailing_months(12, today=self.today)
        stmt = select(Budget).where(
            Budget.user_id == self.user_id, Budget.month.in_(months)
        )
        stored = {budget.month: budget for budget in self.session.scalars(stmt)}
        return [
            stored.get(month)
            or Budget(user_id=self.user_id, month=month, limit_cents=0, spent_cents=0)
            for month in months
        ]

    def delete(self, month: str) -> None:
        try:
            parse_month_key(month)
        except ValueError as exc:
            raise ValueError("Invalid month format. Use YYYY-MM") from exc
        budget = self.find(month)
        if not budget:
            raise NotFound("Budget not found for this month")
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: user_id={self.user_id} month={month}")

    def alerts(self) -> BudgetAlerts:
        budget = self.find(self.current_month())
        if not budget or budget.limit_cents == 0:
            return BudgetAlerts(alerts=[], budget=None)

        pct = budget.spending_percentage
        alerts: list[dict[str, object]] = []
        if pct >= 100:
            # Report the overage; remaining_cents is clamped and would read 0.
            overage = budget.spent_cents - budget.limit_cents
            alerts.append(
                {
                    "type": "danger",
                    "message": f"You've exceeded your budget by {cents_to_amount(overage):.2f}!",
                    "percentage": pct,
                }
            )
        elif pct >= 90:
            alerts.append(
                {
                    "type": "danger",
                    "message": f"You're at {pct}% of your budget. Almost exceeded!",
                    "percentage": pct,
                }
            )
        elif pct >= 80:
            alerts.append(
                {
                    "type": "warning",
                    "message": f"You're at {pct}% of your budget. Consider slowing down spending.",
                    "percentage": pct,
                }
            )
        elif pct >= 70:
            alerts.append(
                {
                    "type": "info",
                    "message": f"You're at {pct}% of your budget.",
                    "percentage": pct,
                }
            )
        return BudgetAlerts(alerts=alerts, budget=budget)


class ExpenseService:
    """Expense ledger.

    Every amount-affecting mutation is committed first and then mirrored onto
    the month's budget with a separate increment. A failing increment leaves
    the committed expense in place.
    """

    def __init__(
        self, session: Session, user_id: int, *, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today
        self.budgets = BudgetService(session, user_id, today=today)

    def _apply_to_budget(
        self, month: str, delta_cents: int, *, create: bool = True
    ) -> None:
        try:
            self.budgets.increment(month, delta_cents, create=create)
        except Exception:
            logger.exception(
                f"budget_increment_failed: user_id={self.user_id} month={month} "
                f"delta_cents={delta_cents}"
            )
            raise

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            category=data.category,
            amount_cents=amount_to_cents(data.amount),
            date=data.date or self.today or today_local(),
            description=data.description or None,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: user_id={self.user_id} expense_id={expense.id} "
            f"month={expense.month} amount_cents={expense.amount_cents}"
        )
        self._apply_to_budget(expense.month, expense.amount_cents)
        return expense

    def _filter_conditions(self, filters: ExpenseFilters) -> list:
        conditions = [Expense.user_id == self.user_id]
        if filters.category:
            conditions.append(Expense.category == filters.category)
        if filters.month:
            period = month_period(filters.month)
            conditions.append(Expense.date.between(period.start, period.end))
        return conditions

    def list(
        self, filters: ExpenseFilters, *, page: int = 1, page_size: int = 20
    ) -> ExpensePage:
        if not 1 <= page <= MAX_PAGE:
            raise ValueError(f"Page must be between 1 and {MAX_PAGE}")
        if not 1 <= page_size <= 100:
            raise ValueError("Limit must be between 1 and 100")
        conditions = self._filter_conditions(filters)
        stmt = (
            select(Expense)
            .where(*conditions)
            .order_by(
                Expense.date.desc(), Expense.created_at.desc(), Expense.id.desc()
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        total = self.session.execute(
            select(func.count(Expense.id)).where(*conditions)
        ).scalar_one()
        return ExpensePage(
            items=list(self.session.scalars(stmt).all()),
            total=int(total or 0),
            page=page,
            page_size=page_size,
        )

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        supplied = data.model_fields_set
        old_amount = expense.amount_cents
        old_month = expense.month

        if "category" in supplied and data.category is not None:
            expense.category = data.category
        if "amount" in supplied and data.amount is not None:
            expense.amount_cents = amount_to_cents(data.amount)
        if "date" in supplied and data.date is not None:
            expense.date = data.date
        if "description" in supplied:
            expense.description = data.description or None

        delta = expense.amount_cents - old_amount
        new_month = expense.month
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_updated: user_id={self.user_id} expense_id={expense.id} "
            f"month={new_month} delta_cents={delta}"
        )

        if new_month != old_month:
            # Only the new month receives the amount delta; the old month keeps
            # the full original amount in its running total.
            logger.warning(
                f"expense_month_moved: user_id={self.user_id} expense_id={expense.id} "
                f"from_month={old_month} to_month={new_month} "
                f"unreconciled_cents={old_amount}"
            )
        if delta:
            self._apply_to_budget(new_month, delta)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        month = expense.month
        amount = expense.amount_cents
        self.session.delete(expense)
        self.session.commit()
        logger.info(
            f"expense_deleted: user_id={self.user_id} expense_id={expense_id} "
            f"month={month} amount_cents={amount}"
        )
        self._apply_to_budget(month, -amount, create=False)


class AnalyticsService:
    def __init__(
        self, session: Session, user_id: int, *, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today
        self.budgets = BudgetService(session, user_id, today=today)

    def _today(self) -> date:
        return self.today or today_local()

    def _totals_between(self, period: Period) -> tuple[int, int]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.amount_cents), 0),
                func.count(Expense.id),
            ).where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
        ).one()
        return int(row[0] or 0), int(row[1] or 0)

    def _by_category(
        self, period: Period, limit: Optional[int] = None
    ) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents).label("total")
        stmt = (
            select(Expense.category, total, func.count(Expense.id).label("count"))
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Expense.category)
            .order_by(total.desc(), Expense.category)
        )
        if limit:
            stmt = stmt.limit(limit)
        return [
            {
                "category": row.category,
                "total_cents": int(row.total or 0),
                "count": int(row.count or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def _monthly_totals(self, start: date, end: date) -> dict[str, int]:
        year = extract("year", Expense.date).label("year")
        month = extract("month", Expense.date).label("month")
        stmt = (
            select(year, month, func.sum(Expense.amount_cents).label("total"))
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(start, end),
            )
            .group_by(year, month)
        )
        return {
            f"{int(row.year):04d}-{int(row.month):02d}": int(row.total or 0)
            for row in self.session.execute(stmt)
        }

    def monthly_series(self, year: Optional[int] = None) -> dict[str, object]:
        year = year or self._today().year
        period = year_period(year)
        spent_by_month = self._monthly_totals(period.start, period.end)
        months = [f"{year:04d}-{m:02d}" for m in range(1, 13)]
        budgets = {
            budget.month: budget
            for budget in self.session.scalars(
                select(Budget).where(
                    Budget.user_id == self.user_id, Budget.month.in_(months)
                )
            )
        }

        out: list[dict[str, object]] = []
        for index, key in enumerate(months, start=1):
            spent = spent_by_month.get(key, 0)
            budget = budgets.get(key)
            limit = budget.limit_cents if budget else 0
            out.append(
                {
                    "month": key,
                    "month_name": calendar.month_name[index],
                    "year": year,
                    "spent_cents": spent,
                    "budget_cents": limit,
                    "remaining_cents": max(0, limit - spent) if budget else 0,
                }
            )
        return {
            "year": year,
            "months": out,
            "total_spent_cents": sum(int(m["spent_cents"]) for m in out),
            "total_budget_cents": sum(int(m["budget_cents"]) for m in out),
        }

    def category_breakdown(
        self, *, month: Optional[str] = None, year: Optional[int] = None
    ) -> dict[str, object]:
        if month:
            period = month_period(month)
            label = month_label(month)
        elif year:
            period = year_period(year)
            label = str(year)
        else:
            current = self.budgets.current_month()
            period = month_period(current)
            label = month_label(current)

        items = self._by_category(period)
        grand_total = sum(int(item["total_cents"]) for item in items)
        for item in items:
            item["percentage"] = percentage_of(int(item["total_cents"]), grand_total)
        return {
            "label": label,
            "categories": items,
            "total_spent_cents": grand_total,
            "total_transactions": sum(int(item["count"]) for item in items),
        }

    def trends(self, period: str = "monthly", months: int = 12) -> dict[str, object]:
        buckets: list[dict[str, object]] = []
        if period == "monthly":
            if not 1 <= months <= 24:
                raise ValueError("Months must be between 1 and 24")
            keys = trailing_months(months, today=self._today())
            start = month_period(keys[0]).start
            end = month_period(keys[-1]).end
            totals = self._monthly_totals(start, end)
            for key in keys:
                buckets.append(
                    {
                        "period": key,
                        "label": short_month_label(key),
                        "spent_cents": totals.get(key, 0),
                    }
                )
        elif period == "weekly":
            today = self._today()
            for weeks_ago in range(11, -1, -1):
                week = week_period(today - timedelta(days=7 * weeks_ago))
                spent, _ = self._totals_between(week)
                buckets.append(
                    {
                        "period": f"week-{weeks_ago}",
                        "label": week.slug,
                        "start": week.start,
                        "end": week.end,
                        "spent_cents": spent,
                    }
                )
        else:
            raise ValueError("Period must be weekly or monthly")

        total = sum(int(b["spent_cents"]) for b in buckets)
        return {
            "period": period,
            "buckets": buckets,
            "total_spent_cents": total,
            "average_spent_cents": total / len(buckets) if buckets else 0,
        }

    def summary(self) -> dict[str, object]:
        current = self.budgets.current_month()
        current_period = month_period(current)
        spent, count = self._totals_between(current_period)
        budget = self.budgets.find(current)
        limit = budget.limit_cents if budget else 0

        previous = month_key(add_months(current_period.start, -1))
        previous_spent, _ = self._totals_between(month_period(previous))
        change = spent - previous_spent
        if previous_spent > 0:
            # Ties round toward positive infinity: -66.665 -> -66.66.
            ratio = Decimal(change) * 100 / Decimal(previous_spent)
            change_pct = float(
                ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_CEILING)
            )
        else:
            change_pct = 0.0
        if change_pct > 0:
            trend = "increase"
        elif change_pct < 0:
            trend = "decrease"
        else:
            trend = "stable"

        return {
            "current_month": {
                "month": current,
                "month_name": month_label(current),
                "spent_cents": spent,
                "budget_cents": limit,
                "remaining_cents": max(0, limit - spent) if budget else 0,
                "transactions": count,
            },
            "top_categories": self._by_category(current_period, limit=5),
            "comparison": {
                "previous_month": previous,
                "previous_spent_cents": previous_spent,
                "change_cents": change,
                "change_percentage": change_pct,
                "trend": trend,
            },
        }
