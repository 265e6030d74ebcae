import datetime as dt
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError
from rapidfuzz.distance import Levenshtein

from models import ExpenseCategory
from periods import parse_month_key

MAX_EXPENSE_AMOUNT = Decimal("1000000")
MAX_BUDGET_LIMIT = Decimal("1000000000")
EMAIL_PATTERN = r"^\S+@\S+\.\S+$"


def closest_category(raw: str) -> Optional[ExpenseCategory]:
    input_lower = raw.strip().lower()
    best_distance: Optional[int] = None
    best: list[ExpenseCategory] = []
    for category in ExpenseCategory:
        dist = int(Levenshtein.distance(input_lower, category.value.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)
    if best_distance is None or best_distance > 3 or len(best) != 1:
        return None
    return best[0]


def check_category(value: object) -> object:
    if value is None or isinstance(value, ExpenseCategory):
        return value
    if isinstance(value, str) and value in ExpenseCategory._value2member_map_:
        return value
    hint = ""
    if isinstance(value, str) and value.strip():
        suggestion = closest_category(value)
        if suggestion is not None:
            hint = f" (did you mean '{suggestion.value}'?)"
    raise PydanticCustomError(
        "invalid_category", "Please select a valid category{hint}", {"hint": hint}
    )


def coerce_date(value: object) -> object:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        try:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError as exc:
            raise PydanticCustomError(
                "invalid_date", "Date must be a valid ISO date"
            ) from exc
    return value


class ExpenseIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: ExpenseCategory
    amount: Decimal = Field(
        ..., ge=Decimal("0.01"), le=MAX_EXPENSE_AMOUNT, decimal_places=2
    )
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, value: object) -> object:
        return check_category(value)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, value: object) -> object:
        return coerce_date(value)


class ExpenseUpdate(BaseModel):
    """Partial expense edit; only fields present in the payload are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    category: Optional[ExpenseCategory] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=Decimal("0.01"), le=MAX_EXPENSE_AMOUNT, decimal_places=2
    )
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=200)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, value: object) -> object:
        return check_category(value)

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, value: object) -> object:
        return coerce_date(value)


class BudgetIn(BaseModel):
    month: Optional[str] = None
    limit: Decimal = Field(..., ge=0, le=MAX_BUDGET_LIMIT, decimal_places=2)

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            parse_month_key(value)
        except ValueError as exc:
            raise PydanticCustomError("invalid_month", str(exc)) from exc
        return value


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


TrendPeriod = Literal["monthly", "weekly"]
