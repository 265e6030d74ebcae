import logging
import time
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthError, issue_token, user_id_from_token
from config import get_settings
from database import get_db, init_db
from models import Budget, Expense, ExpenseCategory, User
from periods import MONTH_KEY_RE, month_label, today_local
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate, LoginIn, RegisterIn, TrendPeriod
from services import (
    MAX_PAGE,
    AnalyticsService,
    BudgetService,
    ExpenseFilters,
    ExpenseService,
    NotFound,
    UserService,
    cents_to_amount,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="Spendwise")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: environment={settings.environment} version={APP_VERSION}")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request: method={request.method} path={request.url.path} "
        f"status={response.status_code} duration_ms={elapsed_ms:.1f}"
    )
    return response


def error_response(
    status_code: int, message: str, errors: Optional[list] = None
) -> JSONResponse:
    body: dict[str, object] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return error_response(400, "Validation failed", errors)


@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    return error_response(401, str(exc))


@app.exception_handler(NotFound)
async def not_found_exception_handler(request: Request, exc: NotFound):
    return error_response(404, str(exc))


@app.exception_handler(ValueError)
async def value_exception_handler(request: Request, exc: ValueError):
    return error_response(400, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(404, f"Route {request.url.path} not found")
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.is_development else "Internal server error"
    return error_response(500, message)


bearer_scheme = HTTPBearer(auto_error=False)


def get_today() -> date:
    return today_local()


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthError("Access denied. No token provided.")
    user_id = user_id_from_token(credentials.credentials)
    user = UserService(db).get(user_id)
    if user is None:
        raise AuthError("Token is valid but user no longer exists.")
    return user


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "createdAt": _iso(user.created_at),
    }


def expense_payload(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "userId": expense.user_id,
        "category": expense.category.value,
        "amount": cents_to_amount(expense.amount_cents),
        "date": expense.date.isoformat(),
        "formattedDate": expense.date.isoformat(),
        "description": expense.description,
        "createdAt": _iso(expense.created_at),
        "updatedAt": _iso(expense.updated_at),
    }


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "userId": budget.user_id,
        "month": budget.month,
        "limit": cents_to_amount(budget.limit_cents),
        "spent": cents_to_amount(budget.spent_cents),
        "remaining": cents_to_amount(budget.remaining_cents),
        "spendingPercentage": budget.spending_percentage,
        "status": budget.status.value,
        "createdAt": _iso(budget.created_at),
        "updatedAt": _iso(budget.updated_at),
    }


@app.get("/health")
def health():
    return {
        "success": True,
        "message": "Spendwise API is running",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
    }


@app.get("/api")
def api_index():
    return {
        "success": True,
        "message": "Spendwise API",
        "version": APP_VERSION,
        "endpoints": {
            "auth": {
                "POST /api/auth/register": "Register new user",
                "POST /api/auth/login": "User login",
                "GET /api/auth/me": "Get current user profile",
                "POST /api/auth/logout": "User logout",
            },
            "expenses": {
                "POST /api/expenses": "Add new expense",
                "GET /api/expenses": "Get user expenses (with filters)",
                "GET /api/expenses/{id}": "Get specific expense",
                "PUT /api/expenses/{id}": "Update expense",
                "DELETE /api/expenses/{id}": "Delete expense",
            },
            "budget": {
                "POST /api/budget": "Set/update monthly budget",
                "GET /api/budget": "Get budget information",
                "GET /api/budget/history": "Get budget history",
                "GET /api/budget/alerts": "Get budget alerts",
                "DELETE /api/budget/{month}": "Delete budget for month",
            },
            "analytics": {
                "GET /api/analytics/monthly": "Monthly spending totals",
                "GET /api/analytics/category": "Category-wise breakdown",
                "GET /api/analytics/trends": "Spending trends over time",
                "GET /api/analytics/summary": "Comprehensive spending summary",
            },
        },
    }


@app.post("/api/auth/register", status_code=201)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(data)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": user_payload(user), "token": issue_token(user.id)},
    }


@app.post("/api/auth/login")
def login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data)
    logger.info(f"user_login: user_id={user.id}")
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": user_payload(user), "token": issue_token(user.id)},
    }


@app.get("/api/auth/me")
def me(user: User = Depends(current_user)):
    return {"success": True, "data": {"user": user_payload(user)}}


@app.post("/api/auth/logout")
def logout(user: User = Depends(current_user)):
    # Tokens are stateless; the client discards its copy.
    logger.info(f"user_logout: user_id={user.id}")
    return {"success": True, "message": "Logged out successfully"}


@app.post("/api/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    expense = ExpenseService(db, user.id, today=today).create(data)
    return {
        "success": True,
        "message": "Expense added successfully",
        "data": {"expense": expense_payload(expense)},
    }


@app.get("/api/expenses")
def list_expenses(
    category: Optional[ExpenseCategory] = Query(None),
    month: Optional[str] = Query(None, pattern=MONTH_KEY_RE.pattern),
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    result = ExpenseService(db, user.id).list(
        ExpenseFilters(category=category, month=month), page=page, page_size=limit
    )
    return {
        "success": True,
        "data": {
            "expenses": [expense_payload(e) for e in result.items],
            "pagination": {
                "currentPage": result.page,
                "totalPages": result.total_pages,
                "totalItems": result.total,
                "itemsPerPage": result.page_size,
            },
        },
    }


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    expense = ExpenseService(db, user.id).get(expense_id)
    return {"success": True, "data": {"expense": expense_payload(expense)}}


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    expense = ExpenseService(db, user.id, today=today).update(expense_id, data)
    return {
        "success": True,
        "message": "Expense updated successfully",
        "data": {"expense": expense_payload(expense)},
    }


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    ExpenseService(db, user.id).delete(expense_id)
    return {"success": True, "message": "Expense deleted successfully"}


@app.post("/api/budget")
def set_budget(
    data: BudgetIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    budget = BudgetService(db, user.id, today=today).set_limit(data)
    return {
        "success": True,
        "message": "Budget set successfully",
        "data": {"budget": budget_payload(budget)},
    }


@app.get("/api/budget")
def get_budget(
    month: Optional[str] = Query(None, pattern=MONTH_KEY_RE.pattern),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    budget = BudgetService(db, user.id, today=today).get(month)
    return {
        "success": True,
        "data": {
            "budget": budget_payload(budget),
            "monthName": month_label(budget.month),
            "month": budget.month,
        },
    }


@app.get("/api/budget/history")
def budget_history(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    history = BudgetService(db, user.id, today=today).history()
    return {
        "success": True,
        "data": {
            "budgetHistory": [budget_payload(b) for b in history],
            "months": [
                {"month": b.month, "monthName": month_label(b.month)} for b in history
            ],
        },
    }


@app.get("/api/budget/alerts")
def budget_alerts(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    result = BudgetService(db, user.id, today=today).alerts()
    data: dict[str, object] = {"alerts": result.alerts, "hasAlerts": result.has_alerts}
    if result.budget is not None:
        snapshot = budget_payload(result.budget)
        data["budget"] = {
            key: snapshot[key]
            for key in ("limit", "spent", "remaining", "spendingPercentage", "status")
        }
    return {"success": True, "data": data}


@app.delete("/api/budget/{month}")
def delete_budget(
    month: str, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    BudgetService(db, user.id).delete(month)
    return {"success": True, "message": "Budget deleted successfully"}


@app.get("/api/analytics/monthly")
def analytics_monthly(
    year: Optional[int] = Query(None, ge=2020, le=2030),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    series = AnalyticsService(db, user.id, today=today).monthly_series(year)
    return {
        "success": True,
        "data": {
            "monthlyData": [
                {
                    "month": row["month"],
                    "monthName": row["month_name"],
                    "year": row["year"],
                    "spent": cents_to_amount(row["spent_cents"]),
                    "budget": cents_to_amount(row["budget_cents"]),
                    "remaining": cents_to_amount(row["remaining_cents"]),
                }
                for row in series["months"]
            ],
            "year": series["year"],
            "totalSpent": cents_to_amount(series["total_spent_cents"]),
            "totalBudget": cents_to_amount(series["total_budget_cents"]),
        },
    }


@app.get("/api/analytics/category")
def analytics_category(
    month: Optional[str] = Query(None, pattern=MONTH_KEY_RE.pattern),
    year: Optional[int] = Query(None, ge=2020, le=2030),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    breakdown = AnalyticsService(db, user.id, today=today).category_breakdown(
        month=month, year=year
    )
    return {
        "success": True,
        "data": {
            "categoryBreakdown": [
                {
                    "category": item["category"].value,
                    "amount": cents_to_amount(item["total_cents"]),
                    "count": item["count"],
                    "percentage": item["percentage"],
                }
                for item in breakdown["categories"]
            ],
            "totalSpent": cents_to_amount(breakdown["total_spent_cents"]),
            "timePeriod": breakdown["label"],
            "totalTransactions": breakdown["total_transactions"],
        },
    }


@app.get("/api/analytics/trends")
def analytics_trends(
    period: TrendPeriod = Query("monthly"),
    months: int = Query(12, ge=1, le=24),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    trends = AnalyticsService(db, user.id, today=today).trends(period, months)
    return {
        "success": True,
        "data": {
            "trends": [
                {
                    "period": bucket["period"],
                    "label": bucket["label"],
                    "spent": cents_to_amount(bucket["spent_cents"]),
                }
                for bucket in trends["buckets"]
            ],
            "period": trends["period"],
            "totalSpent": cents_to_amount(trends["total_spent_cents"]),
            "averageSpent": cents_to_amount(trends["average_spent_cents"]),
        },
    }


@app.get("/api/analytics/summary")
def analytics_summary(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    summary = AnalyticsService(db, user.id, today=today).summary()
    current = summary["current_month"]
    comparison = summary["comparison"]
    return {
        "success": True,
        "data": {
            "currentMonth": {
                "month": current["month"],
                "monthName": current["month_name"],
                "spent": cents_to_amount(current["spent_cents"]),
                "budget": cents_to_amount(current["budget_cents"]),
                "remaining": cents_to_amount(current["remaining_cents"]),
                "transactions": current["transactions"],
            },
            "topCategories": [
                {
                    "category": item["category"].value,
                    "total": cents_to_amount(item["total_cents"]),
                    "count": item["count"],
                }
                for item in summary["top_categories"]
            ],
            "comparison": {
                "previousMonth": cents_to_amount(comparison["previous_spent_cents"]),
                "previousMonthKey": comparison["previous_month"],
                "changeAmount": cents_to_amount(comparison["change_cents"]),
                "changePercentage": comparison["change_percentage"],
                "trend": comparison["trend"],
            },
        },
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
