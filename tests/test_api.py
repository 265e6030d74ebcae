from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app, get_today


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_today] = lambda: date(2024, 1, 20)
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, email: str = "ada@example.com") -> dict[str, str]:
    res = client.post(
        "/api/auth/register",
        json={"name": "Ada", "email": email, "password": "secret1"},
    )
    assert res.status_code == 201
    return {"Authorization": f"Bearer {res.json()['data']['token']}"}


def test_health_and_index(client) -> None:
    assert client.get("/health").json()["success"] is True
    index = client.get("/api").json()
    assert "POST /api/expenses" in index["endpoints"]["expenses"]


def test_unknown_route_returns_envelope(client) -> None:
    res = client.get("/api/nope")

    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Route /api/nope not found"}


def test_register_login_and_me(client) -> None:
    headers = register(client)

    duplicate = client.post(
        "/api/auth/register",
        json={"name": "Ada", "email": "ADA@example.com", "password": "secret1"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Email already registered"

    bad_login = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "nope-nope"}
    )
    assert bad_login.status_code == 401
    assert bad_login.json()["success"] is False

    login = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "secret1"}
    )
    assert login.status_code == 200
    assert login.json()["data"]["user"]["email"] == "ada@example.com"

    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["data"]["user"]["name"] == "Ada"
    assert "password_hash" not in me.json()["data"]["user"]
    assert client.post("/api/auth/logout", headers=headers).json()["success"] is True


def test_protected_routes_require_token(client) -> None:
    missing = client.get("/api/expenses")
    assert missing.status_code == 401
    assert missing.json()["message"] == "Access denied. No token provided."

    bogus = client.get("/api/expenses", headers={"Authorization": "Bearer junk"})
    assert bogus.status_code == 401
    assert bogus.json()["message"].startswith("Invalid token")


def test_validation_errors_are_listed_per_field(client) -> None:
    headers = register(client)

    res = client.post(
        "/api/expenses",
        json={"category": "Fod & Dining", "amount": 0},
        headers=headers,
    )

    body = res.json()
    assert res.status_code == 400
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    fields = {err["field"] for err in body["errors"]}
    assert fields == {"category", "amount"}
    category_error = next(e for e in body["errors"] if e["field"] == "category")
    assert "Food & Dining" in category_error["message"]


def test_expense_lifecycle_keeps_budget_in_step(client) -> None:
    headers = register(client)

    created = client.post(
        "/api/expenses",
        json={
            "category": "Food & Dining",
            "amount": 50,
            "date": "2024-01-15",
            "description": "Lunch",
        },
        headers=headers,
    )
    assert created.status_code == 201
    expense = created.json()["data"]["expense"]
    assert expense["amount"] == 50.0
    assert expense["category"] == "Food & Dining"
    assert expense["date"] == "2024-01-15"

    budget = client.get("/api/budget", params={"month": "2024-01"}, headers=headers).json()
    assert budget["data"]["budget"]["spent"] == 50.0
    assert budget["data"]["budget"]["limit"] == 0.0
    assert budget["data"]["budget"]["status"] == "safe"
    assert budget["data"]["monthName"] == "January 2024"

    updated = client.put(
        f"/api/expenses/{expense['id']}", json={"amount": 30.25}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["expense"]["amount"] == 30.25
    budget = client.get("/api/budget", params={"month": "2024-01"}, headers=headers).json()
    assert budget["data"]["budget"]["spent"] == 30.25

    deleted = client.delete(f"/api/expenses/{expense['id']}", headers=headers)
    assert deleted.json() == {"success": True, "message": "Expense deleted successfully"}
    budget = client.get("/api/budget", params={"month": "2024-01"}, headers=headers).json()
    assert budget["data"]["budget"]["spent"] == 0.0

    missing = client.get(f"/api/expenses/{expense['id']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Expense not found"}


def test_expense_listing_paginates(client) -> None:
    headers = register(client)
    for day in range(1, 6):
        client.post(
            "/api/expenses",
            json={"category": "Travel", "amount": day, "date": f"2024-01-{day:02d}"},
            headers=headers,
        )
    client.post(
        "/api/expenses",
        json={"category": "Shopping", "amount": 9, "date": "2024-02-01"},
        headers=headers,
    )

    res = client.get(
        "/api/expenses",
        params={"category": "Travel", "month": "2024-01", "page": 2, "limit": 2},
        headers=headers,
    )

    data = res.json()["data"]
    assert [e["amount"] for e in data["expenses"]] == [3.0, 2.0]
    assert data["pagination"] == {
        "currentPage": 2,
        "totalPages": 3,
        "totalItems": 5,
        "itemsPerPage": 2,
    }
    assert client.get("/api/expenses", params={"limit": 101}, headers=headers).status_code == 400


def test_expenses_of_other_users_are_hidden(client) -> None:
    owner = register(client)
    intruder = register(client, email="grace@example.com")
    created = client.post(
        "/api/expenses",
        json={"category": "Other", "amount": 5, "date": "2024-01-02"},
        headers=owner,
    ).json()["data"]["expense"]

    assert client.get(f"/api/expenses/{created['id']}", headers=intruder).status_code == 404
    assert client.delete(f"/api/expenses/{created['id']}", headers=intruder).status_code == 404


def test_budget_alerts_and_history(client) -> None:
    headers = register(client)

    set_res = client.post("/api/budget", json={"limit": 100}, headers=headers)
    assert set_res.status_code == 200
    assert set_res.json()["data"]["budget"]["month"] == "2024-01"
    client.post(
        "/api/expenses",
        json={"category": "Housing", "amount": 95, "date": "2024-01-03"},
        headers=headers,
    )

    alerts = client.get("/api/budget/alerts", headers=headers).json()["data"]
    assert alerts["hasAlerts"] is True
    assert alerts["alerts"][0]["type"] == "danger"
    assert alerts["alerts"][0]["percentage"] == 95
    assert alerts["budget"]["remaining"] == 5.0

    history = client.get("/api/budget/history", headers=headers).json()["data"]
    assert len(history["budgetHistory"]) == 12
    assert history["months"][-1] == {"month": "2024-01", "monthName": "January 2024"}
    assert history["budgetHistory"][0]["month"] == "2023-02"

    bad = client.delete("/api/budget/2024-1", headers=headers)
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid month format. Use YYYY-MM"
    assert client.delete("/api/budget/2023-05", headers=headers).status_code == 404
    assert client.delete("/api/budget/2024-01", headers=headers).status_code == 200


def test_analytics_endpoints(client) -> None:
    headers = register(client)
    for category, amount, day in (
        ("Food & Dining", 60, "2024-01-05"),
        ("Travel", 40, "2024-01-06"),
        ("Travel", 50, "2023-12-20"),
    ):
        client.post(
            "/api/expenses",
            json={"category": category, "amount": amount, "date": day},
            headers=headers,
        )

    monthly = client.get("/api/analytics/monthly", params={"year": 2024}, headers=headers)
    assert monthly.json()["data"]["totalSpent"] == 100.0
    assert monthly.json()["data"]["monthlyData"][0]["monthName"] == "January"
    assert (
        client.get("/api/analytics/monthly", params={"year": 2019}, headers=headers).status_code
        == 400
    )

    category = client.get("/api/analytics/category", headers=headers).json()["data"]
    assert category["timePeriod"] == "January 2024"
    assert [c["percentage"] for c in category["categoryBreakdown"]] == [60, 40]

    trends = client.get(
        "/api/analytics/trends", params={"period": "monthly", "months": 2}, headers=headers
    ).json()["data"]
    assert [t["spent"] for t in trends["trends"]] == [50.0, 100.0]
    assert trends["averageSpent"] == 75.0
    assert (
        client.get("/api/analytics/trends", params={"period": "yearly"}, headers=headers).status_code
        == 400
    )

    summary = client.get("/api/analytics/summary", headers=headers).json()["data"]
    assert summary["currentMonth"]["spent"] == 100.0
    assert summary["currentMonth"]["transactions"] == 2
    assert summary["comparison"]["previousMonth"] == 50.0
    assert summary["comparison"]["changePercentage"] == 100.0
    assert summary["comparison"]["trend"] == "increase"


def test_out_of_range_numbers_are_rejected_without_side_effects(client) -> None:
    headers = register(client)

    res = client.post(
        "/api/budget", json={"month": "2024-02", "limit": 1e20}, headers=headers
    )
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "limit"
    assert client.delete("/api/budget/2024-02", headers=headers).status_code == 404

    res = client.get("/api/expenses", params={"page": 10**18}, headers=headers)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "page"
