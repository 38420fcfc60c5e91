from __future__ import annotations

import pytest


def _category_id(db_session, name: str) -> int:
    from expense_api import models

    return db_session.query(models.Category).filter(models.Category.name == name).one().id


def _rent(category_id: int, **overrides):
    body = {
        "type": "EXPENSE",
        "frequency": "MONTHLY",
        "day_of_month": 1,
        "start_date": "2024-01-01",
        "amount": 5000000,
        "category_id": category_id,
        "note": "Tien nha",
    }
    body.update(overrides)
    return body


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_create_then_update_recurring_rule(client, db_session):
    housing = _category_id(db_session, "Housing")

    res = client.post("/api/recurring-rules", json=_rent(housing))
    assert res.status_code == 201
    created = res.json()
    assert created["action"] == "created"
    assert created["rule"]["currency"] == "VND"
    assert created["rule"]["timezone"] == "Asia/Ho_Chi_Minh"
    assert created["rule"]["time_of_day"] == "07:00"
    assert created["rule"]["next_run_at"].endswith("Z") or created["rule"]["next_run_at"].endswith("+00:00")

    res = client.post(
        "/api/recurring-rules",
        json=_rent(housing, amount=6000000, source_message="Cập nhật tiền nhà thành 6 triệu"),
    )
    assert res.status_code == 200
    updated = res.json()
    assert updated["action"] == "updated"
    assert updated["rule"]["id"] == created["rule"]["id"]
    assert updated["rule"]["amount"] == 6000000

    listing = client.get("/api/recurring-rules").json()
    assert [r["id"] for r in listing] == [created["rule"]["id"]]


@pytest.mark.parametrize(
    "overrides",
    [
        {"time_of_day": "25:99"},
        {"timezone": "Mars/Olympus"},
        {"amount": -10},
        {"currency": "DONG"},
        {"day_of_month": 32},
        {"end_date": "2023-12-31"},
    ],
)
def test_invalid_rule_payload_is_rejected(client, db_session, overrides):
    res = client.post("/api/recurring-rules", json=_rent(_category_id(db_session, "Housing"), **overrides))
    assert res.status_code == 422
    assert client.get("/api/recurring-rules").json() == []


def test_exhausted_schedule_returns_400(client, db_session):
    res = client.post(
        "/api/recurring-rules",
        json=_rent(_category_id(db_session, "Housing"), start_date="2020-01-01", end_date="2020-06-30"),
    )
    assert res.status_code == 400


def test_rule_detail_disable_and_runs(client, db_session):
    rule = client.post("/api/recurring-rules", json=_rent(_category_id(db_session, "Housing"))).json()["rule"]

    assert client.get(f"/api/recurring-rules/{rule['id']}").status_code == 200
    assert client.get("/api/recurring-rules/9999").status_code == 404
    assert client.get(f"/api/recurring-rules/{rule['id']}/runs").json() == []

    res = client.post(f"/api/recurring-rules/{rule['id']}/disable")
    assert res.status_code == 200
    assert res.json()["enabled"] is False
    assert res.json()["next_run_at"] is None

    summary = client.post("/api/recurring-rules/process").json()
    assert summary["processed"] == 0


def test_budget_rule_endpoints(client, db_session):
    body = _rent(_category_id(db_session, "Housing"), note="ngan sach nha", amount=3000000)
    body.pop("type")

    res = client.post("/api/recurring-budget-rules", json=body)
    assert res.status_code == 201
    rule = res.json()["rule"]
    assert "type" not in rule

    assert client.get(f"/api/recurring-budget-rules/{rule['id']}/runs").status_code == 200
    assert client.post("/api/recurring-budget-rules/process", params={"limit": 10}).status_code == 200
    assert client.post("/api/recurring-budget-rules/9999/disable").status_code == 404


def test_recurring_transaction_endpoints(client):
    res = client.post(
        "/api/recurring-transactions",
        json={
            "type": "EXPENSE",
            "amount": 30000,
            "note": "ca phe",
            "frequency": "DAILY",
            "interval": 2,
            "start_date": "2024-01-01T09:00:00",
        },
    )
    assert res.status_code == 201
    item = res.json()
    assert item["interval"] == 2
    assert item["is_active"] is True

    summary = client.post("/api/recurring-transactions/process").json()
    assert summary["processed"] == 1
    assert summary["created"] == 24

    assert [r["id"] for r in client.get("/api/recurring-transactions").json()] == [item["id"]]
    assert client.delete(f"/api/recurring-transactions/{item['id']}").json() == {"success": True}
    assert client.delete("/api/recurring-transactions/9999").status_code == 404


def test_yearly_recurring_transaction_is_rejected(client):
    res = client.post(
        "/api/recurring-transactions",
        json={"type": "EXPENSE", "amount": 1, "frequency": "YEARLY", "start_date": "2024-01-01T00:00:00"},
    )
    assert res.status_code == 422
