from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


def make_client() -> TestClient:
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
    return TestClient(app)


def _csrf(client: TestClient) -> dict[str, str]:
    payload = client.get("/api/csrf-token").json()
    return {payload["header"]: payload["token"]}


def test_writes_require_csrf_token() -> None:
    client = make_client()
    response = client.post("/api/groups", json={"name": "Food"})
    assert response.status_code == 400

    response = client.post(
        "/api/groups", json={"name": "Food"}, headers={"X-CSRF-Token": "forged"}
    )
    assert response.status_code == 400


def test_budget_flow_through_api() -> None:
    client = make_client()
    headers = _csrf(client)

    group = client.post("/api/groups", json={"name": "Food"}, headers=headers)
    assert group.status_code == 201
    sub = client.post(
        "/api/sub-categories",
        json={"name": "Groceries", "budget_group_id": group.json()["id"]},
        headers=headers,
    ).json()

    limit = client.post(
        "/api/budget/limit",
        json={
            "kind": "sub_category",
            "entity_id": sub["id"],
            "month": "2025-03",
            "mode": "template",
            "amount_cents": 300000,
        },
        headers=headers,
    )
    assert limit.status_code == 200
    assert limit.json()["value"] == 300000
    assert limit.json()["source"] == "template"

    txn = client.post(
        "/api/transactions",
        json={
            "date": "2025-03-10",
            "amount_cents": -45000,
            "type": "expense",
            "sub_category_id": sub["id"],
        },
        headers=headers,
    )
    assert txn.status_code == 201

    report = client.get("/api/report", params={"month": "2025-03"}).json()
    assert report["template_name"] == "Standard"
    food = report["groups"][0]
    assert food["total_budget_cents"] == 300000
    assert food["total_spent_cents"] == 45000
    assert report["breakdown"]["variable_ops"] == report["total_budget_cents"]


def test_budget_amount_text_is_read_in_cents() -> None:
    client = make_client()
    headers = _csrf(client)
    group = client.post("/api/groups", json={"name": "Food"}, headers=headers).json()

    def set_limit(month: str, amount) -> dict:
        return client.post(
            "/api/budget/limit",
            json={
                "kind": "group",
                "entity_id": group["id"],
                "month": month,
                "mode": "override",
                "amount_cents": amount,
            },
            headers=headers,
        ).json()

    assert set_limit("2025-03", 500)["value"] == 500
    assert set_limit("2025-04", "500")["value"] == 500
    assert set_limit("2025-05", "lots")["value"] == 0


def test_locked_month_returns_conflict() -> None:
    client = make_client()
    headers = _csrf(client)
    group = client.post("/api/groups", json={"name": "Food"}, headers=headers).json()

    locked = client.post("/api/months/2025-03/lock", headers=headers)
    assert locked.json() == {"month": "2025-03", "is_locked": True}

    response = client.post(
        "/api/budget/limit",
        json={
            "kind": "group",
            "entity_id": group["id"],
            "month": "2025-03",
            "mode": "override",
            "amount_cents": 100,
        },
        headers=headers,
    )
    assert response.status_code == 409

    effective = client.get(
        "/api/budget/effective",
        params={"kind": "group", "entity_id": group["id"], "month": "2025-03"},
    )
    assert effective.status_code == 200
    assert effective.json()["source"] == "none"


def test_bad_month_and_missing_entities() -> None:
    client = make_client()
    headers = _csrf(client)

    assert client.get("/api/report", params={"month": "2025-3"}).status_code == 400
    assert client.get("/api/interval", params={"month": "March"}).status_code == 400

    response = client.post(
        "/api/budget/limit",
        json={
            "kind": "bucket",
            "entity_id": 42,
            "month": "2025-03",
            "mode": "override",
        },
        headers=headers,
    )
    assert response.status_code == 404

    response = client.put("/api/months/2025-03/template", json={"template_id": 7}, headers=headers)
    assert response.status_code == 404


def test_interval_uses_configured_payday() -> None:
    client = make_client()
    headers = _csrf(client)
    assert client.put("/api/settings/payday", json={"payday": 25}, headers=headers).json() == {
        "payday": 25
    }
    interval = client.get("/api/interval", params={"month": "2025-03"}).json()
    assert interval == {"month": "2025-03", "start": "2025-02-25", "end": "2025-03-24"}


def test_csv_import_dry_run_and_commit() -> None:
    client = make_client()
    headers = _csrf(client)
    client.post("/api/sub-categories", json={"name": "Groceries"}, headers=headers)
    content = "Date,Type,Amount,Description,Category\n2025-03-01,expense,-120,ICA,Grocerie\n"

    preview = client.post(
        "/api/transactions/import",
        params={"dry_run": "true"},
        files={"file": ("tx.csv", content.encode("utf-8"), "text/csv")},
        headers=headers,
    ).json()
    assert preview["errors"] == []
    assert preview["rows"][0]["date"] == "2025-03-01"

    imported = client.post(
        "/api/transactions/import",
        files={"file": ("tx.csv", content.encode("utf-8"), "text/csv")},
        headers=headers,
    )
    assert imported.json() == {"imported": 1}

    exported = client.get("/api/transactions/export", params={"month": "2025-03"})
    assert exported.headers["content-type"].startswith("text/csv")
    assert "Groceries" in exported.text


def test_backup_endpoints_round_trip() -> None:
    client = make_client()
    headers = _csrf(client)
    client.post("/api/groups", json={"name": "Food", "is_catch_all": True}, headers=headers)

    backup = client.get("/api/backup")
    assert backup.status_code == 200

    restored = client.post(
        "/api/backup",
        files={"file": ("backup.json", backup.content, "application/json")},
        headers=headers,
    )
    assert restored.status_code == 200
    assert [g["name"] for g in client.get("/api/groups").json()] == ["Food"]

    broken = client.post(
        "/api/backup",
        files={"file": ("backup.json", b"{}", "application/json")},
        headers=headers,
    )
    assert broken.status_code == 400
