import pytest
from fastapi.testclient import TestClient

from chainrise.webapp import app
from chainrise.webapp import config

from conftest import PASSWORD, make_profile, make_wallet

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def login(client: TestClient, username: str, password: str = PASSWORD):
    return client.post("/signin", data={"email_or_username": username, "password": password})


def test_health_and_public_catalogue() -> None:
    make_wallet("BTC", "bc1-platform")
    client = TestClient(app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "database": "ok", "jobs": {}}

    plans = client.get("/plans").json()["plans"]
    assert [plan["code"] for plan in plans] == ["plan_1", "plan_2", "plan_3", "plan_4"]
    assert plans[1]["daily_rate_percent"] == 4.4
    wallets = client.get("/wallets").json()["wallets"]
    assert [(wallet["symbol"], wallet["wallet_address"]) for wallet in wallets] == [("BTC", "bc1-platform")]


def test_signup_signs_the_user_in() -> None:
    client = TestClient(app)
    form = {
        "name": "Nora Quinn",
        "email": "nora@example.com",
        "username": "nora",
        "password": PASSWORD,
        "confirm_password": PASSWORD,
        "btc_address": "bc1-nora",
    }
    response = client.post("/signup", data=form)
    assert response.status_code == 201
    assert response.json()["redirect"] == "/user/dashboard"

    dashboard = client.get("/user/dashboard")
    assert dashboard.status_code == 200
    assert dashboard.json()["user"]["username"] == "nora"
    assert client.get("/user/crypto-addresses").json()["addresses"]["btc_address"] == "bc1-nora"

    duplicate = TestClient(app).post("/signup", data=form)
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "Username already taken"}

    client.post("/signout")
    assert client.get("/user/dashboard").status_code == 401


def test_signin_errors_are_json() -> None:
    make_profile("sam")
    client = TestClient(app)
    response = login(client, "sam", "wrong-password")
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}
    assert login(client, "sam").json()["redirect"] == "/user/dashboard"


def test_admin_routes_are_guarded() -> None:
    make_profile("sam")
    anonymous = TestClient(app)
    assert anonymous.get("/admin/stats").status_code == 401

    member = TestClient(app)
    login(member, "sam")
    forbidden = member.get("/admin/stats")
    assert forbidden.status_code == 403
    assert forbidden.json() == {"error": "Admin privileges required"}


def test_deposit_approval_flow() -> None:
    make_profile("sam")
    make_profile("boss", is_admin=True)
    make_wallet("BTC")
    member = TestClient(app)
    admin = TestClient(app)
    login(member, "sam")
    login(admin, "boss")
    plan_id = member.get("/plans").json()["plans"][0]["id"]

    created = member.post("/user/deposits", data={"plan_id": plan_id, "amount": "500", "crypto_type": "btc"})
    assert created.status_code == 201
    deposit = created.json()["deposit"]
    assert deposit["status"] == "pending"
    assert deposit["plan_title"] == "Plan 1"

    pending = admin.get("/admin/deposits", params={"status": "pending"}).json()
    assert pending["total"] == 1
    assert pending["items"][0]["username"] == "sam"

    approved = admin.post(f"/admin/deposits/{deposit['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["deposit"]["status"] == "completed"
    again = admin.post(f"/admin/deposits/{deposit['id']}/approve")
    assert again.status_code == 409
    assert again.json() == {"error": "Deposit already processed", "current_status": "completed"}

    dashboard = member.get("/user/dashboard").json()
    assert dashboard["user"]["balance_cents"] == 500_00
    assert dashboard["totals"]["completed_deposits_cents"] == 500_00

    invested = member.post("/user/investments", data={"plan_code": "plan_1", "amount": "300"})
    assert invested.status_code == 201
    assert invested.json()["investment"]["is_locked"] is True
    assert member.get("/user/dashboard").json()["user"]["balance_cents"] == 200_00
    stats = member.get("/user/investments/stats").json()
    assert stats["locked_balance_cents"] == 300_00
    assert stats["plan"] == {"code": "plan_1", "title": "Plan 1"}


def test_ban_ends_existing_sessions() -> None:
    user_id = make_profile("sam")
    make_profile("boss", is_admin=True)
    member = TestClient(app)
    admin = TestClient(app)
    login(member, "sam")
    login(admin, "boss")
    assert member.get("/user/dashboard").status_code == 200

    banned = admin.post(f"/admin/users/{user_id}/ban", data={"reason": "Chargeback", "duration_hours": "24"})
    assert banned.json()["action"] == "banned"

    assert member.get("/user/dashboard").status_code == 401
    relogin = login(member, "sam")
    assert relogin.status_code == 403


def test_admin_funding_and_metrics() -> None:
    user_id = make_profile("sam")
    make_profile("boss", is_admin=True)
    admin = TestClient(app)
    login(admin, "boss")

    funded = admin.post(f"/admin/users/{user_id}/fund", data={"amount": "25", "transaction_type": "bonus"})
    assert funded.json() == {
        "success": True,
        "message": "Bonus of $25.00 added to sam",
        "user_id": user_id,
        "action": "funded",
    }
    rejected = admin.post(
        f"/admin/users/{user_id}/fund", data={"amount": "25", "transaction_type": "bonus", "plan": "plan_1"}
    )
    assert rejected.status_code == 400

    metrics = admin.get(f"/admin/users/{user_id}/metrics").json()
    assert metrics["total_bonus_cents"] == 25_00
    assert admin.get("/admin/stats").json()["total_balance_cents"] == 25_00


def test_referral_code_validation_endpoint() -> None:
    make_profile("sam", referral_code="SAMCODE1")
    client = TestClient(app)
    valid = client.get("/referral/validate", params={"code": "samcode1"})
    assert valid.json() == {"valid": True, "referrer": {"name": "Sam", "username": "sam"}}
    invalid = client.get("/referral/validate", params={"code": "NOPE"})
    assert invalid.status_code == 400
    assert invalid.json()["valid"] is False


def test_deposit_export_download() -> None:
    make_profile("boss", is_admin=True)
    admin = TestClient(app)
    login(admin, "boss")

    response = admin.get("/admin/analytics/deposits/export", params={"timeframe": "7d"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == "attachment; filename=deposit-analytics-7d.csv"
    assert response.text.splitlines()[0] == "Metric,Value"

    as_json = admin.get("/admin/analytics/deposits/export", params={"timeframe": "7d", "format": "json"})
    assert as_json.headers["content-type"].startswith("application/json")
    assert as_json.json()["timeframe"] == "7d"

    bad = admin.get("/admin/analytics/deposits/export", params={"format": "xlsx"})
    assert bad.status_code == 400


def test_cron_requires_bearer_secret() -> None:
    client = TestClient(app)
    assert client.get("/api/cron/daily-profits").status_code == 401
    wrong = client.get("/api/cron/daily-profits", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Unauthorized"}


def test_cron_without_configured_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "CRON_SECRET", "")
    response = TestClient(app).post("/api/cron/daily-profits", headers=CRON_HEADERS)
    assert response.status_code == 500
    assert response.json() == {"error": "Cron secret not configured"}


def test_cron_jobs_run_with_secret() -> None:
    make_profile("ana", total_invested_cents=5_000_00)
    client = TestClient(app)

    daily = client.post("/api/cron/daily-profits", headers=CRON_HEADERS)
    assert daily.status_code == 200
    body = daily.json()
    assert body["success"] is True
    assert body["summary"]["totalProfitsDistributed"] == 220.0

    maturity = client.post("/api/cron/investment-maturity", headers=CRON_HEADERS)
    assert maturity.status_code == 200
    assert maturity.json()["success"] is True

    combined = client.get("/api/cron", headers=CRON_HEADERS)
    assert combined.status_code == 200
    assert combined.json()["summary"]["totalProfitsDistributed"] == 0.0
    assert set(client.get("/health").json()["jobs"]) == {"daily_profits", "investment_maturity"}


def test_cron_alias_credits_one_day_of_profit() -> None:
    make_profile("ana", balance_cents=5_000_00)
    member = TestClient(app)
    login(member, "ana")
    invested = member.post("/user/investments", data={"plan_code": "plan_2", "amount": "5000"})
    assert invested.status_code == 201
    assert member.get("/user/dashboard").json()["user"]["balance_cents"] == 0

    response = TestClient(app).post("/api/cron", headers=CRON_HEADERS)
    assert response.status_code == 200
    assert response.json()["summary"]["usersWithInvestments"] == 1
    assert member.get("/user/dashboard").json()["user"]["balance_cents"] == 220_00
    assert set(TestClient(app).get("/health").json()["jobs"]) == {"daily_profits"}
