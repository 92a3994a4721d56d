"""
Integration tests for the Bank Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

import bank_ledger.api.dependencies as dependencies
from bank_ledger.api import create_app
from bank_ledger.api.dependencies import LedgerSystem
from bank_ledger.config import LedgerConfig
from bank_ledger.seed import seed_demo_data
from bank_ledger.storage import InMemoryStorage


@pytest.fixture
def system():
    """In-memory ledger system swapped in for the global one"""
    config = LedgerConfig(_env_file=None, storage_backend="memory")
    test_system = LedgerSystem(config=config, storage=InMemoryStorage())

    original_system = dependencies.ledger_system
    dependencies.ledger_system = test_system
    yield test_system
    dependencies.ledger_system = original_system


@pytest.fixture
def client(system):
    return TestClient(create_app())


@pytest.fixture
def seeded(system):
    return seed_demo_data(system)


def customer(seeded):
    return {"X-Actor-Id": seeded["customer_id"]}


def admin(seeded):
    return {"X-Actor-Id": seeded["admin_id"], "X-Actor-Role": "admin"}


class TestHealthAndAuth:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_missing_actor_headers(self, client):
        r = client.post("/accounts")
        assert r.status_code == 401


class TestSeed:

    def test_seed_balances(self, client, seeded):
        r = client.get(f"/accounts/{seeded['admin_account_id']}/balance", headers=admin(seeded))
        assert r.json()["balance"] == "1000.00"

        r = client.get(f"/accounts/{seeded['customer_account_id']}/history", headers=customer(seeded))
        data = r.json()
        assert data["balance"] == "500.00"
        assert [e["description"] for e in data["entries"]] == ["Deposit"]

    def test_seed_runs_once(self, system, seeded):
        assert seed_demo_data(system) is None


class TestAccountFlow:

    def test_create_account(self, client):
        r = client.post("/accounts", headers={"X-Actor-Id": "new-user"})
        assert r.status_code == 201
        data = r.json()
        assert data["owner_id"] == "new-user"
        assert data["balance"] == "0.00"
        assert data["account_number"].startswith("AC")

        r = client.get("/accounts", headers={"X-Actor-Id": "new-user"})
        assert [a["id"] for a in r.json()["accounts"]] == [data["id"]]

    def test_create_account_for_other_owner_forbidden(self, client):
        r = client.post("/accounts", json={"owner_id": "someone"}, headers={"X-Actor-Id": "me"})
        assert r.status_code == 403
        assert r.json()["error"] == "forbidden"

    def test_deposit_withdraw_transfer(self, client, seeded):
        account_id = seeded["customer_account_id"]
        headers = customer(seeded)

        r = client.post(f"/accounts/{account_id}/deposit", json={"amount": "1,000.50"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["balance"] == "1500.50"

        r = client.post(f"/accounts/{account_id}/withdraw", json={"amount": 0.5}, headers=headers)
        assert r.json()["balance"] == "1500.00"

        other = client.post("/accounts", headers={"X-Actor-Id": "other"}).json()
        r = client.post(f"/accounts/{account_id}/transfer/{other['id']}", json={"amount": 250}, headers=headers)
        assert r.status_code == 200
        assert r.json()["from_balance"] == "1250.00"
        assert r.json()["to_balance"] == "250.00"

    def test_error_mapping(self, client, seeded):
        account_id = seeded["customer_account_id"]
        headers = customer(seeded)

        cases = [
            (f"/accounts/{account_id}/deposit", {"amount": "abc"}, 400, "invalid_amount"),
            (f"/accounts/{account_id}/deposit", {"amount": "-5"}, 400, "non_positive_amount"),
            (f"/accounts/{account_id}/deposit", {}, 400, "invalid_amount"),
            (f"/accounts/{account_id}/withdraw", {"amount": "999999"}, 400, "insufficient_funds"),
            (f"/accounts/{account_id}/transfer/{account_id}", {"amount": "1"}, 400, "same_account"),
            ("/accounts/missing/deposit", {"amount": "1"}, 404, "account_not_found"),
            (f"/accounts/{seeded['admin_account_id']}/withdraw", {"amount": "1"}, 403, "forbidden"),
        ]
        for path, body, status_code, code in cases:
            r = client.post(path, json=body, headers=headers)
            assert r.status_code == status_code, path
            assert r.json()["error"] == code

    def test_idempotent_deposit(self, client, seeded):
        account_id = seeded["customer_account_id"]
        body = {"amount": "10", "idempotency_key": "req-42"}
        first = client.post(f"/accounts/{account_id}/deposit", json=body, headers=customer(seeded))
        second = client.post(f"/accounts/{account_id}/deposit", json=body, headers=customer(seeded))
        assert first.json() == second.json() == {"account_id": account_id, "balance": "510.00"}


class TestLoanFlow:

    def test_apply_and_approve(self, client, seeded):
        r = client.post("/loans/apply", json={"amount": "1000.00", "tenure": 12}, headers=customer(seeded))
        assert r.status_code == 201
        application = r.json()
        assert application["status"] == "pending"
        assert application["amount"] == "1000.00"

        r = client.get("/loans/status", headers=customer(seeded))
        assert [a["id"] for a in r.json()["applications"]] == [application["id"]]

        r = client.post("/loans/admin/update", json={"id": application["id"], "action": "approved"},
                        headers=admin(seeded))
        assert r.status_code == 200
        assert r.json()["status"] == "approved"

        r = client.get(f"/accounts/{seeded['customer_account_id']}/history", headers=customer(seeded))
        latest = r.json()["entries"][0]
        assert latest["kind"] == "loan_disbursement"
        assert latest["from_account"] == "HOUSE"
        assert r.json()["balance"] == "1500.00"

        r = client.post("/loans/admin/update", json={"id": application["id"], "action": "rejected"},
                        headers=admin(seeded))
        assert r.status_code == 409
        assert r.json()["error"] == "already_processed"

    def test_admin_routes_require_admin(self, client, seeded):
        for path in ["/loans/admin/all", "/loans/admin/stats"]:
            assert client.get(path, headers=customer(seeded)).status_code == 403

        r = client.post("/loans/admin/update", json={"id": "x", "action": "approved"}, headers=customer(seeded))
        assert r.status_code == 403

    def test_role_header_does_not_override_directory(self, client, seeded):
        # A registered customer claiming the admin role is still a customer
        headers = {"X-Actor-Id": seeded["customer_id"], "X-Actor-Role": "admin"}
        assert client.get("/loans/admin/all", headers=headers).status_code == 403

    def test_admin_listing_and_stats(self, client, seeded):
        for amount in ["100", "200"]:
            client.post("/loans/apply", json={"amount": amount, "tenure": 6}, headers=customer(seeded))
        apps = client.get("/loans/admin/all", headers=admin(seeded)).json()["applications"]
        assert [a["amount"] for a in apps] == ["200.00", "100.00"]

        client.post("/loans/admin/update", json={"id": apps[0]["id"], "action": "rejected"}, headers=admin(seeded))
        stats = client.get("/loans/admin/stats", headers=admin(seeded)).json()
        assert stats["kind"] == "loan"
        assert stats["stats"]["pending"] == 1
        assert stats["stats"]["rejected"] == 1

    def test_unknown_application(self, client, seeded):
        r = client.post("/loans/admin/update", json={"id": "missing", "action": "approved"}, headers=admin(seeded))
        assert r.status_code == 404
        assert r.json()["error"] == "application_not_found"

    def test_invalid_tenure(self, client, seeded):
        r = client.post("/loans/apply", json={"amount": "100", "tenure": 0}, headers=customer(seeded))
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"


class TestInsuranceFlow:

    def test_apply_and_activate(self, client, seeded):
        r = client.post("/insurance/apply", json={"type": "health", "premium": "120", "coverage": "10,000"},
                        headers=customer(seeded))
        assert r.status_code == 201
        policy = r.json()
        assert policy["duration_months"] == 12

        r = client.post("/insurance/admin/update", json={"id": policy["id"], "action": "approved"},
                        headers=admin(seeded))
        assert r.json()["status"] == "active"

        r = client.get(f"/accounts/{seeded['customer_account_id']}/balance", headers=customer(seeded))
        assert r.json()["balance"] == "380.00"

    def test_insufficient_premium_funds(self, client, seeded):
        r = client.post("/insurance/apply", json={"type": "life", "premium": "900", "coverage": "100000"},
                        headers=customer(seeded))
        policy_id = r.json()["id"]

        r = client.post("/insurance/admin/update", json={"id": policy_id, "action": "approved"},
                        headers=admin(seeded))
        assert r.status_code == 400
        assert r.json()["error"] == "insufficient_funds"

        statuses = client.get("/insurance/status", headers=customer(seeded)).json()["applications"]
        assert statuses[0]["status"] == "pending"

    def test_loan_route_cannot_decide_policy(self, client, seeded):
        r = client.post("/insurance/apply", json={"type": "car", "premium": "10", "coverage": "1000"},
                        headers=customer(seeded))
        r = client.post("/loans/admin/update", json={"id": r.json()["id"], "action": "approved"},
                        headers=admin(seeded))
        assert r.status_code == 404
