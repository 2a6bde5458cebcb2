# tests/test_api_routes.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from stakebank.api.app import create_app
from stakebank.runtime.allocator import Allocator
from stakebank.runtime.custody import InMemoryCustody
from stakebank.runtime.events import MemoryEventSink

OWNER = "owner"


def _mk_client(custody_balance: int = 0) -> tuple[TestClient, Allocator, InMemoryCustody]:
    custody = InMemoryCustody(custody_balance)
    bank = Allocator(owner=OWNER, custody=custody, sink=MemoryEventSink(), clock=lambda: 1_700_000_000)
    app = create_app(allocator=bank)
    return TestClient(app), bank, custody


def _as(caller: str) -> dict:
    return {"X-Caller-Id": caller}


def test_full_participant_flow_over_http() -> None:
    c, bank, custody = _mk_client()

    r = c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))
    assert r.status_code == 200
    j = r.json()
    assert j["ok"] is True
    assert j["participant"]["active"] is True
    assert j["participant"]["ledger"]["available"] == 0

    r = c.post("/v1/participants/W/deposit", json={"amount": 100, "incoming_funds": 100})
    assert r.status_code == 200
    assert r.json()["total_allocated"] == 100

    r = c.post("/v1/participants/W/stake", json={"amount": 60}, headers=_as("W"))
    assert r.status_code == 200
    led = r.json()["participant"]["ledger"]
    assert (led["available"], led["staked"], led["total_staked"]) == (40, 60, 60)

    r = c.post("/v1/participants/W/unstake", json={"amount": 10}, headers=_as("W"))
    assert r.status_code == 200
    assert r.json()["participant"]["ledger"]["staked"] == 50

    r = c.get("/v1/participants/W")
    assert r.status_code == 200
    assert r.json()["participant"]["name"] == "Alice"

    r = c.get("/v1/participants")
    assert [p["wallet"] for p in r.json()["participants"]] == ["W"]

    r = c.get("/v1/bank")
    b = r.json()["bank"]
    assert b["total_allocated"] == 100
    assert b["custody_balance"] == custody.balance() == 100
    assert b["halted"] is False

    r = c.get("/v1/bank/invariants")
    assert r.status_code == 200
    assert r.json()["invariants"]["ok"] is True


def test_owner_routes_and_error_mapping() -> None:
    c, bank, custody = _mk_client()
    c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))

    # Not the owner.
    r = c.post("/v1/participants/W/deactivate", headers=_as("W"))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "unauthorized"

    # Missing caller header.
    r = c.post("/v1/participants/W/deactivate")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "missing_caller"

    # Duplicate registration.
    r = c.post("/v1/participants", json={"wallet": "W", "name": "Again"}, headers=_as(OWNER))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "already_exists"

    r = c.post("/v1/participants/W/deactivate", headers=_as(OWNER))
    assert r.status_code == 200
    assert r.json()["participant"]["active"] is False
    assert r.json()["participant"]["ledger"]["deactivated_at"] == 1_700_000_000

    r = c.post("/v1/participants/W/deposit", json={"amount": 5, "incoming_funds": 5})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "inactive"

    r = c.post("/v1/participants/W/reactivate", headers=_as(OWNER))
    assert r.status_code == 200
    assert r.json()["participant"]["ledger"]["deactivated_at"] == 1_700_000_000

    r = c.get("/v1/participants/ghost")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "not_found"

    r = c.post("/v1/participants/W/deposit", json={"amount": 0, "incoming_funds": 0})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_argument"

    r = c.post("/v1/participants/W/stake", json={"amount": 1}, headers=_as("W"))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "insufficient_balance"


def test_topup_and_withdraw_over_http() -> None:
    c, bank, custody = _mk_client()
    c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))
    c.post("/v1/participants/W/deposit", json={"amount": 100, "incoming_funds": 100})

    r = c.post("/v1/bank/topup", json={"amount": 20}, headers=_as(OWNER))
    assert r.status_code == 200
    assert r.json()["bank"]["custody_balance"] == 120

    r = c.post("/v1/bank/withdraw", json={"amount": 21, "to": "treasury"}, headers=_as(OWNER))
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "invariant_violation"

    r = c.post("/v1/bank/withdraw", json={"amount": 20, "to": "treasury"}, headers=_as(OWNER))
    assert r.status_code == 200
    assert custody.sent == {"treasury": 20}

    custody.fail_transfers = True
    c.post("/v1/bank/topup", json={"amount": 5}, headers=_as(OWNER))
    r = c.post("/v1/bank/withdraw", json={"amount": 5, "to": "treasury"}, headers=_as(OWNER))
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "transfer_failed"


def test_health_reports_halt() -> None:
    c, bank, custody = _mk_client()
    assert c.get("/v1/health").json()["ok"] is True

    c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))
    c.post("/v1/participants/W/deposit", json={"amount": 100, "incoming_funds": 100})
    custody.leak(100)
    r = c.post("/v1/participants/W/deposit", json={"amount": 1, "incoming_funds": 1})
    assert r.status_code == 500

    j = c.get("/v1/health").json()
    assert j["ok"] is False
    assert j["halted"] is True
    assert j["halt_reason"]["op"] == "deposit_for"


def test_schema_rejects_non_integer_amounts() -> None:
    c, _, _ = _mk_client()
    c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))

    r = c.post("/v1/participants/W/deposit", json={"amount": "10", "incoming_funds": 10})
    assert r.status_code == 422


def test_metrics_route_is_gated_by_env(monkeypatch: pytest.MonkeyPatch) -> None:
    c, _, _ = _mk_client()
    assert c.get("/v1/metrics").status_code == 404

    monkeypatch.setenv("STAKEBANK_METRICS_ENABLED", "1")
    c.post("/v1/participants", json={"wallet": "W", "name": "Alice"}, headers=_as(OWNER))
    c.post("/v1/participants/W/deposit", json={"amount": 3, "incoming_funds": 3})
    c.post("/v1/participants/W/deactivate", headers=_as("W"))

    r = c.get("/v1/metrics")
    assert r.status_code == 200
    body = r.text
    assert "stakebank_create_participant_ok 1" in body
    assert "stakebank_deposit_for_ok 1" in body
    assert "stakebank_deactivate_unauthorized 1" in body
    assert "stakebank_total_allocated 3" in body


def test_create_app_without_runtime_answers_not_ready() -> None:
    app = create_app(boot_runtime=False)
    with TestClient(app) as c:
        r = c.get("/v1/health")
        assert r.status_code == 500
        assert r.json()["error"]["code"] == "not_ready"


def test_create_app_boots_allocator_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STAKEBANK_OWNER", "env-owner")
    monkeypatch.setenv("STAKEBANK_INITIAL_CUSTODY", "50")

    app = create_app()
    alloc = app.state.allocator
    assert alloc.owner == "env-owner"
    assert alloc.custody_balance() == 50

    c = TestClient(app)
    r = c.post("/v1/bank/withdraw", json={"amount": 50, "to": "cold"}, headers=_as("env-owner"))
    assert r.status_code == 200


def test_build_allocator_can_be_monkeypatched(monkeypatch: pytest.MonkeyPatch) -> None:
    from stakebank.api import app as api_app

    fake = Allocator(owner="patched", custody=InMemoryCustody())
    monkeypatch.setattr(api_app, "build_allocator", lambda: fake)

    app = api_app.create_app(boot_runtime=True)
    assert app.state.allocator is fake
