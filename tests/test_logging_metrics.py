# tests/test_logging_metrics.py
from __future__ import annotations

import json
import logging

import pytest

from stakebank.logging_utils import configure_structured_logging, log_event
from stakebank.runtime import metrics
from stakebank.runtime.access import require_bank_caller, require_owner, require_wallet_owner
from stakebank.runtime.allocator import Allocator
from stakebank.runtime.custody import InMemoryCustody
from stakebank.runtime.errors import Unauthorized

OWNER = "owner"


def test_log_event_emits_one_sorted_json_line(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("stakebank.test")
    with caplog.at_level(logging.INFO, logger="stakebank.test"):
        log_event(logger, "deposit_for", wallet="W", amount=5)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "deposit_for"
    assert payload["wallet"] == "W" and payload["amount"] == 5
    assert isinstance(payload["ts_ms"], int)


def test_configure_structured_logging_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    saved = (list(root.handlers), root.level, getattr(root, "_stakebank_configured", False))
    try:
        if hasattr(root, "_stakebank_configured"):
            delattr(root, "_stakebank_configured")
        monkeypatch.setenv("STAKEBANK_LOG_LEVEL", "warning")
        configure_structured_logging()
        configure_structured_logging()
        assert root.level == logging.WARNING
        assert len([h for h in root.handlers if isinstance(h, logging.StreamHandler)]) >= 1
    finally:
        root.handlers = saved[0]
        root.setLevel(saved[1])
        if saved[2]:
            setattr(root, "_stakebank_configured", True)
        elif hasattr(root, "_stakebank_configured"):
            delattr(root, "_stakebank_configured")


def test_allocator_logs_refusals(caplog: pytest.LogCaptureFixture) -> None:
    bank = Allocator(owner=OWNER, custody=InMemoryCustody())
    with caplog.at_level(logging.INFO, logger="stakebank.allocator"):
        with pytest.raises(Unauthorized):
            bank.top_up("mallory", 5)

    msgs = [json.loads(r.getMessage()) for r in caplog.records if r.name == "stakebank.allocator"]
    assert msgs[-1]["event"] == "top_up_rejected"
    assert msgs[-1]["code"] == "unauthorized"


def test_operation_counters() -> None:
    bank = Allocator(owner=OWNER, custody=InMemoryCustody())
    bank.top_up(OWNER, 1)
    with pytest.raises(Unauthorized):
        bank.top_up("mallory", 1)

    counters = metrics.snapshot()["counters"]
    assert counters["top_up_ok"] == 1
    assert counters["top_up_unauthorized"] == 1


def test_access_checks_compare_stored_identities() -> None:
    class _Bound:
        bank = "bank"
        wallet = "W"

    require_owner("owner", "owner")
    require_bank_caller("bank", _Bound())
    require_wallet_owner("W", _Bound())

    with pytest.raises(Unauthorized):
        require_owner("", "")
    with pytest.raises(Unauthorized):
        require_owner(None, "owner")
    with pytest.raises(Unauthorized):
        require_bank_caller("W", _Bound())
    with pytest.raises(Unauthorized):
        require_wallet_owner("bank", _Bound())


def test_wallet_request_refusals_are_logged_and_counted(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("STAKEBANK_METRICS_ENABLED", "1")
    bank = Allocator(owner=OWNER, custody=InMemoryCustody())
    ledger = bank.create_participant(OWNER, "W", "Alice")
    bank.deposit_for("W", 10, 10)

    with caplog.at_level(logging.INFO, logger="stakebank.ledger"):
        with pytest.raises(Unauthorized):
            ledger.request_stake("mallory", 5)
        with pytest.raises(Unauthorized):
            ledger.request_unstake(OWNER, 5)
        ledger.request_stake("W", 5)

    msgs = [json.loads(r.getMessage()) for r in caplog.records if r.name == "stakebank.ledger"]
    assert [m["event"] for m in msgs] == ["request_stake_rejected", "request_unstake_rejected", "request_stake"]
    assert msgs[0]["code"] == "unauthorized"
    assert msgs[0]["wallet"] == "W"

    counters = metrics.snapshot()["counters"]
    assert counters["request_stake_unauthorized"] == 1
    assert counters["request_unstake_unauthorized"] == 1
    assert counters["request_stake_ok"] == 1
    assert counters["relay_stake_ok"] == 1
