# src/stakebank/runtime/allocator.py
from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

from stakebank.ledger.constants import BALANCE_BITS, COUNTER_BITS, DEFAULT_BANK_ADDRESS, POOL_BITS, TIMESTAMP_BITS
from stakebank.ledger.state import LedgerSnapshot
from stakebank.ledger.uint import as_amount, checked_add, require_width
from stakebank.logging_utils import log_event
from stakebank.runtime import metrics
from stakebank.runtime.access import require_owner
from stakebank.runtime.custody import Custody
from stakebank.runtime.errors import (
    AlreadyActive,
    AlreadyExists,
    AlreadyInactive,
    Inactive,
    InvalidArgument,
    InvariantViolation,
    LedgerError,
    NotFound,
    TransferFailed,
    Unauthorized,
)
from stakebank.runtime.events import (
    Deposited,
    EventBus,
    EventSink,
    MemoryEventSink,
    ParticipantCreated,
    ParticipantDeactivated,
    ParticipantReactivated,
    Staked,
    ToppedUp,
    Unstaked,
    Withdrawn,
)
from stakebank.runtime.participant import Clock, ParticipantLedger, derive_ledger_address, unix_now

Json = Dict[str, Any]

STATE_VERSION = 1

_LOG = logging.getLogger("stakebank.allocator")


class Ledger(Protocol):
    """What the allocator needs from a participant ledger."""

    @property
    def bank(self) -> str: ...

    @property
    def wallet(self) -> str: ...

    @property
    def address(self) -> str: ...

    @property
    def lock(self) -> threading.RLock: ...

    def apply_deposit(self, caller: str, amount: int, *, at: Optional[int] = None) -> None: ...

    def apply_stake(self, caller: str, amount: int) -> None: ...

    def apply_unstake(self, caller: str, amount: int) -> None: ...

    def mark_deactivated(self, caller: str) -> None: ...

    def read_ledger(self) -> LedgerSnapshot: ...


def _as_identity(v: Any) -> str:
    return str(v).strip() if isinstance(v, str) else ""


def _positive(amount: Any, *, field: str = "amount") -> int:
    amt = as_amount(amount, field=field)
    if amt <= 0:
        raise InvalidArgument("amount_must_be_positive", {field: amt})
    return amt


class Allocator:
    """
    Central allocator ("bank") over a pooled custody balance.

    Owns the participant registry and `total_allocated`, the sum of every
    participant's available + staked balance. Coverage invariant:
    custody.balance() >= total_allocated after every mutating operation.

    Locking: a participant's ledger lock is always taken before the pool
    lock. Operations on different wallets only contend on the pool lock, and
    only when they touch pool state.
    """

    def __init__(
        self,
        *,
        owner: str,
        custody: Custody,
        sink: Optional[EventSink] = None,
        address: str = DEFAULT_BANK_ADDRESS,
        clock: Optional[Clock] = None,
    ) -> None:
        owner_id = _as_identity(owner)
        addr = _as_identity(address)
        if not owner_id:
            raise InvalidArgument("null_owner", {})
        if not addr:
            raise InvalidArgument("null_bank_address", {})
        if addr == owner_id:
            raise InvalidArgument("owner_is_bank_address", {"address": addr})

        self._owner = owner_id
        self._address = addr
        self._custody = custody
        self._events = EventBus(sink if sink is not None else MemoryEventSink())
        self._clock: Clock = clock or unix_now

        self._lock = threading.RLock()
        self._ledgers: Dict[str, ParticipantLedger] = {}
        self._active: Dict[str, bool] = {}
        self._names: Dict[str, str] = {}
        self._total_allocated = 0
        self._halted: Optional[Json] = None

    # --- identity / reads ---

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def address(self) -> str:
        return self._address

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def total_allocated(self) -> int:
        with self._lock:
            return int(self._total_allocated)

    @property
    def halted(self) -> bool:
        return self._halted is not None

    @property
    def halt_reason(self) -> Optional[Json]:
        return dict(self._halted) if self._halted is not None else None

    def custody_balance(self) -> int:
        return int(self._custody.balance())

    def has_participant(self, wallet: str) -> bool:
        return _as_identity(wallet) in self._ledgers

    def ledger_of(self, wallet: str) -> ParticipantLedger:
        return self._lookup(_as_identity(wallet))

    def name_of(self, wallet: str) -> str:
        w = _as_identity(wallet)
        self._lookup(w)
        return self._names[w]

    def is_active(self, wallet: str) -> bool:
        return bool(self._active.get(_as_identity(wallet), False))

    def participants(self) -> List[Json]:
        with self._lock:
            return [
                {
                    "wallet": w,
                    "name": self._names[w],
                    "active": bool(self._active[w]),
                    "ledger": self._ledgers[w].address,
                }
                for w in sorted(self._ledgers.keys())
            ]

    def _lookup(self, wallet: str) -> ParticipantLedger:
        ledger = self._ledgers.get(wallet)
        if ledger is None:
            raise NotFound("participant_not_found", {"wallet": wallet})
        return ledger

    # --- bookkeeping helpers ---

    @contextmanager
    def _operation(self, op: str, **fields: Any) -> Iterator[None]:
        try:
            yield
        except LedgerError as e:
            metrics.record_outcome(op, e.code)
            level = logging.ERROR if e.fatal and self.halted else logging.INFO
            log_event(_LOG, f"{op}_rejected", level=level, code=e.code, reason=e.reason, **fields)
            raise
        metrics.record_outcome(op)
        log_event(_LOG, op, **fields)
        self._update_gauges()

    def _update_gauges(self) -> None:
        if not metrics.metrics_enabled():
            return
        try:
            custody = self.custody_balance()
        except Exception:
            custody = -1
        metrics.set_gauge("total_allocated", self.total_allocated)
        metrics.set_gauge("custody_balance", custody)
        metrics.set_gauge("participants", len(self._ledgers))

    def _require_running(self) -> None:
        if self._halted is not None:
            raise InvariantViolation("allocator_halted", dict(self._halted))

    def _halt(self, op: str, custody: int) -> InvariantViolation:
        self._halted = {"op": op, "custody_balance": int(custody), "total_allocated": int(self._total_allocated)}
        log_event(_LOG, "allocator_halted", level=logging.ERROR, **self._halted)
        return InvariantViolation("coverage_broken", dict(self._halted))

    def _assert_coverage(self, op: str) -> None:
        custody = self.custody_balance()
        if custody < self._total_allocated:
            raise self._halt(op, custody)

    # --- owner operations ---

    def create_participant(self, caller: str, wallet: str, name: str) -> ParticipantLedger:
        w = _as_identity(wallet)
        with self._operation("create_participant", wallet=w):
            with self._lock, self._events.transaction():
                self._require_running()
                require_owner(caller, self._owner)
                if not w:
                    raise InvalidArgument("null_wallet", {})
                if not isinstance(name, str):
                    raise InvalidArgument("name_not_string", {"wallet": w})
                if w in self._ledgers:
                    raise AlreadyExists("participant_exists", {"wallet": w, "ledger": self._ledgers[w].address})
                if w == self._address:
                    raise InvalidArgument("reserved_identity", {"wallet": w})

                ledger = ParticipantLedger(bank=self, wallet=w, events=self._events, clock=self._clock)
                self._ledgers[w] = ledger
                self._active[w] = True
                self._names[w] = name
                self._events.emit(ParticipantCreated(wallet=w, ledger=ledger.address, name=name))
                return ledger

    def deactivate(self, caller: str, wallet: str) -> None:
        w = _as_identity(wallet)
        with self._operation("deactivate", wallet=w):
            require_owner(caller, self._owner)
            ledger = self._lookup(w)
            with ledger.lock, self._lock, self._events.transaction():
                self._require_running()
                if not self._active[w]:
                    raise AlreadyInactive("participant_inactive", {"wallet": w})
                ledger.mark_deactivated(self._address)
                self._active[w] = False
                self._events.emit(ParticipantDeactivated(wallet=w))

    def reactivate(self, caller: str, wallet: str) -> None:
        # deactivated_at on the ledger is left as-is: it records that the
        # participant was deactivated at least once.
        w = _as_identity(wallet)
        with self._operation("reactivate", wallet=w):
            require_owner(caller, self._owner)
            ledger = self._lookup(w)
            with ledger.lock, self._lock, self._events.transaction():
                self._require_running()
                if self._active[w]:
                    raise AlreadyActive("participant_active", {"wallet": w})
                self._active[w] = True
                self._events.emit(ParticipantReactivated(wallet=w))

    def top_up(self, caller: str, amount: int) -> None:
        with self._operation("top_up", amount=amount if isinstance(amount, int) else None):
            with self._lock:
                with self._events.transaction():
                    self._require_running()
                    require_owner(caller, self._owner)
                    amt = as_amount(amount)
                    if amt < 0:
                        raise InvalidArgument("amount_negative", {"amount": amt})
                    try:
                        self._custody.receive(amt)
                    except Exception as e:
                        raise TransferFailed("custody_receive_failed", {"amount": amt, "error": str(e)}) from e
                    self._events.emit(ToppedUp(amount=amt))
                self._assert_coverage("top_up")

    def withdraw(self, caller: str, amount: int, to: str) -> None:
        dest = _as_identity(to)
        with self._operation("withdraw", to=dest, amount=amount if isinstance(amount, int) else None):
            with self._lock:
                with self._events.transaction():
                    self._require_running()
                    require_owner(caller, self._owner)
                    amt = _positive(amount)
                    if not dest:
                        raise InvalidArgument("null_destination", {})

                    custody = self.custody_balance()
                    if custody - amt < self._total_allocated:
                        # Refused up front: the invariant still holds, so no halt.
                        raise InvariantViolation(
                            "withdraw_would_uncover_allocations",
                            {"amount": amt, "custody_balance": custody, "total_allocated": self._total_allocated},
                        )

                    try:
                        ok = bool(self._custody.transfer(dest, amt))
                    except Exception as e:
                        raise TransferFailed("transfer_raised", {"to": dest, "amount": amt, "error": str(e)}) from e
                    if not ok:
                        raise TransferFailed("transfer_rejected", {"to": dest, "amount": amt})

                    self._events.emit(Withdrawn(to=dest, amount=amt))
                self._assert_coverage("withdraw")

    # --- open operations ---

    def deposit_for(self, wallet: str, amount: int, incoming_funds: int) -> None:
        """Credit `amount` to `wallet`'s available balance, backed by `incoming_funds` of value.

        Anyone may deposit for a participant. The attached value must equal
        the amount credited.
        """
        w = _as_identity(wallet)
        with self._operation("deposit_for", wallet=w, amount=amount if isinstance(amount, int) else None):
            amt = _positive(amount)
            incoming = as_amount(incoming_funds, field="incoming_funds")
            if incoming != amt:
                raise InvalidArgument("incoming_funds_mismatch", {"amount": amt, "incoming_funds": incoming})
            ledger = self._lookup(w)

            with ledger.lock, self._lock:
                with self._events.transaction():
                    self._require_running()
                    if not self._active[w]:
                        raise Inactive("participant_inactive", {"wallet": w})

                    # Validate every width before anything moves.
                    total = checked_add(self._total_allocated, amt, POOL_BITS, field="total_allocated")
                    snap = ledger.read_ledger()
                    checked_add(snap.available, amt, BALANCE_BITS, field="available")
                    checked_add(snap.total_deposited, amt, COUNTER_BITS, field="total_deposited")
                    now = require_width(int(self._clock()), TIMESTAMP_BITS, field="timestamp")

                    custody = self.custody_balance()
                    if custody + incoming < total:
                        raise self._halt("deposit_for", custody)

                    try:
                        self._custody.receive(incoming)
                    except Exception as e:
                        raise TransferFailed("custody_receive_failed", {"amount": incoming, "error": str(e)}) from e

                    ledger.apply_deposit(self._address, amt, at=now)
                    self._total_allocated = total
                    self._events.emit(Deposited(wallet=w, amount=amt))
                self._assert_coverage("deposit_for")

    # --- relays (only the participant's own ledger may call these) ---

    def relay_stake(self, requester: str, wallet: str, amount: int) -> None:
        w = _as_identity(wallet)
        with self._operation("relay_stake", wallet=w, amount=amount if isinstance(amount, int) else None):
            ledger = self._lookup(w)
            with ledger.lock, self._events.transaction():
                self._require_running()
                self._check_relay(requester, ledger, amount)
                amt = int(amount)
                ledger.apply_stake(self._address, amt)
                self._events.emit(Staked(wallet=w, amount=amt))

    def relay_unstake(self, requester: str, wallet: str, amount: int) -> None:
        w = _as_identity(wallet)
        with self._operation("relay_unstake", wallet=w, amount=amount if isinstance(amount, int) else None):
            ledger = self._lookup(w)
            with ledger.lock, self._events.transaction():
                self._require_running()
                self._check_relay(requester, ledger, amount)
                amt = int(amount)
                ledger.apply_unstake(self._address, amt)
                self._events.emit(Unstaked(wallet=w, amount=amt))

    def _check_relay(self, requester: Any, ledger: Ledger, amount: Any) -> None:
        if not self._active[ledger.wallet]:
            raise Inactive("participant_inactive", {"wallet": ledger.wallet})
        _positive(amount)
        if _as_identity(requester) != ledger.address:
            raise Unauthorized(
                "ledger_requester_required",
                {"requester": _as_identity(requester), "wallet": ledger.wallet},
            )

    # --- invariants ---

    @contextmanager
    def _all_locked(self) -> Iterator[List[ParticipantLedger]]:
        """Hold every ledger lock, then the pool lock, over a registry that cannot change.

        The wallet list has to be read before the ledger locks are taken, so a
        registration can land while we wait on them. Retry until the list read
        under the pool lock matches the one we locked.
        """
        while True:
            with self._lock:
                wallets = sorted(self._ledgers.keys())
            with ExitStack() as stack:
                ledgers = [self._ledgers[w] for w in wallets]
                for ledger in ledgers:
                    stack.enter_context(ledger.lock)
                stack.enter_context(self._lock)
                if sorted(self._ledgers.keys()) == wallets:
                    yield ledgers
                    return

    def check_invariants(self) -> Json:
        """Recompute both ledger invariants under every lock (participant locks first)."""
        with self._all_locked() as ledgers:
            participant_sum = sum(lg.read_ledger().allocated for lg in ledgers)
            custody = self.custody_balance()
            return {
                "total_allocated": int(self._total_allocated),
                "participant_sum": int(participant_sum),
                "custody_balance": int(custody),
                "sum_ok": participant_sum == self._total_allocated,
                "coverage_ok": custody >= self._total_allocated,
                "ok": participant_sum == self._total_allocated and custody >= self._total_allocated,
                "halted": self.halted,
            }

    # --- persisted layout ---

    def export_state(self) -> Json:
        with self._all_locked() as ledgers:
            return {
                "version": STATE_VERSION,
                "owner": self._owner,
                "address": self._address,
                "total_allocated": int(self._total_allocated),
                "participants": {
                    lg.wallet: {
                        "name": self._names[lg.wallet],
                        "active": bool(self._active[lg.wallet]),
                        "ledger": lg.read_ledger().to_json(),
                    }
                    for lg in ledgers
                },
            }

    @classmethod
    def from_state(
        cls,
        state: Json,
        *,
        custody: Custody,
        sink: Optional[EventSink] = None,
        clock: Optional[Clock] = None,
    ) -> "Allocator":
        """Rebuild an allocator from `export_state()` output. Refuses inconsistent state."""
        if not isinstance(state, dict):
            raise InvalidArgument("state_not_object", {})
        version = state.get("version")
        if version != STATE_VERSION:
            raise InvalidArgument("unsupported_state_version", {"version": version})

        alloc = cls(
            owner=str(state.get("owner") or ""),
            custody=custody,
            sink=sink,
            address=str(state.get("address") or DEFAULT_BANK_ADDRESS),
            clock=clock,
        )

        participants = state.get("participants")
        if not isinstance(participants, dict):
            participants = {}

        participant_sum = 0
        for wallet, rec in participants.items():
            w = _as_identity(wallet)
            if not w or not isinstance(rec, dict):
                raise InvalidArgument("bad_participant_record", {"wallet": str(wallet)})
            snap = LedgerSnapshot.from_json(rec.get("ledger") if isinstance(rec.get("ledger"), dict) else {})
            expected = derive_ledger_address(alloc.address, w)
            if snap.wallet != w or snap.bank != alloc.address or snap.address != expected:
                raise InvalidArgument("ledger_binding_mismatch", {"wallet": w, "ledger": snap.address})

            alloc._ledgers[w] = ParticipantLedger(bank=alloc, wallet=w, events=alloc._events, clock=alloc._clock, snapshot=snap)
            active = rec.get("active", False)
            if not isinstance(active, bool):
                raise InvalidArgument("bad_active_flag", {"wallet": w, "active": repr(active)})
            alloc._active[w] = active
            alloc._names[w] = str(rec.get("name") or "")
            participant_sum += snap.allocated

        total = state.get("total_allocated", 0)
        if isinstance(total, bool) or not isinstance(total, int):
            raise InvalidArgument("bad_total_allocated", {"total_allocated": repr(total)})
        total = require_width(total, POOL_BITS, field="total_allocated")
        if total != participant_sum:
            raise InvariantViolation("participant_sum_mismatch", {"total_allocated": total, "participant_sum": participant_sum})

        alloc._total_allocated = total
        custody_now = alloc.custody_balance()
        if custody_now < total:
            raise InvariantViolation("coverage_broken", {"custody_balance": custody_now, "total_allocated": total})

        log_event(_LOG, "allocator_restored", participants=len(alloc._ledgers), total_allocated=total)
        return alloc
