# src/stakebank/runtime/participant.py
from __future__ import annotations

import hashlib
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Protocol

from stakebank.ledger.constants import BALANCE_BITS, COUNTER_BITS, LEDGER_ADDRESS_PREFIX, TIMESTAMP_BITS
from stakebank.ledger.state import LedgerSnapshot
from stakebank.ledger.uint import as_amount, checked_add, checked_sub, require_width
from stakebank.logging_utils import log_event
from stakebank.runtime import metrics
from stakebank.runtime.access import require_bank_caller, require_wallet_owner
from stakebank.runtime.errors import InsufficientBalance, InvalidArgument, LedgerError
from stakebank.runtime.events import (
    Deactivated,
    EventBus,
    LedgerUpdated,
    StakeRequested,
    UnstakeRequested,
)

Clock = Callable[[], int]

_LOG = logging.getLogger("stakebank.ledger")


def unix_now() -> int:
    return int(time.time())


def derive_ledger_address(bank: str, wallet: str) -> str:
    """Deterministic ledger identity for (bank, wallet)."""
    h = hashlib.sha256(f"{bank}\x00{wallet}".encode("utf-8")).hexdigest()
    return f"{LEDGER_ADDRESS_PREFIX}{h[:40]}"


@contextmanager
def _tracked(op: str, **fields: Any) -> Iterator[None]:
    try:
        yield
    except LedgerError as e:
        metrics.record_outcome(op, e.code)
        level = logging.ERROR if e.fatal else logging.INFO
        log_event(_LOG, f"{op}_rejected", level=level, code=e.code, reason=e.reason, **fields)
        raise
    metrics.record_outcome(op)
    log_event(_LOG, op, **fields)


class TrustedAllocator(Protocol):
    """What a participant ledger needs from the allocator it is bound to."""

    @property
    def address(self) -> str: ...

    def relay_stake(self, requester: str, wallet: str, amount: int) -> None: ...

    def relay_unstake(self, requester: str, wallet: str, amount: int) -> None: ...


class ParticipantLedger:
    """
    Per-participant sub-ledger: available vs. staked balance.

    Bound at creation to exactly one allocator (`bank`, the only caller allowed
    to mutate balances) and one wallet (the only principal allowed to request
    stake/unstake). Instances are created by the Allocator, never directly.

    Stake/unstake requests go wallet -> ledger -> allocator -> ledger: the
    allocator enforces activity and authorization, the ledger stays the only
    writer of its balance fields.
    """

    def __init__(
        self,
        *,
        bank: TrustedAllocator,
        wallet: str,
        events: EventBus,
        clock: Optional[Clock] = None,
        snapshot: Optional[LedgerSnapshot] = None,
    ) -> None:
        self._bank = bank
        self._bank_address = str(bank.address)
        self._wallet = str(wallet)
        self._address = derive_ledger_address(self._bank_address, self._wallet)
        self._events = events
        self._clock: Clock = clock or unix_now
        self._lock = threading.RLock()

        if snapshot is None:
            now = self._now()
            snapshot = LedgerSnapshot(
                wallet=self._wallet,
                bank=self._bank_address,
                address=self._address,
                created_at=now,
                last_update=now,
            )

        self._available = int(snapshot.available)
        self._staked = int(snapshot.staked)
        self._total_deposited = int(snapshot.total_deposited)
        self._total_staked = int(snapshot.total_staked)
        self._created_at = int(snapshot.created_at)
        self._last_update = int(snapshot.last_update)
        self._deactivated_at = int(snapshot.deactivated_at)

    # --- identity ---

    @property
    def bank(self) -> str:
        return self._bank_address

    @property
    def wallet(self) -> str:
        return self._wallet

    @property
    def address(self) -> str:
        return self._address

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _now(self) -> int:
        return require_width(int(self._clock()), TIMESTAMP_BITS, field="timestamp")

    def _emit_updated(self) -> None:
        self._events.emit(LedgerUpdated(wallet=self._wallet, available=self._available, staked=self._staked))

    @staticmethod
    def _positive(amount: Any) -> int:
        amt = as_amount(amount)
        if amt <= 0:
            raise InvalidArgument("amount_must_be_positive", {"amount": amt})
        return amt

    # --- wallet-origin requests ---

    def request_stake(self, caller: str, amount: int) -> None:
        with _tracked("request_stake", wallet=self._wallet, amount=amount if isinstance(amount, int) else None):
            with self._lock, self._events.transaction():
                require_wallet_owner(caller, self)
                amt = self._positive(amount)
                now = self._now()
                self._events.emit(StakeRequested(wallet=self._wallet, amount=amt))
                self._bank.relay_stake(self._address, self._wallet, amt)
                self._last_update = now

    def request_unstake(self, caller: str, amount: int) -> None:
        with _tracked("request_unstake", wallet=self._wallet, amount=amount if isinstance(amount, int) else None):
            with self._lock, self._events.transaction():
                require_wallet_owner(caller, self)
                amt = self._positive(amount)
                now = self._now()
                self._events.emit(UnstakeRequested(wallet=self._wallet, amount=amt))
                self._bank.relay_unstake(self._address, self._wallet, amt)
                self._last_update = now

    # --- bank-origin mutations ---

    def apply_deposit(self, caller: str, amount: int, *, at: Optional[int] = None) -> None:
        """Credit `amount` to available. `at` is a timestamp the caller already read and checked."""
        with self._lock, self._events.transaction():
            require_bank_caller(caller, self)
            amt = self._positive(amount)

            available = checked_add(self._available, amt, BALANCE_BITS, field="available")
            total_deposited = checked_add(self._total_deposited, amt, COUNTER_BITS, field="total_deposited")
            now = self._now() if at is None else require_width(as_amount(at, field="at"), TIMESTAMP_BITS, field="timestamp")

            self._available = available
            self._total_deposited = total_deposited
            self._last_update = now
            self._emit_updated()

    def apply_stake(self, caller: str, amount: int) -> None:
        with self._lock, self._events.transaction():
            require_bank_caller(caller, self)
            amt = self._positive(amount)
            if self._available < amt:
                raise InsufficientBalance(
                    "available_below_amount",
                    {"wallet": self._wallet, "available": self._available, "amount": amt},
                )

            available = checked_sub(self._available, amt, field="available")
            staked = checked_add(self._staked, amt, BALANCE_BITS, field="staked")
            total_staked = checked_add(self._total_staked, amt, COUNTER_BITS, field="total_staked")

            self._available = available
            self._staked = staked
            self._total_staked = total_staked
            self._emit_updated()

    def apply_unstake(self, caller: str, amount: int) -> None:
        with self._lock, self._events.transaction():
            require_bank_caller(caller, self)
            amt = self._positive(amount)
            if self._staked < amt:
                raise InsufficientBalance(
                    "staked_below_amount",
                    {"wallet": self._wallet, "staked": self._staked, "amount": amt},
                )

            staked = checked_sub(self._staked, amt, field="staked")
            available = checked_add(self._available, amt, BALANCE_BITS, field="available")

            self._staked = staked
            self._available = available
            self._emit_updated()

    def mark_deactivated(self, caller: str) -> None:
        with self._lock, self._events.transaction():
            require_bank_caller(caller, self)
            now = self._now()
            self._deactivated_at = now
            self._events.emit(Deactivated(wallet=self._wallet, at=now))

    # --- reads ---

    def read_ledger(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                wallet=self._wallet,
                bank=self._bank_address,
                address=self._address,
                available=self._available,
                staked=self._staked,
                total_deposited=self._total_deposited,
                total_staked=self._total_staked,
                created_at=self._created_at,
                last_update=self._last_update,
                deactivated_at=self._deactivated_at,
            )

    def __repr__(self) -> str:  # pragma: no cover
        return f"ParticipantLedger(wallet={self._wallet!r}, address={self._address!r})"
