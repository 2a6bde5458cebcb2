# src/stakebank/runtime/custody.py
from __future__ import annotations

import threading
from typing import Dict, Protocol


class Custody(Protocol):
    """External fund holder backing the allocator's pool."""

    def balance(self) -> int: ...

    def receive(self, amount: int) -> None: ...

    def transfer(self, to: str, amount: int) -> bool: ...


class InMemoryCustody:
    """
    Custody stand-in for embedded hosts, the HTTP service and tests.

    - `transfer()` returns False (and moves nothing) when `fail_transfers` is
      set or the balance cannot cover the amount.
    - `sent` records cumulative amounts per recipient.
    """

    def __init__(self, initial_balance: int = 0, *, fail_transfers: bool = False) -> None:
        if int(initial_balance) < 0:
            raise ValueError("initial_balance must be >= 0")
        self._lock = threading.Lock()
        self._balance = int(initial_balance)
        self.fail_transfers = bool(fail_transfers)
        self.sent: Dict[str, int] = {}

    def balance(self) -> int:
        with self._lock:
            return int(self._balance)

    def receive(self, amount: int) -> None:
        a = int(amount)
        if a < 0:
            raise ValueError("amount must be >= 0")
        with self._lock:
            self._balance += a

    def transfer(self, to: str, amount: int) -> bool:
        a = int(amount)
        with self._lock:
            if self.fail_transfers or a < 0 or a > self._balance:
                return False
            self._balance -= a
            self.sent[to] = int(self.sent.get(to, 0)) + a
            return True

    def leak(self, amount: int) -> None:
        """Remove funds behind the allocator's back (simulates an external loss)."""
        with self._lock:
            self._balance = max(0, self._balance - int(amount))
