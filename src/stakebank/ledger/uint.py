# src/stakebank/ledger/uint.py
from __future__ import annotations

from typing import Any

from stakebank.runtime.errors import InvalidArgument, Overflow


def max_value(bits: int) -> int:
    return (1 << int(bits)) - 1


def as_amount(v: Any, *, field: str = "amount") -> int:
    """Coerce an amount to int without accepting bools, floats or strings with junk."""
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidArgument("amount_not_integer", {"field": field, "value": repr(v)})
    return int(v)


def require_width(value: int, bits: int, *, field: str) -> int:
    v = int(value)
    if v < 0:
        raise InvalidArgument("negative_value", {"field": field, "value": v})
    if v > max_value(bits):
        raise Overflow("width_exceeded", {"field": field, "value": v, "bits": int(bits)})
    return v


def checked_add(current: int, delta: int, bits: int, *, field: str) -> int:
    """Return current + delta, or raise Overflow if the result does not fit `bits`."""
    out = int(current) + int(delta)
    if out > max_value(bits):
        raise Overflow(
            "addition_overflow",
            {"field": field, "current": int(current), "delta": int(delta), "bits": int(bits)},
        )
    return out


def checked_sub(current: int, delta: int, *, field: str) -> int:
    # Callers check balances first; an underflow here is a bookkeeping bug.
    out = int(current) - int(delta)
    if out < 0:
        raise Overflow("subtraction_underflow", {"field": field, "current": int(current), "delta": int(delta)})
    return out
