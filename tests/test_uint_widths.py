# tests/test_uint_widths.py
from __future__ import annotations

import pytest

from stakebank.ledger.constants import BALANCE_BITS, TIMESTAMP_BITS
from stakebank.ledger.uint import as_amount, checked_add, checked_sub, max_value, require_width
from stakebank.runtime.errors import InvalidArgument, Overflow


def test_checked_add_at_the_edge_of_the_width() -> None:
    top = max_value(BALANCE_BITS)
    assert checked_add(top - 5, 5, BALANCE_BITS, field="available") == top

    with pytest.raises(Overflow) as ei:
        checked_add(top, 1, BALANCE_BITS, field="available")
    assert ei.value.details["field"] == "available"
    assert ei.value.details["bits"] == BALANCE_BITS


def test_checked_sub_never_goes_negative() -> None:
    assert checked_sub(10, 10, field="staked") == 0
    with pytest.raises(Overflow):
        checked_sub(3, 4, field="staked")


def test_require_width_rejects_negative_and_too_wide() -> None:
    assert require_width(0, TIMESTAMP_BITS, field="created_at") == 0
    with pytest.raises(InvalidArgument):
        require_width(-1, TIMESTAMP_BITS, field="created_at")
    with pytest.raises(Overflow):
        require_width(1 << TIMESTAMP_BITS, TIMESTAMP_BITS, field="created_at")


@pytest.mark.parametrize("bad", [True, 1.5, "10", None])
def test_as_amount_only_accepts_plain_ints(bad) -> None:
    with pytest.raises(InvalidArgument):
        as_amount(bad)


def test_as_amount_passes_ints_through() -> None:
    assert as_amount(0) == 0
    assert as_amount(-7) == -7
