# src/stakebank/ledger/constants.py
from __future__ import annotations

"""Ledger field widths and identity constants.

Every balance field is an unsigned fixed-width integer. Widths are part of
the persisted format: values never wrap, an addition past the width is an
Overflow error.
"""

# Per-participant balances (available / staked)
BALANCE_BITS: int = 128

# Lifetime audit counters (total_deposited / total_staked)
COUNTER_BITS: int = 128

# Unix-second timestamps (created_at / last_update / deactivated_at)
TIMESTAMP_BITS: int = 64

# Pool-level earmark total
POOL_BITS: int = 256

# Identity that never matches a principal
NULL_IDENTITY: str = ""

# Default identity of the allocator itself
DEFAULT_BANK_ADDRESS: str = "bank"

# Prefix of derived participant-ledger addresses
LEDGER_ADDRESS_PREFIX: str = "sub:"
