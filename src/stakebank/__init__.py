"""StakeBank: a two-tier custodial ledger (pooled allocator + per-participant sub-ledgers)."""

from __future__ import annotations

__version__ = "0.1.0"
