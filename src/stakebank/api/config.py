from __future__ import annotations

import os
from dataclasses import dataclass

from stakebank.ledger.constants import DEFAULT_BANK_ADDRESS


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class BankConfig:
    owner: str
    bank_address: str
    initial_custody: int
    host: str
    port: int


def load_bank_config() -> BankConfig:
    """
    Read service configuration from STAKEBANK_* environment variables.

    STAKEBANK_OWNER is required: the allocator refuses to start without an
    owner principal.
    """
    owner = (os.getenv("STAKEBANK_OWNER") or "").strip()
    if not owner:
        raise ValueError("STAKEBANK_OWNER must be set")

    initial = _env_int("STAKEBANK_INITIAL_CUSTODY", 0)
    if initial < 0:
        raise ValueError("STAKEBANK_INITIAL_CUSTODY must be >= 0")

    return BankConfig(
        owner=owner,
        bank_address=(os.getenv("STAKEBANK_BANK_ADDRESS") or DEFAULT_BANK_ADDRESS).strip(),
        initial_custody=initial,
        host=(os.getenv("STAKEBANK_API_HOST") or "127.0.0.1").strip(),
        port=_env_int("STAKEBANK_API_PORT", 8080),
    )
