from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from stakebank.ledger.constants import BALANCE_BITS, COUNTER_BITS, TIMESTAMP_BITS
from stakebank.ledger.uint import as_amount, require_width

Json = Dict[str, Any]

# Persisted field name -> bit width. This is the logical layout of a
# participant ledger record.
LEDGER_FIELDS: Dict[str, int] = {
    "available": BALANCE_BITS,
    "staked": BALANCE_BITS,
    "total_deposited": COUNTER_BITS,
    "total_staked": COUNTER_BITS,
    "created_at": TIMESTAMP_BITS,
    "last_update": TIMESTAMP_BITS,
    "deactivated_at": TIMESTAMP_BITS,
}


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """
    Immutable copy of one participant ledger's balance record.

    `deactivated_at == 0` means the ledger was never deactivated. Reactivation
    does not reset it, so a non-zero value means "deactivated at least once".
    """

    wallet: str
    bank: str
    address: str

    available: int = 0
    staked: int = 0
    total_deposited: int = 0
    total_staked: int = 0

    created_at: int = 0
    last_update: int = 0
    deactivated_at: int = 0

    @property
    def allocated(self) -> int:
        return int(self.available) + int(self.staked)

    @property
    def ever_deactivated(self) -> bool:
        return int(self.deactivated_at) != 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, obj: Json) -> "LedgerSnapshot":
        values = {}
        for name, bits in LEDGER_FIELDS.items():
            values[name] = require_width(as_amount(obj.get(name, 0), field=name), bits, field=name)
        return cls(
            wallet=str(obj.get("wallet") or "").strip(),
            bank=str(obj.get("bank") or "").strip(),
            address=str(obj.get("address") or "").strip(),
            **values,
        )
