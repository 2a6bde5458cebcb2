from __future__ import annotations

"""Pydantic request schemas for the admin/participant API.

These exist only for HTTP input validation. Amount range checks (positive,
fits the field width) belong to the allocator, so the schemas accept any
integer and let the ledger report InvalidArgument/Overflow itself.
"""

from pydantic import BaseModel, Field, StrictInt


class CreateParticipantRequest(BaseModel):
    wallet: str = Field(..., description="Participant wallet identity")
    name: str = Field(default="", description="Display name")


class DepositRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount credited to the participant's available balance")
    incoming_funds: StrictInt = Field(..., description="Value attached to the deposit; must equal amount")


class AmountRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount in base units")


class WithdrawRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount in base units")
    to: str = Field(..., description="Destination identity")
