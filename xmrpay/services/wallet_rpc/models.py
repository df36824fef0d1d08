"""Typed views of wallet RPC results consumed by the tracker."""

import re
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PICONERO_PER_XMR = 10**12
PAYMENT_ID_PATTERN = re.compile(r"^[0-9a-f]{16}$")


def normalize_payment_id(value: str) -> str:
    """Return the canonical lowercase hex form of a short payment id."""

    if not isinstance(value, str):
        raise ValueError("payment id must be a string")
    candidate = value.strip().lower()
    if not PAYMENT_ID_PATTERN.match(candidate):
        raise ValueError(f"invalid payment id: {value!r}")
    return candidate


def xmr_to_piconero(amount: Decimal | str | int) -> int:
    """Convert a decimal XMR amount to integer piconero, rejecting sub-piconero precision."""

    value = Decimal(str(amount)) * PICONERO_PER_XMR
    if value != value.to_integral_value():
        raise ValueError(f"amount {amount} has more precision than one piconero")
    return int(value)


def piconero_to_xmr(amount: int) -> Decimal:
    return Decimal(amount) / PICONERO_PER_XMR


class IntegratedAddress(BaseModel):
    """Fresh integrated address and the short payment id it embeds."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(min_length=1)
    payment_id: str

    @field_validator("payment_id")
    @classmethod
    def _canonical_payment_id(cls, value: str) -> str:
        return normalize_payment_id(value)


class ObservedTransfer(BaseModel):
    """One incoming transfer as reported by `get_transfers`."""

    model_config = ConfigDict(frozen=True)

    payment_id: str
    amount: int = Field(ge=0)
    confirmations: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    txid: str = ""
    in_pool: bool = False
