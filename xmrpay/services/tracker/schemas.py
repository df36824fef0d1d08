from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator

from xmrpay.services.wallet_rpc.models import xmr_to_piconero


class AllocateRequest(BaseModel):
    """Payload accepted by `POST /payments`; give at most one of the two amounts."""

    amount_requested: int | None = Field(default=None, gt=0)
    amount_xmr: Decimal | None = Field(default=None, gt=0)
    extra: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _one_amount(self) -> "AllocateRequest":
        if self.amount_requested is not None and self.amount_xmr is not None:
            raise ValueError("give either amount_requested or amount_xmr, not both")
        return self

    def piconero(self) -> int | None:
        if self.amount_xmr is not None:
            return xmr_to_piconero(self.amount_xmr)
        return self.amount_requested


class AllocateResponse(BaseModel):
    payment_id: str
    address: str


class ExtraUpdate(BaseModel):
    extra: dict[str, Any] | None = None
