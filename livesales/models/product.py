"""Product catalog snapshot supplied with a session."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class Price(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount_micros: int = Field(..., ge=0)
    currency_code: str = Field(default="USD", min_length=3, max_length=3)

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_micros) / Decimal(1_000_000)

    def __str__(self) -> str:
        return f"${self.amount.normalize():f} {self.currency_code}"


class Product(BaseModel):
    """Immutable product snapshot used for classification and matching."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    price: Price
    purchase_link: str = ""
