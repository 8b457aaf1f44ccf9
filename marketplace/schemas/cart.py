# marketplace/schemas/cart.py
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CartAddRequest(BaseModel):
    product_id: int = Field(ge=1)
    variant_id: Optional[int] = Field(default=None, ge=1)
    quantity: int = Field(default=1, ge=1)


class CartUpdateRequest(BaseModel):
    quantity: int = Field(ge=1)


class CartItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    variant_id: Optional[int]
    quantity: int


class CartOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    total_items: int
    total_amount: Decimal
    items: list[CartItemOut] = []
