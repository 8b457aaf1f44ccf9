# marketplace/schemas/returns.py
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.return_request import ReturnStatus


class ReturnCreate(BaseModel):
    order_id: int = Field(ge=1)
    product_id: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)


class ReturnStatusUpdate(BaseModel):
    status: ReturnStatus
    admin_comment: Optional[str] = None


class ReturnOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: Optional[int]
    reason: str
    description: Optional[str]
    quantity: int
    refund_amount: Decimal
    status: ReturnStatus
    admin_comment: Optional[str] = None
    created_at: Optional[datetime] = None
