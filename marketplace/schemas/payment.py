# marketplace/schemas/payment.py
from typing import Optional

from pydantic import BaseModel, Field


class PaymentLinkRequest(BaseModel):
    order_id: int = Field(ge=1)
    return_url: Optional[str] = None
