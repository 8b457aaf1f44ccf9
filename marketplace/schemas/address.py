# marketplace/schemas/address.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.address import AddressType


class AddressCreate(BaseModel):
    type: AddressType = AddressType.home
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: str = Field(min_length=1, max_length=15)
    address_line_1: str = Field(min_length=1, max_length=200)
    address_line_2: Optional[str] = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = "India"
    is_default: bool = False


class AddressOut(AddressCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int


class AddressUpdate(BaseModel):
    type: Optional[AddressType] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, min_length=1, max_length=15)
    address_line_1: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address_line_2: Optional[str] = Field(default=None, max_length=200)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, min_length=1, max_length=100)
    postal_code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    country: Optional[str] = None
    is_default: Optional[bool] = None
