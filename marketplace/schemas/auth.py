# marketplace/schemas/auth.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from marketplace.models.user import RoleEnum


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=72)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=15)
    role: RoleEnum = RoleEnum.buyer
    company_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("role")
    @classmethod
    def no_self_service_admins(cls, value: RoleEnum) -> RoleEnum:
        if value == RoleEnum.admin:
            raise ValueError("Admin accounts cannot be self-registered")
        return value


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    first_name: str
    last_name: str
    role: RoleEnum
