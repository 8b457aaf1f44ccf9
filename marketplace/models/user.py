# marketplace/models/user.py
# User model: email, hashed_password, role, seller company details.
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from datetime import datetime
from marketplace.db.base import Base
import enum


class RoleEnum(str, enum.Enum):
    buyer = "buyer"
    seller = "seller"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(15), nullable=True)
    role = Column(Enum(RoleEnum), nullable=False, default=RoleEnum.buyer)
    company_name = Column(String(200), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
