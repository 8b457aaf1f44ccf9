# marketplace/models/return_request.py
# ReturnRequest model: a buyer's request to return a delivered order line.
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from marketplace.db.base import Base
import enum


class ReturnStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


class ReturnRequest(Base):
    __tablename__ = "return_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    reason = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(ReturnStatus), nullable=False, default=ReturnStatus.pending)
    admin_comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order")
    product = relationship("Product")
