# marketplace/models/product.py
# Catalog models: Product with its own stock counter and ProductVariant
# (size/color) with an independent stock counter and price adjustment.
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, Text, Enum,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
from marketplace.db.base import Base
import enum


class ProductStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    out_of_stock = "out_of_stock"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
        CheckConstraint("total_sales >= 0", name="sales_non_negative"),
        CheckConstraint(
            "discount_price IS NULL OR discount_price < price", name="discount_below_price"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)
    sku = Column(String(100), unique=True, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), nullable=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    total_sales = Column(Integer, nullable=False, default=0)
    status = Column(Enum(ProductStatus), nullable=False, default=ProductStatus.active)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    seller = relationship("User")
    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )

    @property
    def effective_price(self) -> Decimal:
        """Discount price when one is set, otherwise the list price."""
        return Decimal(self.discount_price if self.discount_price is not None else self.price)


class ProductVariant(Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        UniqueConstraint("product_id", "size", "color", name="uq_variant_dimensions"),
        CheckConstraint("stock_quantity >= 0", name="stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    size = Column(String(10), nullable=False)
    color = Column(String(50), nullable=False)
    color_code = Column(String(7), nullable=True)
    sku = Column(String(100), unique=True, nullable=False)
    # Price difference from the base product price
    price_adjustment = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    product = relationship("Product", back_populates="variants")

    def details(self) -> dict:
        return {"size": self.size, "color": self.color, "color_code": self.color_code}
