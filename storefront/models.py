from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, Integer, String, ForeignKey, DateTime,
    Numeric, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from .database import Base
from .state import OrderStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Catalog entry; owned by the catalog admin, settlement only touches `stock`
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)

    order_items = relationship("OrderItem", back_populates="product")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
        CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True)
    transaction_uuid = Column(String(64), nullable=False, unique=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_charge = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)  # what the customer owes; never taken from the gateway
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    esewa_ref_id = Column(String(64), nullable=True)
    needs_attention = Column(Boolean, nullable=False, default=False)
    settlement_error = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan",
        lazy="selectin", order_by="OrderItem.id",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_nonneg"),
        CheckConstraint("status IN ('PENDING', 'COMPLETED', 'FAILED')", name="ck_orders_status"),
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)  # price at the time of checkout

    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_orderitem_quantity_pos"),
        CheckConstraint("unit_price >= 0", name="ck_orderitem_price_nonneg"),
    )
