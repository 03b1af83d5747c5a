# app/models/order.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.enums import OrderStatus, PaymentStatus, PaymentMethod
from app.core.utils import utc_now
from app.database import Base


class Order(Base):
    """
    Local order, tenant-scoped by company_id.

    Rows are created by local business flows, by the importer or by webhooks,
    and are never hard-deleted by sync: a remote delete cancels the order.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    order_number = Column(String(100), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String(32), nullable=False, default=PaymentMethod.CASH.value)
    currency = Column(String(8), nullable=True)

    # Money - total == subtotal + shipping + tax - discount
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    # Customer / address snapshot taken at sync time
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(64), nullable=True)
    customer_address = Column(Text, nullable=True)
    city = Column(String(128), nullable=True)
    governorate = Column(String(128), nullable=True)
    shipping_address = Column(Text, nullable=True)  # JSON text of the remote shipping block
    notes = Column(Text, nullable=True)
    source_type = Column(String(32), nullable=True)  # local, woocommerce, woocommerce_webhook

    # Remote linkage
    external_id = Column(String(64), nullable=True, index=True)
    external_order_key = Column(String(128), nullable=True)
    external_status = Column(String(64), nullable=True)
    external_date_created = Column(DateTime(timezone=True), nullable=True)
    external_url = Column(String(512), nullable=True)
    synced_from_external = Column(Boolean, nullable=False, default=False)
    synced_to_external = Column(Boolean, nullable=False, default=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    # What this engine last wrote to the remote store (echo suppression)
    last_pushed_status = Column(String(64), nullable=True)
    last_pushed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    __table_args__ = (
        UniqueConstraint("company_id", "order_number", name="uq_orders_company_order_number"),
        UniqueConstraint("company_id", "external_id", name="uq_orders_company_external_id"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status='{self.status}', external_id={self.external_id})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Best-effort catalog resolution; null when the SKU / remote id is unknown
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    product_name = Column(String(255), nullable=False)
    product_color = Column(String(100), nullable=True)
    product_size = Column(String(100), nullable=True)
    product_details = Column(String(255), nullable=True)
    product_sku = Column(String(100), nullable=True)
    product_image = Column(String(512), nullable=True)
    external_product_id = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    extraction_source = Column(String(32), nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="selectin")
    variant = relationship("ProductVariant", lazy="selectin")

    def __repr__(self):
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, sku='{self.product_sku}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    old_status = Column(String(32), nullable=True)
    changed_by = Column(String(32), nullable=False, default="system")  # system, user
    user_name = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )
