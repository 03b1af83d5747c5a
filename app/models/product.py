"""
Catalog models used for order line resolution.

The catalog itself is maintained elsewhere; the sync engine only reads these
tables to resolve an order line's SKU or remote product id to a local
product / variant.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.utils import utc_now
from ..database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True, index=True)
    external_id = Column(String(64), nullable=True, index=True)  # remote product id
    price = Column(Numeric(12, 2), nullable=True)
    images = Column(JSON, nullable=True)  # list of image URLs
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
    )

    @property
    def primary_image(self):
        if isinstance(self.images, list) and self.images:
            return self.images[0]
        return None

    def __repr__(self):
        return f"<Product(id={self.id}, sku='{self.sku}', external_id={self.external_id})>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(100), nullable=True, index=True)
    external_variation_id = Column(String(64), nullable=True)
    color = Column(String(100), nullable=True)
    size = Column(String(100), nullable=True)

    product = relationship("Product", back_populates="variants", lazy="selectin")

    def __repr__(self):
        return f"<ProductVariant(id={self.id}, product_id={self.product_id}, sku='{self.sku}')>"
