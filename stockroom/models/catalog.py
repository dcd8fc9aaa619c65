"""Catalog tables read by the allocation engine.

Categories and SKUs are maintained by the catalog collaborator; the engine
only needs enough of them to resolve bundles, lendability and the
product/tool split.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.domain_types import CategoryType, SkuStatus
from ..db.session import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    type = Column(Text, nullable=False, default=CategoryType.PRODUCT.value)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(Text, nullable=False)

    @property
    def category_type(self) -> CategoryType:
        return CategoryType(self.type)


class Sku(Base):
    __tablename__ = "skus"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(Text, nullable=False, unique=True, index=True)
    name = Column(Text, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    unit_cost = Column(Float, nullable=False, default=0.0)
    is_bundle = Column(Boolean, nullable=False, default=False)
    is_lendable = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default=SkuStatus.ACTIVE.value)
    created_at = Column(Text, nullable=False)

    category = relationship("Category", lazy="joined")
    bundle_items = relationship(
        "BundleItem",
        foreign_keys="BundleItem.bundle_sku_id",
        back_populates="bundle",
        cascade="all, delete-orphan",
        order_by="BundleItem.id",
    )

    @property
    def category_type(self) -> CategoryType | None:
        return self.category.category_type if self.category else None

    @property
    def is_discontinued(self) -> bool:
        return self.status == SkuStatus.DISCONTINUED.value


class BundleItem(Base):
    """One component row of a bundle SKU: ``quantity`` units per bundle."""

    __tablename__ = "bundle_items"
    __table_args__ = (UniqueConstraint("bundle_sku_id", "component_sku_id", name="uq_bundle_component"),)

    id = Column(Integer, primary_key=True, index=True)
    bundle_sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    component_sku_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)

    bundle = relationship("Sku", foreign_keys=[bundle_sku_id], back_populates="bundle_items")


__all__ = ["BundleItem", "Category", "Sku"]
