"""Physical units of stock.

An ``Instance`` is one trackable unit of a SKU. ``tag_id`` is its owner
reference: ``None`` means the unit is available, anything else names the one
active tag holding it.
"""

from __future__ import annotations

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from ..db.session import Base


class Instance(Base):
    __tablename__ = "instances"
    __table_args__ = (
        Index("ix_instances_sku_tag", "sku_id", "tag_id"),
        Index("ix_instances_sku_acquired", "sku_id", "acquisition_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    acquisition_date = Column(Text, nullable=False)
    acquisition_cost = Column(Float, nullable=False, default=0.0)
    location = Column(Text, nullable=True)
    supplier = Column(Text, nullable=True)
    reference_number = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    added_by = Column(Text, nullable=False)
    tag_id = Column(Integer, ForeignKey("tags.id"), nullable=True, index=True)
    # Bumped on every owner-reference write so concurrent writers can be detected.
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    sku = relationship("Sku", lazy="joined")
    tag = relationship("Tag", lazy="select")

    @property
    def is_available(self) -> bool:
        return self.tag_id is None

    @property
    def sku_code(self) -> str | None:
        return self.sku.code if self.sku else None


__all__ = ["Instance"]
