"""Beginner-friendly overview for this module.

WHAT: Per-SKU inventory snapshot rows (total/available/reserved/broken/loaned).
WHEN: Rewritten by the availability calculator right after every mutation.
WHY: Dashboards can read one row instead of scanning instances.
HOW: Nothing in the engine trusts these numbers; they are always a copy of
what ``services.availability.compute_availability`` just derived from the
instance and tag tables.
"""


from __future__ import annotations

from sqlalchemy import Column, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from ..db.session import Base


class InventorySummary(Base):
    __tablename__ = "inventory_summaries"

    sku_id = Column(Integer, ForeignKey("skus.id"), primary_key=True)
    total = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    broken = Column(Integer, nullable=False, default=0)
    loaned = Column(Integer, nullable=False, default=0)
    total_value = Column(Float, nullable=False, default=0.0)
    average_cost = Column(Float, nullable=False, default=0.0)
    updated_at = Column(Text, nullable=False)

    sku = relationship("Sku", lazy="joined")

    @property
    def sku_code(self) -> str | None:
        return self.sku.code if self.sku else None

    @property
    def sku_name(self) -> str | None:
        return self.sku.name if self.sku else None


__all__ = ["InventorySummary"]
