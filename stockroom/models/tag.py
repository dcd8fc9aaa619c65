"""Allocation records and their line items."""

from __future__ import annotations

from sqlalchemy import JSON, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from ..core.domain_types import LOAN_TAG_TYPES, TagStatus, TagType
from ..db.session import Base
from ..services.timecalc import utcnow


class Tag(Base):
    """A reservation, loan, consumption claim or condition flag.

    ``condition_class`` is only set on tags created by the condition router
    (``needs_maintenance`` / ``broken``); ordinary allocations leave it empty.
    """

    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    customer_name = Column(Text, nullable=False, index=True)
    tag_type = Column(Text, nullable=False, default=TagType.RESERVED.value, index=True)
    condition_class = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=TagStatus.ACTIVE.value, index=True)
    project_name = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    due_date = Column(Text, nullable=True)
    created_by = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False)
    last_updated_by = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)
    fulfilled_by = Column(Text, nullable=True)
    fulfilled_at = Column(Text, nullable=True)
    cancelled_by = Column(Text, nullable=True)
    cancelled_at = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    # Bumped by every transition; a flush from a stale read fails instead of
    # overwriting the line lists another request already changed.
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    lines = relationship(
        "TagLine",
        back_populates="tag",
        cascade="all, delete-orphan",
        order_by="TagLine.id",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == TagStatus.ACTIVE.value

    @property
    def is_loan(self) -> bool:
        return self.tag_type in {t.value for t in LOAN_TAG_TYPES}

    @property
    def is_condition_tag(self) -> bool:
        return self.condition_class is not None or self.tag_type == TagType.BROKEN.value

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity or 0 for line in self.lines)

    @property
    def remaining_quantity(self) -> int:
        return sum(line.remaining_quantity or 0 for line in self.lines)

    @property
    def bound_instance_ids(self) -> list[int]:
        ids: list[int] = []
        for line in self.lines:
            ids.extend(line.instance_ids or [])
        return ids

    @classmethod
    def open(cls, *, customer_name: str, tag_type: TagType, actor: str, **fields) -> "Tag":
        now = utcnow()
        return cls(
            customer_name=customer_name,
            tag_type=tag_type.value,
            condition_class=fields.get("condition_class"),
            status=TagStatus.ACTIVE.value,
            project_name=fields.get("project_name") or None,
            notes=fields.get("notes") or None,
            due_date=fields.get("due_date") or None,
            created_by=actor,
            created_at=now,
            last_updated_by=actor,
            updated_at=now,
            version=1,
        )

    def line_for_instance(self, instance_id: int) -> "TagLine | None":
        for line in self.lines:
            if instance_id in (line.instance_ids or []):
                return line
        return None

    def detach(self, line: "TagLine", instance_ids, *, drop_empty: bool = False) -> None:
        """Remove instances from a line and keep ``remaining_quantity`` in step."""

        removed = set(instance_ids)
        kept = [instance_id for instance_id in (line.instance_ids or []) if instance_id not in removed]
        line.instance_ids = kept
        line.remaining_quantity = len(kept)
        if drop_empty and not kept:
            self.lines.remove(line)

    def clear_lines(self) -> None:
        for line in self.lines:
            line.instance_ids = []
            line.remaining_quantity = 0

    def touch(self, actor: str) -> None:
        self.version = (self.version or 0) + 1
        self.last_updated_by = actor
        self.updated_at = utcnow()

    def mark_fulfilled(self, actor: str) -> None:
        self.touch(actor)
        self.status = TagStatus.FULFILLED.value
        self.fulfilled_by = actor
        self.fulfilled_at = self.updated_at

    def mark_cancelled(self, actor: str, reason: str | None = None) -> None:
        self.touch(actor)
        self.status = TagStatus.CANCELLED.value
        self.cancelled_by = actor
        self.cancelled_at = self.updated_at
        self.cancel_reason = reason or None
        if reason:
            self.notes = f"{self.notes}\nCancelled: {reason}" if self.notes else f"Cancelled: {reason}"

    def settle_if_empty(self, actor: str) -> bool:
        """Auto-fulfil an active tag once nothing remains bound to it."""

        if self.is_active and self.remaining_quantity == 0:
            self.mark_fulfilled(actor)
            return True
        return False


class TagLine(Base):
    __tablename__ = "tag_lines"

    id = Column(Integer, primary_key=True, index=True)
    tag_id = Column(Integer, ForeignKey("tags.id"), nullable=False, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    selection_method = Column(Text, nullable=False, default="fifo")
    # Plain JSON list; always reassigned, never mutated in place.
    instance_ids = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    tag = relationship("Tag", back_populates="lines")
    sku = relationship("Sku", lazy="joined")

    @property
    def sku_code(self) -> str | None:
        return self.sku.code if self.sku else None


__all__ = ["Tag", "TagLine"]
