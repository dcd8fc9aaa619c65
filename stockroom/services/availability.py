"""Read-time availability for SKUs.

Counts are derived from the instance table joined to the owning tag on every
call. The cached ``InventorySummary`` rows are refreshed from the same
computation after each mutation, but nothing here ever reads them back.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.domain_types import AVAILABILITY_BUCKETS, CategoryType, TagType
from ..models.catalog import Category, Sku
from ..models.instance import Instance
from ..models.inventory import InventorySummary
from ..models.tag import Tag
from .timecalc import utcnow


@dataclass
class Availability:
    sku_id: int
    total: int = 0
    available: int = 0
    reserved: int = 0
    broken: int = 0
    loaned: int = 0
    total_value: float = 0.0

    @property
    def average_cost(self) -> float:
        return self.total_value / self.total if self.total else 0.0

    @property
    def is_balanced(self) -> bool:
        return self.available + self.reserved + self.broken + self.loaned == self.total

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["average_cost"] = self.average_cost
        return data


def _bucket_for(tag_type: str | None) -> str:
    try:
        return AVAILABILITY_BUCKETS[TagType(tag_type)]
    except (KeyError, ValueError):
        # Unknown legacy types still hold the unit; keep it out of ``available``.
        return "reserved"


def compute_availability_many(db: Session, sku_ids: Iterable[int]) -> dict[int, Availability]:
    ids = sorted(set(sku_ids))
    result = {sku_id: Availability(sku_id=sku_id) for sku_id in ids}
    if not ids:
        return result
    stmt = (
        select(
            Instance.sku_id,
            Instance.tag_id,
            Tag.tag_type,
            func.count(Instance.id),
            func.coalesce(func.sum(Instance.acquisition_cost), 0.0),
        )
        .outerjoin(Tag, Tag.id == Instance.tag_id)
        .where(Instance.sku_id.in_(ids))
        .group_by(Instance.sku_id, Instance.tag_id, Tag.tag_type)
    )
    for sku_id, owner_id, tag_type, count, value in db.execute(stmt).all():
        counts = result[sku_id]
        counts.total += int(count)
        counts.total_value += float(value or 0)
        if owner_id is None:
            counts.available += int(count)
        else:
            bucket = _bucket_for(tag_type)
            setattr(counts, bucket, getattr(counts, bucket) + int(count))
    return result


def compute_availability(db: Session, sku_id: int) -> Availability:
    """Recompute ``{total, available, reserved, broken, loaned}`` for one SKU."""

    return compute_availability_many(db, [sku_id])[sku_id]


def refresh_summary(db: Session, sku_id: int) -> InventorySummary | None:
    """Overwrite the cached summary row with a fresh snapshot.

    Runs inside the caller's transaction; the caller commits.
    """

    if not settings.SUMMARY_CACHE_ENABLED:
        return None
    db.flush()
    counts = compute_availability(db, sku_id)
    summary = db.get(InventorySummary, sku_id)
    if summary is None:
        summary = InventorySummary(sku_id=sku_id)
        db.add(summary)
    summary.total = counts.total
    summary.available = counts.available
    summary.reserved = counts.reserved
    summary.broken = counts.broken
    summary.loaned = counts.loaned
    summary.total_value = round(counts.total_value, 2)
    summary.average_cost = round(counts.average_cost, 2)
    summary.updated_at = utcnow()
    return summary


def refresh_summaries(db: Session, sku_ids: Iterable[int]) -> None:
    for sku_id in sorted(set(sku_ids)):
        refresh_summary(db, sku_id)


def inventory_summary(db: Session, category_type: CategoryType | None = None) -> list[dict[str, object]]:
    """Live per-SKU snapshot for dashboards, ordered by SKU code."""

    stmt = select(Sku).where(Sku.is_bundle.is_(False)).order_by(Sku.code)
    if category_type is not None:
        stmt = stmt.join(Category, Category.id == Sku.category_id).where(Category.type == category_type.value)
    skus = db.execute(stmt).scalars().all()
    counts = compute_availability_many(db, [sku.id for sku in skus])
    rows = []
    for sku in skus:
        snapshot = counts[sku.id]
        row = snapshot.as_dict()
        row.update({"sku_code": sku.code, "sku_name": sku.name, "status": sku.status})
        rows.append(row)
    return rows


def cost_breakdown(db: Session, sku_id: int) -> list[dict[str, object]]:
    """Group the available instances of a SKU by acquisition cost."""

    stmt = (
        select(Instance)
        .where(Instance.sku_id == sku_id, Instance.tag_id.is_(None))
        .order_by(Instance.acquisition_cost, Instance.acquisition_date, Instance.id)
    )
    groups: dict[float, dict[str, object]] = {}
    for instance in db.execute(stmt).scalars().all():
        cost = float(instance.acquisition_cost or 0)
        group = groups.setdefault(
            cost,
            {
                "acquisition_cost": cost,
                "count": 0,
                "oldest_date": instance.acquisition_date,
                "newest_date": instance.acquisition_date,
                "locations": [],
                "suppliers": [],
            },
        )
        group["count"] += 1
        group["oldest_date"] = min(group["oldest_date"], instance.acquisition_date)
        group["newest_date"] = max(group["newest_date"], instance.acquisition_date)
        if instance.location and instance.location not in group["locations"]:
            group["locations"].append(instance.location)
        if instance.supplier and instance.supplier not in group["suppliers"]:
            group["suppliers"].append(instance.supplier)
    return list(groups.values())
