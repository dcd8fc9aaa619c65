"""Instance store: stock receipt, adjustments and owner-reference writes.

Owner-reference changes never go through attribute assignment on loaded
objects. Each one is a single conditional UPDATE/DELETE guarded on the owner
the caller expects, so two writers racing for the same unit cannot both win:
the loser sees a row count short of what it asked for and gets a
``BindConflictError``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.domain_types import SelectionMethod, Severity
from ..core.exceptions import BindConflictError, InsufficientStockError, NotFoundError
from ..db.session import unit_of_work
from ..models.instance import Instance
from ..services.audit import record_event
from ..services.availability import refresh_summary
from ..services.timecalc import to_iso_timestamp, utcnow
from .catalog import require_sku

logger = logging.getLogger("stockroom.instances")

EDITABLE_FIELDS = ("location", "supplier", "reference_number", "notes")


# ---------- Queries ----------


def get_instance(db: Session, instance_id: int) -> Instance | None:
    return db.get(Instance, instance_id)


def require_instance(db: Session, instance_id: int) -> Instance:
    instance = get_instance(db, instance_id)
    if instance is None:
        raise NotFoundError("Instance", instance_id)
    return instance


def list_instances(
    db: Session,
    sku_id: int,
    *,
    available_only: bool = False,
    limit: int = 500,
    offset: int = 0,
) -> list[Instance]:
    stmt = select(Instance).where(Instance.sku_id == sku_id)
    if available_only:
        stmt = stmt.where(Instance.tag_id.is_(None))
    stmt = stmt.order_by(Instance.acquisition_date, Instance.id).limit(limit).offset(offset)
    return db.execute(stmt).scalars().all()


def instances_for_tag(db: Session, tag_id: int) -> list[Instance]:
    stmt = select(Instance).where(Instance.tag_id == tag_id).order_by(Instance.acquisition_date, Instance.id)
    return db.execute(stmt).scalars().all()


def available_candidates(
    db: Session,
    sku_id: int,
    method: SelectionMethod = SelectionMethod.FIFO,
    *,
    limit: int | None = None,
) -> list[int]:
    """IDs of unowned instances of a SKU in the order they should be taken.

    FIFO takes the oldest acquisition first; the cost policies sort by
    acquisition cost and fall back to FIFO order on ties.
    """

    stmt = select(Instance.id).where(Instance.sku_id == sku_id, Instance.tag_id.is_(None))
    if method == SelectionMethod.COST_LOWEST:
        stmt = stmt.order_by(Instance.acquisition_cost.asc(), Instance.acquisition_date, Instance.id)
    elif method == SelectionMethod.COST_HIGHEST:
        stmt = stmt.order_by(Instance.acquisition_cost.desc(), Instance.acquisition_date, Instance.id)
    else:
        stmt = stmt.order_by(Instance.acquisition_date, Instance.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


# ---------- Owner-reference writes ----------


def bind_instance(db: Session, instance_id: int, tag_id: int) -> None:
    """Claim one unowned instance for ``tag_id``."""

    result = db.execute(
        update(Instance)
        .where(Instance.id == instance_id, Instance.tag_id.is_(None))
        .values(tag_id=tag_id, version=Instance.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise BindConflictError(instance_id, None)


def transfer_instances(db: Session, instance_ids: Iterable[int], from_tag_id: int | None, to_tag_id: int | None) -> None:
    """Move instances held by ``from_tag_id`` to ``to_tag_id``.

    ``None`` on either side means "unowned": a ``None`` target releases the
    units, a ``None`` source claims available ones.
    """

    ids = sorted(set(instance_ids))
    if not ids:
        return
    result = db.execute(
        update(Instance)
        .where(Instance.id.in_(ids), _owned_by(from_tag_id))
        .values(tag_id=to_tag_id, version=Instance.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != len(ids):
        raise BindConflictError(_first_stray(db, ids, from_tag_id), from_tag_id)


def release_instances(db: Session, instance_ids: Iterable[int], from_tag_id: int) -> None:
    transfer_instances(db, instance_ids, from_tag_id, None)


def consume_instances(db: Session, instance_ids: Iterable[int], from_tag_id: int) -> None:
    """Delete units permanently; they must still belong to ``from_tag_id``."""

    ids = sorted(set(instance_ids))
    if not ids:
        return
    result = db.execute(
        delete(Instance)
        .where(Instance.id.in_(ids), Instance.tag_id == from_tag_id)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != len(ids):
        raise BindConflictError(_first_stray(db, ids, from_tag_id), from_tag_id)


def _owned_by(tag_id: int | None):
    return Instance.tag_id.is_(None) if tag_id is None else Instance.tag_id == tag_id


def _first_stray(db: Session, ids: list[int], expected_tag_id: int | None) -> int:
    owned = set(db.execute(select(Instance.id).where(Instance.id.in_(ids), _owned_by(expected_tag_id))).scalars())
    for instance_id in ids:
        if instance_id not in owned:
            return instance_id
    return ids[0]


# ---------- Stock receipt and adjustments ----------


def _new_instance(sku_id: int, *, acquired: str, cost: float, actor: str, **fields) -> Instance:
    now = utcnow()
    return Instance(
        sku_id=sku_id,
        acquisition_date=acquired,
        acquisition_cost=cost,
        location=(fields.get("location") or "").strip() or settings.DEFAULT_LOCATION,
        supplier=(fields.get("supplier") or "").strip() or None,
        reference_number=(fields.get("reference_number") or "").strip() or None,
        notes=(fields.get("notes") or "").strip() or None,
        added_by=actor,
        tag_id=None,
        version=0,
        created_at=now,
        updated_at=now,
    )


def receive_stock(
    db: Session,
    *,
    sku_id: int,
    quantity: int,
    unit_cost: float | None = None,
    actor: str,
    location: str | None = None,
    supplier: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    acquisition_date: date | datetime | str | None = None,
) -> list[Instance]:
    """Create ``quantity`` new available instances of a SKU."""

    if quantity < 1:
        raise ValueError("quantity must be a positive integer")
    if unit_cost is not None and unit_cost < 0:
        raise ValueError("unit_cost must be non-negative")
    with unit_of_work(db):
        sku = require_sku(db, sku_id)
        if sku.is_bundle:
            raise ValueError("bundle SKUs have no physical instances; receive their components")
        cost = float(sku.unit_cost or 0) if unit_cost is None else float(unit_cost)
        acquired = to_iso_timestamp(acquisition_date) or utcnow()
        instances = [
            _new_instance(
                sku.id,
                acquired=acquired,
                cost=cost,
                actor=actor,
                location=location,
                supplier=supplier,
                reference_number=reference_number,
                notes=notes,
            )
            for _ in range(quantity)
        ]
        db.add_all(instances)
        db.flush()
        refresh_summary(db, sku.id)
    logger.info(
        "stock.received",
        extra={"extra_data": {"sku_id": sku.id, "quantity": quantity, "unit_cost": cost}},
    )
    record_event(
        db,
        event_type="stock_received",
        entity_type="sku",
        entity_id=sku.id,
        actor=actor,
        description=f"Received {quantity} x {sku.code} at {cost:.2f}",
        metadata={
            "quantity": quantity,
            "unit_cost": cost,
            "instance_ids": [instance.id for instance in instances],
            "supplier": supplier,
            "reference_number": reference_number,
        },
    )
    return instances


def adjust_quantity(db: Session, *, sku_id: int, adjustment: int, actor: str, reason: str | None = None) -> dict[str, object]:
    """Quick stock correction.

    Positive adjustments add instances at the SKU's current unit cost;
    negative ones delete the oldest available instances and never touch
    units that a tag currently holds.
    """

    if adjustment == 0:
        raise ValueError("adjustment cannot be zero")
    with unit_of_work(db):
        sku = require_sku(db, sku_id)
        if sku.is_bundle:
            raise ValueError("bundle SKUs have no physical instances")
        if adjustment > 0:
            cost = float(sku.unit_cost or 0)
            created = [
                _new_instance(
                    sku.id,
                    acquired=utcnow(),
                    cost=cost,
                    actor=actor,
                    location="Inventory Adjustment",
                    notes=reason or f"Quantity increased by {adjustment} via adjustment",
                )
                for _ in range(adjustment)
            ]
            db.add_all(created)
            db.flush()
            result: dict[str, object] = {
                "action": "increased",
                "quantity": adjustment,
                "instance_ids": [instance.id for instance in created],
                "unit_cost": cost,
            }
        else:
            wanted = abs(adjustment)
            candidates = available_candidates(db, sku.id, SelectionMethod.FIFO, limit=wanted)
            if len(candidates) < wanted:
                raise InsufficientStockError(sku.id, wanted, len(candidates))
            removed = db.execute(select(Instance).where(Instance.id.in_(candidates))).scalars().all()
            value_removed = sum(float(instance.acquisition_cost or 0) for instance in removed)
            result_rows = db.execute(
                delete(Instance)
                .where(Instance.id.in_(candidates), Instance.tag_id.is_(None))
                .execution_options(synchronize_session="evaluate")
            )
            if result_rows.rowcount != wanted:
                raise BindConflictError(_first_stray(db, candidates, None), None)
            result = {
                "action": "decreased",
                "quantity": wanted,
                "instance_ids": candidates,
                "total_value_removed": round(value_removed, 2),
                "average_cost_removed": round(value_removed / wanted, 2),
            }
        refresh_summary(db, sku.id)
    logger.info(
        "stock.adjusted",
        extra={"extra_data": {"sku_id": sku.id, "adjustment": adjustment}},
    )
    record_event(
        db,
        event_type="stock_adjusted",
        entity_type="sku",
        entity_id=sku.id,
        actor=actor,
        description=f"Quantity of {sku.code} {result['action']} by {abs(adjustment)}",
        metadata={**result, "reason": reason or ""},
        severity=Severity.MEDIUM if adjustment < 0 else Severity.LOW,
    )
    return result


def update_instance(db: Session, instance: Instance, payload: dict, *, actor: str) -> Instance:
    """Edit descriptive fields only; ownership and cost are not editable here."""

    changed = {}
    for key in EDITABLE_FIELDS:
        if key not in payload:
            continue
        value = payload[key]
        if isinstance(value, str):
            value = value.strip() or None
        if getattr(instance, key) != value:
            changed[key] = value
            setattr(instance, key, value)
    if not changed:
        return instance
    instance.updated_at = utcnow()
    db.commit()
    db.refresh(instance)
    record_event(
        db,
        event_type="instance_updated",
        entity_type="instance",
        entity_id=instance.id,
        actor=actor,
        description=f"Instance {instance.id} details updated",
        metadata=changed,
    )
    return instance
