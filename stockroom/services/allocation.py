"""Beginner-friendly overview for this module.

WHAT: Turns an allocation request (customer, tag type, lines of SKU + quantity)
      into an active tag whose lines own concrete instances.
WHEN: Called by the tag and tool routers whenever stock is reserved, loaned,
      flagged or claimed for consumption.
WHY: Availability is derived from instance ownership, so the only way to hold
     stock is to write the tag id onto specific instance rows.
HOW: Bundles are expanded into component lines, demand is checked against live
     availability, then every instance is claimed with a conditional UPDATE.
     The whole request is one transaction: a single failed line rolls back
     every bind that came before it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.domain_types import CategoryType, SelectionMethod, TagType
from ..core.exceptions import (
    BindConflictError,
    CatalogMismatchError,
    InsufficientStockError,
    InvalidSelectionError,
)
from ..crud.catalog import get_category_type, require_sku
from ..crud.instances import available_candidates, bind_instance, transfer_instances
from ..db.session import unit_of_work
from ..models.catalog import Sku
from ..models.instance import Instance
from ..models.tag import Tag, TagLine
from .audit import record_event
from .availability import compute_availability_many, refresh_summaries
from .bundles import Requirement, expand, merge_requirements
from .timecalc import to_iso_date

logger = logging.getLogger("stockroom.allocation")


@dataclass
class LineDraft:
    sku_id: int
    quantity: int
    selection_method: SelectionMethod = SelectionMethod.FIFO
    instance_ids: list[int] | None = None
    notes: str | None = None


@dataclass
class TagDraft:
    customer_name: str
    tag_type: TagType
    lines: list[LineDraft] = field(default_factory=list)
    project_name: str | None = None
    notes: str | None = None
    due_date: date | str | None = None


@dataclass
class _PlannedLine:
    sku: Sku
    quantity: int
    method: SelectionMethod
    instance_ids: list[int] | None
    notes: str | None


def _check_catalog(db: Session, sku: Sku, tag_type: TagType, domain: CategoryType | None) -> None:
    if sku.is_discontinued:
        raise CatalogMismatchError(sku.id, f"SKU {sku.code} is discontinued")
    if sku.is_bundle:
        return
    if tag_type == TagType.LOANED and not sku.is_lendable:
        raise CatalogMismatchError(sku.id, f"SKU {sku.code} is not lendable")
    if domain is None:
        return
    category_type = get_category_type(db, sku.category_id)
    if category_type != domain:
        kind = category_type.value if category_type else "uncategorised"
        raise CatalogMismatchError(sku.id, f"SKU {sku.code} is a {kind} item, expected {domain.value}")


def _plan(db: Session, draft: TagDraft, domain: CategoryType | None) -> list[_PlannedLine]:
    """Expand bundles and run every catalog check before anything is bound."""

    planned: list[_PlannedLine] = []
    for line in draft.lines:
        if line.quantity < 1:
            raise ValueError("line quantity must be a positive integer")
        method = SelectionMethod(line.selection_method)
        sku = require_sku(db, line.sku_id)
        _check_catalog(db, sku, draft.tag_type, domain)

        if method == SelectionMethod.MANUAL:
            ids = list(line.instance_ids or [])
            if sku.is_bundle:
                raise InvalidSelectionError(None, "manual selection needs a concrete SKU, not a bundle", ids)
            if len(ids) != line.quantity or len(set(ids)) != len(ids):
                raise InvalidSelectionError(
                    None, f"manual selection must list {line.quantity} distinct instance ids", ids
                )
            planned.append(_PlannedLine(sku, line.quantity, method, ids, line.notes))
            continue

        for requirement in expand(db, sku.id, line.quantity):
            component = sku if requirement.sku_id == sku.id else require_sku(db, requirement.sku_id)
            _check_catalog(db, component, draft.tag_type, domain)
            notes = line.notes
            if component.id != sku.id:
                notes = f"Part of bundle {sku.code}" + (f": {line.notes}" if line.notes else "")
            planned.append(_PlannedLine(component, requirement.quantity, method, None, notes))
    return planned


def _ensure_available(db: Session, planned: list[_PlannedLine]) -> None:
    # Lines for the same SKU compete for the same pool; check the sum.
    demand = merge_requirements([Requirement(p.sku.id, p.quantity) for p in planned])
    counts = compute_availability_many(db, demand.keys())
    for sku_id, requested in demand.items():
        available = counts[sku_id].available
        if available < requested:
            raise InsufficientStockError(sku_id, requested, available)


def _shortfall_after_conflicts(
    db: Session, tag_id: int, sku_id: int, quantity: int, bound: int, tried: set[int]
) -> InsufficientStockError:
    """Report the whole request's demand for the SKU against what it could still get.

    Units already held by the tag count as obtainable; free units the binder
    lost a race on do not.
    """

    held = db.execute(
        select(func.count(Instance.id)).where(Instance.sku_id == sku_id, Instance.tag_id == tag_id)
    ).scalar_one()
    free = db.execute(
        select(func.count(Instance.id)).where(
            Instance.sku_id == sku_id, Instance.tag_id.is_(None), Instance.id.not_in(tried)
        )
    ).scalar_one()
    return InsufficientStockError(sku_id, held - bound + quantity, held + free)


def _bind_by_policy(db: Session, tag_id: int, sku_id: int, quantity: int, method: SelectionMethod) -> list[int]:
    bound: list[int] = []
    tried: set[int] = set()
    while len(bound) < quantity:
        missing = quantity - len(bound)
        candidates = [
            instance_id
            for instance_id in available_candidates(db, sku_id, method, limit=missing + len(tried))
            if instance_id not in tried
        ]
        if not candidates:
            raise _shortfall_after_conflicts(db, tag_id, sku_id, quantity, len(bound), tried)
        for instance_id in candidates[:missing]:
            tried.add(instance_id)
            try:
                bind_instance(db, instance_id, tag_id)
            except BindConflictError:
                logger.warning(
                    "allocation.bind_conflict",
                    extra={"extra_data": {"tag_id": tag_id, "sku_id": sku_id, "instance_id": instance_id}},
                )
                continue
            bound.append(instance_id)
    return bound


def _bind_manual(db: Session, tag_id: int, sku_id: int, instance_ids: list[int]) -> list[int]:
    rows = db.execute(select(Instance.id, Instance.sku_id, Instance.tag_id).where(Instance.id.in_(instance_ids))).all()
    found = {row.id: row for row in rows}
    missing = [instance_id for instance_id in instance_ids if instance_id not in found]
    if missing:
        raise InvalidSelectionError(None, "unknown instance ids", missing)
    foreign = [instance_id for instance_id in instance_ids if found[instance_id].sku_id != sku_id]
    if foreign:
        raise InvalidSelectionError(None, f"instances do not belong to SKU {sku_id}", foreign)
    held = [instance_id for instance_id in instance_ids if found[instance_id].tag_id is not None]
    if held:
        raise InvalidSelectionError(None, "instances are already allocated", held)
    transfer_instances(db, instance_ids, None, tag_id)
    return list(instance_ids)


def allocate(db: Session, draft: TagDraft, *, actor: str, domain: CategoryType | None = None) -> Tag:
    """Create an active tag and bind instances to every line, all or nothing."""

    customer = (draft.customer_name or "").strip()
    if not customer:
        raise ValueError("customer_name is required")
    if not draft.lines:
        raise ValueError("at least one line is required")
    tag_type = TagType(draft.tag_type)

    with unit_of_work(db):
        planned = _plan(db, draft, domain)
        _ensure_available(db, planned)

        tag = Tag.open(
            customer_name=customer,
            tag_type=tag_type,
            actor=actor,
            project_name=draft.project_name,
            notes=draft.notes,
            due_date=to_iso_date(draft.due_date),
        )
        db.add(tag)
        db.flush()

        # Manual picks are claimed first so a policy line cannot take a unit
        # that a later line names explicitly.
        bound_by_line: dict[int, list[int]] = {}
        for index, line in enumerate(planned):
            if line.method == SelectionMethod.MANUAL:
                bound_by_line[index] = _bind_manual(db, tag.id, line.sku.id, line.instance_ids or [])
        for index, line in enumerate(planned):
            if line.method != SelectionMethod.MANUAL:
                bound_by_line[index] = _bind_by_policy(db, tag.id, line.sku.id, line.quantity, line.method)

        for index, line in enumerate(planned):
            bound = bound_by_line[index]
            tag.lines.append(
                TagLine(
                    sku_id=line.sku.id,
                    quantity=line.quantity,
                    remaining_quantity=len(bound),
                    selection_method=line.method.value,
                    instance_ids=bound,
                    notes=line.notes,
                )
            )
        refresh_summaries(db, [line.sku.id for line in planned])

    logger.info(
        "allocation.created",
        extra={
            "extra_data": {
                "tag_id": tag.id,
                "tag_type": tag.tag_type,
                "customer_name": tag.customer_name,
                "quantity": tag.total_quantity,
                "sku_ids": sorted({line.sku_id for line in tag.lines}),
            }
        },
    )
    record_event(
        db,
        event_type="tag_created",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"{tag.tag_type.capitalize()} tag for {tag.customer_name} ({tag.total_quantity} units)",
        metadata={
            "tag_type": tag.tag_type,
            "domain": domain.value if domain else None,
            "lines": [
                {"sku_id": line.sku_id, "quantity": line.quantity, "instance_ids": list(line.instance_ids)}
                for line in tag.lines
            ],
        },
    )
    return tag


def checkout_tools(
    db: Session,
    *,
    customer_name: str,
    lines: list[LineDraft],
    actor: str,
    project_name: str | None = None,
    notes: str | None = None,
    due_date: date | str | None = None,
) -> Tag:
    """Loan tool instances out; every SKU must be a lendable tool."""

    draft = TagDraft(
        customer_name=customer_name,
        tag_type=TagType.LOANED,
        lines=lines,
        project_name=project_name,
        notes=notes,
        due_date=due_date,
    )
    return allocate(db, draft, actor=actor, domain=CategoryType.TOOL)


__all__ = ["LineDraft", "TagDraft", "allocate", "checkout_tools"]
