"""Condition routing for returned and inspected instances.

A unit that comes back ``functional`` goes straight back to the pool. Units
that come back ``needs_maintenance`` or ``broken`` stay owned: they move onto
a fresh condition tag whose ``condition_class`` records why they are held.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.domain_types import ALLOCATED, CONDITION_TAG_TYPES, Condition, SelectionMethod, Severity, TagType
from ..core.exceptions import InvalidStateError
from ..crud.instances import require_instance, transfer_instances
from ..db.session import unit_of_work
from ..models.instance import Instance
from ..models.tag import Tag, TagLine
from .audit import record_event
from .availability import refresh_summary

logger = logging.getLogger("stockroom.conditions")


@dataclass
class ReturnContext:
    actor: str
    customer_name: str
    source_tag: Tag | None = None
    project_name: str | None = None
    notes: str | None = None
    line_notes: str | None = None


def route_return(db: Session, instance_ids, condition: Condition | str, context: ReturnContext) -> int | None:
    """Release or re-tag instances leaving ``context.source_tag``.

    Returns the id of the condition tag that now holds the instances, or
    ``None`` when they were released. Line bookkeeping on the source tag is
    left to the caller. Runs inside the caller's transaction.
    """

    condition = Condition(condition)
    ids = sorted(set(instance_ids))
    if not ids:
        return None
    source_id = context.source_tag.id if context.source_tag is not None else None

    if condition == Condition.FUNCTIONAL:
        transfer_instances(db, ids, source_id, None)
        return None

    tag = Tag.open(
        customer_name=context.customer_name,
        tag_type=CONDITION_TAG_TYPES[condition],
        actor=context.actor,
        condition_class=condition.value,
        project_name=context.project_name,
        notes=context.notes or f"Returned with condition: {condition.value}",
    )
    db.add(tag)
    db.flush()

    by_sku: dict[int, list[int]] = {}
    for instance_id, sku_id in db.execute(
        select(Instance.id, Instance.sku_id).where(Instance.id.in_(ids)).order_by(Instance.id)
    ).all():
        by_sku.setdefault(sku_id, []).append(instance_id)

    for sku_id, sku_instance_ids in by_sku.items():
        transfer_instances(db, sku_instance_ids, source_id, tag.id)
        tag.lines.append(
            TagLine(
                sku_id=sku_id,
                quantity=len(sku_instance_ids),
                remaining_quantity=len(sku_instance_ids),
                selection_method=SelectionMethod.MANUAL.value,
                instance_ids=sku_instance_ids,
                notes=context.line_notes or f"Returned with condition: {condition.value}",
            )
        )
    db.flush()
    return tag.id


def current_condition(instance: Instance, tag: Tag | None = None) -> str:
    if instance.tag_id is None:
        return Condition.FUNCTIONAL.value
    tag = tag if tag is not None else instance.tag
    if tag is None:
        return ALLOCATED
    if tag.condition_class:
        return tag.condition_class
    if tag.tag_type == TagType.BROKEN.value:
        return Condition.BROKEN.value
    return ALLOCATED


def change_instance_condition(
    db: Session,
    instance_id: int,
    condition: Condition | str,
    *,
    actor: str,
    reason: str | None = None,
    notes: str | None = None,
) -> Instance:
    condition = Condition(condition)
    with unit_of_work(db):
        instance = require_instance(db, instance_id)
        tag = db.get(Tag, instance.tag_id) if instance.tag_id is not None else None
        previous = current_condition(instance, tag)
        if previous == condition.value:
            return instance

        if tag is not None and tag.is_active and tag.is_loan and condition != Condition.BROKEN:
            raise InvalidStateError(
                "Instance is out on loan; return it first, or mark it broken",
                entity="instance",
                entity_id=instance.id,
                state=previous,
            )
        if tag is not None and not tag.is_condition_tag and not tag.is_loan and condition == Condition.FUNCTIONAL:
            raise InvalidStateError(
                f"Instance is held by tag {tag.id}; cancel or return it through the tag",
                entity="instance",
                entity_id=instance.id,
                state=previous,
            )

        sku = instance.sku
        context = ReturnContext(
            actor=actor,
            customer_name=f"Maintenance - {sku.name}",
            source_tag=tag,
            notes=notes or f"Condition changed to {condition.value}" + (f". Reason: {reason}" if reason else ""),
            line_notes=reason or f"Condition change: {condition.value}",
        )
        new_tag_id = route_return(db, [instance.id], condition, context)

        if tag is not None:
            line = tag.line_for_instance(instance.id)
            if line is not None:
                tag.detach(line, [instance.id])
            tag.touch(actor)
            tag.settle_if_empty(actor)
        refresh_summary(db, instance.sku_id)

    db.refresh(instance)
    logger.info(
        "instance.condition_changed",
        extra={
            "extra_data": {
                "instance_id": instance.id,
                "sku_id": instance.sku_id,
                "from": previous,
                "to": condition.value,
                "tag_id": new_tag_id,
            }
        },
    )
    record_event(
        db,
        event_type="instance_condition_changed",
        entity_type="instance",
        entity_id=instance.id,
        actor=actor,
        description=f"Condition changed from {previous} to {condition.value}: {sku.name} ({sku.code})",
        metadata={
            "sku_id": instance.sku_id,
            "old_condition": previous,
            "new_condition": condition.value,
            "previous_tag_id": tag.id if tag is not None else None,
            "new_tag_id": new_tag_id,
            "reason": reason or "",
            "notes": notes or "",
        },
        severity=Severity.MEDIUM if condition == Condition.BROKEN else Severity.LOW,
    )
    return instance


__all__ = ["ReturnContext", "change_instance_condition", "current_condition", "route_return"]
