"""Beginner-friendly overview for this module.

WHAT: Moves tags through their life: cancel, fulfil, partial return and
      partial fulfilment, plus the read helpers the tag screens use.
WHEN: Called by the tag and tool routers after a tag has been created by the
      allocation engine.
WHY: Every transition changes who owns which instances; keeping those writes
     in one place keeps the line bookkeeping and the owner references in step.
HOW: Each transition loads the tag, checks it is still active, applies guarded
     owner-reference writes through ``crud.instances`` and updates the lines
     in the same transaction. Logging and the audit trail follow the commit.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.domain_types import CategoryType, Condition, Severity, SkuStatus, TagStatus, TagType
from ..core.exceptions import InvalidSelectionError, InvalidStateError, NotFoundError
from ..crud.instances import consume_instances, release_instances
from ..db.session import unit_of_work
from ..models.catalog import Category, Sku
from ..models.tag import Tag, TagLine
from .audit import record_event
from .availability import inventory_summary, refresh_summaries
from .conditions import ReturnContext, route_return
from .timecalc import to_iso_date, today as utc_today

logger = logging.getLogger("stockroom.lifecycle")

UPDATABLE_FIELDS = ("notes", "due_date", "project_name")


# ---------- Queries ----------


def get_tag(db: Session, tag_id: int) -> Tag | None:
    return db.get(Tag, tag_id)


def require_tag(db: Session, tag_id: int) -> Tag:
    tag = get_tag(db, tag_id)
    if tag is None:
        raise NotFoundError("Tag", tag_id)
    return tag


def list_tags(
    db: Session,
    *,
    status: TagStatus | None = None,
    tag_type: TagType | None = None,
    customer: str | None = None,
    project: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Tag]:
    stmt = select(Tag)
    if status is not None:
        stmt = stmt.where(Tag.status == TagStatus(status).value)
    if tag_type is not None:
        stmt = stmt.where(Tag.tag_type == TagType(tag_type).value)
    if customer:
        stmt = stmt.where(Tag.customer_name.ilike(f"%{customer.strip()}%"))
    if project:
        stmt = stmt.where(Tag.project_name.ilike(f"%{project.strip()}%"))
    stmt = stmt.order_by(Tag.created_at.desc(), Tag.id.desc()).limit(limit).offset(offset)
    return db.execute(stmt).scalars().all()


def overdue_tags(db: Session, today: str | None = None) -> list[Tag]:
    """Active tags whose due date has passed."""

    cutoff = to_iso_date(today) or utc_today()
    stmt = (
        select(Tag)
        .where(Tag.status == TagStatus.ACTIVE.value, Tag.due_date.is_not(None), Tag.due_date < cutoff)
        .order_by(Tag.due_date, Tag.id)
    )
    return db.execute(stmt).scalars().all()


def tag_stats(db: Session, today: str | None = None) -> dict[str, object]:
    by_status = dict(db.execute(select(Tag.status, func.count(Tag.id)).group_by(Tag.status)).all())
    by_type = dict(
        db.execute(
            select(Tag.tag_type, func.count(Tag.id))
            .where(Tag.status == TagStatus.ACTIVE.value)
            .group_by(Tag.tag_type)
        ).all()
    )
    held = db.execute(
        select(func.coalesce(func.sum(TagLine.remaining_quantity), 0))
        .join(Tag, Tag.id == TagLine.tag_id)
        .where(Tag.status == TagStatus.ACTIVE.value)
    ).scalar_one()
    return {
        "total": sum(by_status.values()),
        "by_status": {status.value: int(by_status.get(status.value, 0)) for status in TagStatus},
        "active_by_type": {tag_type.value: int(by_type.get(tag_type.value, 0)) for tag_type in TagType},
        "active_quantity": int(held or 0),
        "overdue": len(overdue_tags(db, today)),
    }


def tool_stats(db: Session, today: str | None = None) -> dict[str, object]:
    """Fleet totals across active tool SKUs plus the number of overdue tool loans."""

    rows = [row for row in inventory_summary(db, CategoryType.TOOL) if row["status"] == SkuStatus.ACTIVE.value]
    tool_sku_ids = (
        select(Sku.id)
        .join(Category, Category.id == Sku.category_id)
        .where(Category.type == CategoryType.TOOL.value)
    )
    cutoff = to_iso_date(today) or utc_today()
    overdue = db.execute(
        select(func.count(func.distinct(Tag.id)))
        .join(TagLine, TagLine.tag_id == Tag.id)
        .where(
            Tag.status == TagStatus.ACTIVE.value,
            Tag.tag_type == TagType.LOANED.value,
            Tag.due_date.is_not(None),
            Tag.due_date < cutoff,
            TagLine.sku_id.in_(tool_sku_ids),
        )
    ).scalar_one()
    stats: dict[str, object] = {"tool_skus": len(rows)}
    for key in ("total", "available", "reserved", "broken", "loaned"):
        stats[key] = sum(int(row[key]) for row in rows)
    stats["total_value"] = round(sum(float(row["total_value"]) for row in rows), 2)
    stats["overdue_loans"] = int(overdue or 0)
    return stats


def update_tag(db: Session, tag_id: int, payload: Mapping[str, object], *, actor: str) -> Tag:
    changed = {}
    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        _require_active(tag, "edit")
        for key in UPDATABLE_FIELDS:
            if key not in payload:
                continue
            value = payload[key]
            if key == "due_date":
                value = to_iso_date(value)
            elif isinstance(value, str):
                value = value.strip() or None
            if getattr(tag, key) != value:
                changed[key] = value
                setattr(tag, key, value)
        if changed:
            tag.touch(actor)
    if not changed:
        return tag
    db.refresh(tag)
    record_event(
        db,
        event_type="tag_updated",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"Tag {tag.id} details updated",
        metadata=changed,
    )
    return tag


# ---------- Transitions ----------


def _require_active(tag: Tag, action: str) -> None:
    if not tag.is_active:
        raise InvalidStateError(
            f"Cannot {action} tag {tag.id}: it is already {tag.status}",
            entity_id=tag.id,
            state=tag.status,
        )


def _require_loan_for_condition(tag: Tag, condition: Condition) -> None:
    if condition != Condition.FUNCTIONAL and not tag.is_loan:
        raise InvalidStateError(
            f"Return conditions apply to loan tags only; tag {tag.id} is {tag.tag_type}",
            entity_id=tag.id,
            state=tag.status,
        )


def _append_note(tag: Tag, note: str | None) -> None:
    if note:
        tag.notes = f"{tag.notes}\n{note}" if tag.notes else note


def _return_context(tag: Tag, actor: str, notes: str | None) -> ReturnContext:
    return ReturnContext(
        actor=actor,
        customer_name=f"Maintenance - {tag.customer_name}",
        source_tag=tag,
        project_name=tag.project_name,
        notes=notes,
    )


def cancel(db: Session, tag_id: int, *, actor: str, reason: str | None = None) -> Tag:
    """Release every bound instance and close the tag as ``cancelled``."""

    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        _require_active(tag, "cancel")
        released = tag.bound_instance_ids
        sku_ids = [line.sku_id for line in tag.lines]
        release_instances(db, released, tag.id)
        tag.clear_lines()
        tag.mark_cancelled(actor, reason)
        refresh_summaries(db, sku_ids)

    logger.info(
        "tag.cancelled",
        extra={"extra_data": {"tag_id": tag.id, "released": len(released), "reason": reason}},
    )
    record_event(
        db,
        event_type="tag_cancelled",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"Tag {tag.id} for {tag.customer_name} cancelled",
        metadata={"released_instance_ids": released, "reason": reason or ""},
    )
    return tag


def fulfill(
    db: Session,
    tag_id: int,
    *,
    actor: str,
    condition: Condition | str = Condition.FUNCTIONAL,
    notes: str | None = None,
) -> Tag:
    """Complete a tag.

    Consumption tags delete their instances. Loan tags hand theirs back
    through the condition router: ``functional`` units become available,
    anything else moves onto a new condition tag.
    """

    condition = Condition(condition)
    condition_tag_id = None
    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        _require_active(tag, "fulfil")
        _require_loan_for_condition(tag, condition)
        bound = tag.bound_instance_ids
        sku_ids = [line.sku_id for line in tag.lines]
        if tag.is_loan:
            condition_tag_id = route_return(db, bound, condition, _return_context(tag, actor, notes))
        else:
            consume_instances(db, bound, tag.id)
        tag.clear_lines()
        _append_note(tag, notes)
        tag.mark_fulfilled(actor)
        refresh_summaries(db, sku_ids)

    action = "returned" if tag.is_loan else "consumed"
    logger.info(
        "tag.fulfilled",
        extra={
            "extra_data": {
                "tag_id": tag.id,
                "tag_type": tag.tag_type,
                action: len(bound),
                "condition": condition.value,
                "condition_tag_id": condition_tag_id,
            }
        },
    )
    record_event(
        db,
        event_type="tag_fulfilled",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"Tag {tag.id} fulfilled: {len(bound)} units {action}",
        metadata={
            "instance_ids": bound,
            "condition": condition.value,
            "condition_tag_id": condition_tag_id,
            "notes": notes or "",
        },
        severity=Severity.MEDIUM if not tag.is_loan else Severity.LOW,
    )
    return tag


def _resolve_selections(tag: Tag, selections: Mapping[int, Iterable[int]]) -> list[tuple[TagLine, list[int]]]:
    if not selections:
        raise InvalidSelectionError(tag.id, "no instances selected")
    lines = {line.id: line for line in tag.lines}
    seen: set[int] = set()
    resolved = []
    for line_id, instance_ids in selections.items():
        ids = [int(instance_id) for instance_id in instance_ids]
        line = lines.get(int(line_id))
        if line is None:
            raise InvalidSelectionError(tag.id, f"line {line_id} is not part of tag {tag.id}", ids)
        if not ids:
            raise InvalidSelectionError(tag.id, f"no instances selected for line {line.id}")
        repeated = [instance_id for instance_id in ids if instance_id in seen or ids.count(instance_id) > 1]
        if repeated:
            raise InvalidSelectionError(tag.id, "instance ids selected more than once", set(repeated))
        seen.update(ids)
        bound = set(line.instance_ids or [])
        stray = [instance_id for instance_id in ids if instance_id not in bound]
        if stray:
            raise InvalidSelectionError(tag.id, f"instances are not bound to line {line.id}", stray)
        resolved.append((line, ids))
    return resolved


def partial_return(
    db: Session,
    tag_id: int,
    selections: Mapping[int, Iterable[int]],
    *,
    actor: str,
    condition: Condition | str = Condition.FUNCTIONAL,
    notes: str | None = None,
) -> Tag:
    """Return some of a tag's instances; ``selections`` maps line id to instance ids."""

    condition = Condition(condition)
    condition_tag_id = None
    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        _require_active(tag, "return items from")
        _require_loan_for_condition(tag, condition)
        resolved = _resolve_selections(tag, selections)
        returned = [instance_id for _, ids in resolved for instance_id in ids]
        sku_ids = [line.sku_id for line, _ in resolved]
        if tag.is_loan:
            condition_tag_id = route_return(db, returned, condition, _return_context(tag, actor, notes))
        else:
            release_instances(db, returned, tag.id)
        for line, ids in resolved:
            tag.detach(line, ids, drop_empty=True)
        _append_note(tag, notes)
        tag.touch(actor)
        settled = tag.settle_if_empty(actor)
        refresh_summaries(db, sku_ids)

    logger.info(
        "tag.partial_return",
        extra={
            "extra_data": {
                "tag_id": tag.id,
                "returned": len(returned),
                "remaining": tag.remaining_quantity,
                "condition": condition.value,
                "condition_tag_id": condition_tag_id,
                "fulfilled": settled,
            }
        },
    )
    record_event(
        db,
        event_type="tag_partial_return",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"{len(returned)} units returned from tag {tag.id} ({condition.value})",
        metadata={
            "instance_ids": returned,
            "condition": condition.value,
            "condition_tag_id": condition_tag_id,
            "remaining_quantity": tag.remaining_quantity,
            "notes": notes or "",
        },
    )
    return tag


def partial_fulfill(db: Session, tag_id: int, selections: Mapping[int, Iterable[int]], *, actor: str) -> Tag:
    """Consume some of a consumption tag's instances."""

    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        _require_active(tag, "fulfil items from")
        if tag.is_loan:
            raise InvalidStateError(
                f"Loan tag {tag.id} cannot be consumed; return its items instead",
                entity_id=tag.id,
                state=tag.status,
            )
        resolved = _resolve_selections(tag, selections)
        consumed = [instance_id for _, ids in resolved for instance_id in ids]
        sku_ids = [line.sku_id for line, _ in resolved]
        consume_instances(db, consumed, tag.id)
        for line, ids in resolved:
            tag.detach(line, ids, drop_empty=True)
        tag.touch(actor)
        settled = tag.settle_if_empty(actor)
        refresh_summaries(db, sku_ids)

    logger.info(
        "tag.partial_fulfill",
        extra={
            "extra_data": {
                "tag_id": tag.id,
                "consumed": len(consumed),
                "remaining": tag.remaining_quantity,
                "fulfilled": settled,
            }
        },
    )
    record_event(
        db,
        event_type="tag_partial_fulfill",
        entity_type="tag",
        entity_id=tag.id,
        actor=actor,
        description=f"{len(consumed)} units consumed from tag {tag.id}",
        metadata={"instance_ids": consumed, "remaining_quantity": tag.remaining_quantity},
        severity=Severity.MEDIUM,
    )
    return tag


def delete_tag(db: Session, tag_id: int, *, actor: str) -> dict[str, object]:
    """Remove a tag outright, releasing whatever it still holds.

    A tag with a line that has been partly worked off has history worth
    keeping; those have to be cancelled instead.
    """

    with unit_of_work(db):
        tag = require_tag(db, tag_id)
        if any(0 < (line.remaining_quantity or 0) < line.quantity for line in tag.lines):
            raise InvalidStateError(
                f"Tag {tag.id} is partly fulfilled; cancel it instead",
                entity_id=tag.id,
                state=tag.status,
            )
        released = tag.bound_instance_ids if tag.is_active else []
        sku_ids = [line.sku_id for line in tag.lines]
        if released:
            release_instances(db, released, tag.id)
        snapshot = {
            "id": tag.id,
            "customer_name": tag.customer_name,
            "tag_type": tag.tag_type,
            "status": tag.status,
            "project_name": tag.project_name,
        }
        db.delete(tag)
        refresh_summaries(db, sku_ids)

    logger.info(
        "tag.deleted",
        extra={"extra_data": {"tag_id": snapshot["id"], "status": snapshot["status"], "released": len(released)}},
    )
    record_event(
        db,
        event_type="tag_deleted",
        entity_type="tag",
        entity_id=snapshot["id"],
        actor=actor,
        description=f"Tag {snapshot['id']} for {snapshot['customer_name']} deleted",
        metadata={"released_instance_ids": released, "status": snapshot["status"]},
        severity=Severity.MEDIUM,
    )
    return snapshot


__all__ = [
    "cancel",
    "delete_tag",
    "fulfill",
    "get_tag",
    "list_tags",
    "overdue_tags",
    "partial_fulfill",
    "partial_return",
    "require_tag",
    "tag_stats",
    "tool_stats",
    "update_tag",
]
