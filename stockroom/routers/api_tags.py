from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.domain_types import TagStatus, TagType
from ..db.session import get_db
from ..deps.auth import Principal, require_api_key
from ..schemas.tag import (
    PartialReturn,
    PartialSelection,
    TagCancel,
    TagCreate,
    TagFulfill,
    TagOut,
    TagStats,
    TagUpdate,
)
from ..services import lifecycle
from ..services.allocation import LineDraft, TagDraft, allocate

router = APIRouter(prefix="/api/v1/tags", tags=["tags"], dependencies=[Depends(require_api_key)])


def _draft(payload: TagCreate) -> TagDraft:
    return TagDraft(
        customer_name=payload.customer_name,
        tag_type=payload.tag_type,
        lines=[LineDraft(**line.model_dump()) for line in payload.lines],
        project_name=payload.project_name,
        notes=payload.notes,
        due_date=payload.due_date,
    )


@router.post("", response_model=TagOut, status_code=201)
def api_create_tag(payload: TagCreate, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)):
    try:
        return allocate(db, _draft(payload), actor=principal.name, domain=payload.domain)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("", response_model=list[TagOut])
def api_list_tags(
    status: TagStatus | None = Query(default=None),
    tag_type: TagType | None = Query(default=None),
    customer: str | None = Query(default=None),
    project: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return lifecycle.list_tags(
        db, status=status, tag_type=tag_type, customer=customer, project=project, limit=limit, offset=offset
    )


@router.get("/stats", response_model=TagStats)
def api_tag_stats(db: Session = Depends(get_db)):
    return lifecycle.tag_stats(db)


@router.get("/overdue", response_model=list[TagOut])
def api_overdue_tags(db: Session = Depends(get_db)):
    return lifecycle.overdue_tags(db)


@router.get("/{tag_id}", response_model=TagOut)
def api_get_tag(tag_id: int, db: Session = Depends(get_db)):
    return lifecycle.require_tag(db, tag_id)


@router.patch("/{tag_id}", response_model=TagOut)
def api_update_tag(
    tag_id: int, payload: TagUpdate, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    return lifecycle.update_tag(db, tag_id, payload.model_dump(exclude_unset=True), actor=principal.name)


@router.delete("/{tag_id}")
def api_delete_tag(tag_id: int, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)):
    deleted = lifecycle.delete_tag(db, tag_id, actor=principal.name)
    return {"status": "deleted", "tag": deleted}


@router.post("/{tag_id}/cancel", response_model=TagOut)
def api_cancel_tag(
    tag_id: int, payload: TagCancel, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    return lifecycle.cancel(db, tag_id, actor=principal.name, reason=payload.reason)


@router.post("/{tag_id}/fulfill", response_model=TagOut)
def api_fulfill_tag(
    tag_id: int, payload: TagFulfill, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    return lifecycle.fulfill(db, tag_id, actor=principal.name, condition=payload.condition, notes=payload.notes)


@router.post("/{tag_id}/partial-return", response_model=TagOut)
def api_partial_return(
    tag_id: int, payload: PartialReturn, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    return lifecycle.partial_return(
        db, tag_id, payload.selections, actor=principal.name, condition=payload.condition, notes=payload.notes
    )


@router.post("/{tag_id}/partial-fulfill", response_model=TagOut)
def api_partial_fulfill(
    tag_id: int, payload: PartialSelection, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    return lifecycle.partial_fulfill(db, tag_id, payload.selections, actor=principal.name)
