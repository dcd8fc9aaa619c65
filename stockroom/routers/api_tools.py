from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.domain_types import CategoryType
from ..core.exceptions import InvalidStateError
from ..db.session import get_db
from ..deps.auth import Principal, require_api_key
from ..schemas.inventory import InventorySummaryItem, ToolStats
from ..schemas.tag import PartialReturn, TagFulfill, TagOut, ToolCheckout
from ..services import lifecycle
from ..services.allocation import LineDraft, checkout_tools
from ..services.availability import inventory_summary

router = APIRouter(prefix="/api/v1/tools", tags=["tools"], dependencies=[Depends(require_api_key)])


def _require_loan(db: Session, tag_id: int) -> None:
    tag = lifecycle.require_tag(db, tag_id)
    if not tag.is_loan:
        raise InvalidStateError(f"Tag {tag.id} is not a tool checkout", entity_id=tag.id, state=tag.status)


@router.get("/stats", response_model=ToolStats)
def api_tool_stats(db: Session = Depends(get_db)):
    return lifecycle.tool_stats(db)


@router.get("/inventory", response_model=list[InventorySummaryItem])
def api_tool_inventory(db: Session = Depends(get_db)):
    return inventory_summary(db, CategoryType.TOOL)


@router.post("/checkout", response_model=TagOut, status_code=201)
def api_checkout(payload: ToolCheckout, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)):
    try:
        return checkout_tools(
            db,
            customer_name=payload.customer_name,
            lines=[LineDraft(**line.model_dump()) for line in payload.lines],
            actor=principal.name,
            project_name=payload.project_name,
            notes=payload.notes,
            due_date=payload.due_date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/{tag_id}/return", response_model=TagOut)
def api_return(
    tag_id: int, payload: TagFulfill, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    _require_loan(db, tag_id)
    return lifecycle.fulfill(db, tag_id, actor=principal.name, condition=payload.condition, notes=payload.notes)


@router.post("/{tag_id}/partial-return", response_model=TagOut)
def api_partial_return(
    tag_id: int, payload: PartialReturn, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    _require_loan(db, tag_id)
    return lifecycle.partial_return(
        db, tag_id, payload.selections, actor=principal.name, condition=payload.condition, notes=payload.notes
    )
