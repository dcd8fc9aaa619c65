from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..crud.instances import adjust_quantity, list_instances, receive_stock, require_instance, update_instance
from ..crud.catalog import require_sku
from ..db.session import get_db
from ..deps.auth import Principal, require_api_key
from ..schemas.instance import (
    AdjustmentResult,
    ConditionChange,
    CostGroup,
    InstanceConditionOut,
    InstanceOut,
    InstanceUpdate,
    QuantityAdjustment,
    StockReceipt,
)
from ..services.availability import cost_breakdown
from ..services.conditions import change_instance_condition, current_condition

router = APIRouter(prefix="/api/v1/instances", tags=["instances"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=list[InstanceOut])
def api_list_instances(
    sku_id: int = Query(...),
    available_only: bool = Query(default=False),
    limit: int = Query(default=500, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    require_sku(db, sku_id)
    return list_instances(db, sku_id, available_only=available_only, limit=limit, offset=offset)


@router.get("/cost-breakdown/{sku_id}", response_model=list[CostGroup])
def api_cost_breakdown(sku_id: int, db: Session = Depends(get_db)):
    require_sku(db, sku_id)
    return cost_breakdown(db, sku_id)


@router.post("/receive", response_model=list[InstanceOut], status_code=201)
def api_receive(payload: StockReceipt, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)):
    try:
        return receive_stock(db, actor=principal.name, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/adjust", response_model=AdjustmentResult)
def api_adjust(payload: QuantityAdjustment, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)):
    try:
        return adjust_quantity(
            db, sku_id=payload.sku_id, adjustment=payload.adjustment, actor=principal.name, reason=payload.reason
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.patch("/{instance_id}", response_model=InstanceOut)
def api_update_instance(
    instance_id: int, payload: InstanceUpdate, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    instance = require_instance(db, instance_id)
    return update_instance(db, instance, payload.model_dump(exclude_unset=True), actor=principal.name)


@router.put("/{instance_id}/condition", response_model=InstanceConditionOut)
def api_change_condition(
    instance_id: int, payload: ConditionChange, db: Session = Depends(get_db), principal: Principal = Depends(require_api_key)
):
    instance = change_instance_condition(
        db, instance_id, payload.condition, actor=principal.name, reason=payload.reason, notes=payload.notes
    )
    return {
        "instance": InstanceOut.model_validate(instance),
        "condition": current_condition(instance),
        "tag_id": instance.tag_id,
    }
