from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.domain_types import CategoryType
from ..crud.catalog import require_sku
from ..db.session import get_db
from ..deps.auth import require_api_key
from ..schemas.inventory import AvailabilityOut, InventorySummaryItem
from ..services.availability import compute_availability, inventory_summary

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"], dependencies=[Depends(require_api_key)])


@router.get("/summary", response_model=list[InventorySummaryItem])
def api_inventory_summary(category_type: CategoryType | None = Query(default=None), db: Session = Depends(get_db)):
    return inventory_summary(db, category_type)


@router.get("/{sku_id}/availability", response_model=AvailabilityOut)
def api_availability(sku_id: int, db: Session = Depends(get_db)):
    require_sku(db, sku_id)
    return compute_availability(db, sku_id).as_dict()
