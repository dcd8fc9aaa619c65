from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from ..core.domain_types import Condition


class StockReceipt(BaseModel):
    sku_id: int
    quantity: int = Field(gt=0, le=10000)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    location: Optional[str] = None
    supplier: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    acquisition_date: Optional[date] = None


class QuantityAdjustment(BaseModel):
    sku_id: int
    adjustment: int
    reason: Optional[str] = None


class InstanceUpdate(BaseModel):
    location: Optional[str] = None
    supplier: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class ConditionChange(BaseModel):
    condition: Condition
    reason: Optional[str] = None
    notes: Optional[str] = None


class InstanceOut(BaseModel):
    id: int
    sku_id: int
    sku_code: Optional[str] = None
    acquisition_date: str
    acquisition_cost: float
    location: Optional[str] = None
    supplier: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    added_by: str
    tag_id: Optional[int] = None
    version: int
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class InstanceConditionOut(BaseModel):
    instance: InstanceOut
    condition: str
    tag_id: Optional[int] = None


class AdjustmentResult(BaseModel):
    action: str
    quantity: int
    instance_ids: List[int]
    unit_cost: Optional[float] = None
    total_value_removed: Optional[float] = None
    average_cost_removed: Optional[float] = None


class CostGroup(BaseModel):
    acquisition_cost: float
    count: int
    oldest_date: str
    newest_date: str
    locations: List[str] = []
    suppliers: List[str] = []
