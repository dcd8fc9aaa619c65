from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.domain_types import CategoryType, Condition, SelectionMethod, TagType


class TagLineIn(BaseModel):
    sku_id: int
    quantity: int = Field(gt=0)
    selection_method: SelectionMethod = SelectionMethod.FIFO
    instance_ids: Optional[List[int]] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_manual(self) -> "TagLineIn":
        if self.selection_method == SelectionMethod.MANUAL and not self.instance_ids:
            raise ValueError("instance_ids are required for manual selection")
        return self


class TagCreate(BaseModel):
    customer_name: str = Field(min_length=1)
    tag_type: TagType = TagType.RESERVED
    lines: List[TagLineIn] = Field(min_length=1)
    project_name: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[date] = None
    domain: Optional[CategoryType] = None


class ToolCheckout(BaseModel):
    customer_name: str = Field(min_length=1)
    lines: List[TagLineIn] = Field(min_length=1)
    project_name: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[date] = None


class TagUpdate(BaseModel):
    notes: Optional[str] = None
    due_date: Optional[date] = None
    project_name: Optional[str] = None


class TagCancel(BaseModel):
    reason: Optional[str] = None


class TagFulfill(BaseModel):
    condition: Condition = Condition.FUNCTIONAL
    notes: Optional[str] = None


class PartialSelection(BaseModel):
    # line id -> instance ids taken off that line
    selections: Dict[int, List[int]] = Field(min_length=1)


class PartialReturn(PartialSelection):
    condition: Condition = Condition.FUNCTIONAL
    notes: Optional[str] = None


class TagLineOut(BaseModel):
    id: int
    sku_id: int
    sku_code: Optional[str] = None
    quantity: int
    remaining_quantity: int
    selection_method: str
    instance_ids: List[int] = []
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class TagOut(BaseModel):
    id: int
    customer_name: str
    tag_type: str
    condition_class: Optional[str] = None
    status: str
    project_name: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[str] = None
    created_by: str
    created_at: str
    last_updated_by: str
    updated_at: str
    fulfilled_by: Optional[str] = None
    fulfilled_at: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancel_reason: Optional[str] = None
    total_quantity: int
    remaining_quantity: int
    lines: List[TagLineOut] = []

    class Config:
        from_attributes = True


class TagStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    active_by_type: Dict[str, int]
    active_quantity: int
    overdue: int
