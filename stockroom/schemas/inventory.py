from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class AvailabilityOut(BaseModel):
    sku_id: int
    total: int
    available: int
    reserved: int
    broken: int
    loaned: int
    total_value: float
    average_cost: float


class InventorySummaryItem(AvailabilityOut):
    sku_code: str
    sku_name: str
    status: Optional[str] = None


class ToolStats(BaseModel):
    tool_skus: int
    total: int
    available: int
    reserved: int
    broken: int
    loaned: int
    total_value: float
    overdue_loans: int
