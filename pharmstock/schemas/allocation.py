# FILE: pharmstock/schemas/allocation.py
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pharmstock.models.medicine import UnitType
from pharmstock.schemas.common import SupplierRefOut


class AllocationStrategy(str, Enum):
    FEFO = "FEFO"        # earliest expiry first
    FIFO = "FIFO"        # earliest manufacture first
    RECEIPT = "RECEIPT"  # creation order only


class BatchSelection(BaseModel):
    batch_id: int
    batch_no: str
    quantity: int = Field(gt=0)
    available_qty: int
    expiry_date: date
    manufacturing_date: date
    storage_location: str = ""
    supplier: Optional[SupplierRefOut] = None
    received_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AllocationPlan(BaseModel):
    medicine_id: int
    store_id: int
    unit_type: UnitType
    strategy: AllocationStrategy
    selections: List[BatchSelection] = []
    total_requested: int
    total_selected: int
    shortfall: int
    can_fulfill: bool
