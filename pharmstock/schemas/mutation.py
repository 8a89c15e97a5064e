# FILE: pharmstock/schemas/mutation.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from pharmstock.schemas.allocation import AllocationPlan
from pharmstock.schemas.reconcile import SyncResult


class BatchQuantity(BaseModel):
    """Requested change for one batch (quantity is always positive; direction is the call)."""
    batch_id: int
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class BatchChangeOut(BaseModel):
    batch_id: int
    batch_no: str
    medicine_id: int
    quantity_changed: int   # signed
    previous_qty: int
    new_qty: int
    ledger_entry_id: Optional[int] = None


class DispenseResult(BaseModel):
    plan: AllocationPlan
    committed: bool
    attempts: int
    changes: List[BatchChangeOut] = []
    sync: Optional[SyncResult] = None
