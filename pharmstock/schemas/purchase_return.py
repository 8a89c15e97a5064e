# FILE: pharmstock/schemas/purchase_return.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pharmstock.models.medicine import UnitType
from pharmstock.models.purchase_return import ReturnStatus, RestorationStatus


class ReturnItemIn(BaseModel):
    original_purchase_item_id: Optional[int] = None
    medicine_id: Optional[int] = None
    medicine_name: str = ""
    is_customer_requested: bool = False
    return_quantity: int = Field(gt=0)
    unit_type: UnitType = UnitType.STRIP
    item_return_reason: str = "damaged_goods"
    remove_from_inventory: bool = True
    batch_no: Optional[str] = None
    batch_expiry_date: Optional[date] = None


class PurchaseReturnCreate(BaseModel):
    store_id: int
    original_purchase_id: Optional[int] = None
    supplier_id: Optional[int] = None
    return_date: Optional[date] = None
    return_reason: str = "other"
    notes: str = ""
    items: List[ReturnItemIn] = Field(min_length=1)


class ItemRestorationOut(BaseModel):
    item_id: int
    updated: bool
    medicine_id: Optional[int] = None
    batch_id: Optional[int] = None
    unit_type: Optional[str] = None
    quantity: int = 0
    previous_qty: Optional[int] = None
    new_qty: Optional[int] = None
    skip_reason: str = ""

    model_config = ConfigDict(from_attributes=True)


class RestorationReport(BaseModel):
    return_id: int
    status: RestorationStatus
    items: List[ItemRestorationOut] = []


class TransitionResult(BaseModel):
    return_id: int
    return_number: str
    previous_status: ReturnStatus
    status: ReturnStatus
    changed: bool
    restoration: Optional[RestorationReport] = None
