# FILE: pharmstock/schemas/ledger.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from pharmstock.models.ledger import ChangeType, LedgerScope


class LedgerEntryOut(BaseModel):
    id: int
    medicine_id: int
    store_id: int
    change_type: ChangeType
    unit_type: str
    scope: LedgerScope
    quantity_changed: int
    previous_qty: int
    new_qty: int
    ref_type: str = ""
    ref_id: Optional[int] = None
    ref_number: str = ""
    batch_id: Optional[int] = None
    batch_no: Optional[str] = None
    batch_expiry_date: Optional[date] = None
    performed_by_id: Optional[int] = None
    notes: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerPage(BaseModel):
    items: List[LedgerEntryOut] = []
    page: int
    limit: int
    total: int
    pages: int


class LedgerSummaryRow(BaseModel):
    change_type: ChangeType
    count: int
    net_quantity: int
    strip_net: int
    individual_net: int


class LedgerSummaryOut(BaseModel):
    store_id: int
    start: datetime
    end: datetime
    rows: List[LedgerSummaryRow] = []


class LedgerPurgeOut(BaseModel):
    deleted: int
    cutoff: datetime
