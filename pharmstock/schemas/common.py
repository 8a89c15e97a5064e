# FILE: pharmstock/schemas/common.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from pharmstock.models.ledger import RefType


class DocumentRef(BaseModel):
    """Originating document of a stock change (sale, purchase, return, ...)."""
    kind: RefType
    id: Optional[int] = None
    number: str = ""

    model_config = ConfigDict(frozen=True)


class SupplierRefOut(BaseModel):
    kind: str                       # resolved / unresolved / absent
    supplier_id: Optional[int] = None
    raw_text: Optional[str] = None
    name: Optional[str] = None
    found: bool = False
