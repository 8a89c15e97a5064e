# FILE: pharmstock/services/supplier_ref.py
"""
Supplier reference on a batch: a stored id, free text typed at receipt time, or nothing.

Stored ids are frequently stale, so resolution is lazy and "not found" is a normal
answer, never an error. No core operation requires a supplier.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from pharmstock.models.batch import MedicineBatch
from pharmstock.models.medicine import Supplier
from pharmstock.schemas.common import SupplierRefOut


@dataclass(frozen=True)
class ResolvedSupplier:
    supplier_id: int


@dataclass(frozen=True)
class UnresolvedSupplier:
    raw_text: str


@dataclass(frozen=True)
class NoSupplier:
    pass


SupplierRef = Union[ResolvedSupplier, UnresolvedSupplier, NoSupplier]


def parse_supplier_ref(value: Any) -> SupplierRef:
    """
    int / digit-only string -> ResolvedSupplier
    other non-empty string  -> UnresolvedSupplier
    None / ""               -> NoSupplier
    """
    if isinstance(value, (ResolvedSupplier, UnresolvedSupplier, NoSupplier)):
        return value
    if isinstance(value, Supplier):
        return ResolvedSupplier(int(value.id))
    if value is None or isinstance(value, bool):
        return NoSupplier()
    if isinstance(value, int):
        return ResolvedSupplier(value)
    text = str(value).strip()
    if not text:
        return NoSupplier()
    if text.isdigit():
        return ResolvedSupplier(int(text))
    return UnresolvedSupplier(text)


def supplier_ref_of(batch: MedicineBatch) -> SupplierRef:
    if batch.supplier_id is not None:
        return ResolvedSupplier(int(batch.supplier_id))
    if batch.supplier_text:
        return UnresolvedSupplier(batch.supplier_text)
    return NoSupplier()


def apply_supplier_ref(batch: MedicineBatch, ref: SupplierRef) -> None:
    batch.supplier_id = ref.supplier_id if isinstance(ref, ResolvedSupplier) else None
    batch.supplier_text = ref.raw_text if isinstance(ref, UnresolvedSupplier) else None


def resolve_supplier(db: Session, ref: SupplierRef) -> Optional[Supplier]:
    if isinstance(ref, ResolvedSupplier):
        return db.get(Supplier, ref.supplier_id)
    return None


def describe_supplier(db: Session, ref: SupplierRef) -> SupplierRefOut:
    if isinstance(ref, ResolvedSupplier):
        sup = resolve_supplier(db, ref)
        return SupplierRefOut(
            kind="resolved",
            supplier_id=ref.supplier_id,
            name=sup.name if sup else None,
            found=sup is not None,
        )
    if isinstance(ref, UnresolvedSupplier):
        return SupplierRefOut(kind="unresolved", raw_text=ref.raw_text, name=ref.raw_text)
    return SupplierRefOut(kind="absent")
