# FILE: pharmstock/services/medicines.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from pharmstock.models.medicine import Medicine
from pharmstock.services.errors import MedicineNotFound


def get_medicine(
    db: Session,
    medicine_id: int,
    store_id: Optional[int] = None,
    *,
    for_update: bool = False,
) -> Medicine:
    q = db.query(Medicine).filter(Medicine.id == medicine_id)
    if store_id is not None:
        q = q.filter(Medicine.store_id == store_id)
    if for_update:
        q = q.with_for_update()
    med = q.first()
    if not med:
        raise MedicineNotFound(f"Medicine not found: {medicine_id}")
    return med


def find_medicine_by_name(db: Session, store_id: int, name: str) -> Optional[Medicine]:
    """
    Case-insensitive exact name match among ACTIVE medicines of one store.
    Lowest id wins when a store has duplicates.
    """
    name = (name or "").strip()
    if not name:
        return None
    return (
        db.query(Medicine)
        .filter(
            Medicine.store_id == store_id,
            Medicine.is_active == True,  # noqa: E712
            func.lower(Medicine.name) == name.lower(),
        )
        .order_by(Medicine.id.asc())
        .first()
    )
