# FILE: pharmstock/models/batch.py
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Text,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, event,
)
from sqlalchemy.orm import relationship

from pharmstock.db.base import Base


class MedicineBatch(Base):
    """
    One manufacturing/receiving batch (lot) of a medicine within a store.

    ✅ active_key = batch_no while active, NULL once deactivated, so the unique
       constraint only bites among ACTIVE batches (NULLs never collide) and a
       soft-deleted batch number can be received again.
    ✅ never hard-deleted: ledger rows keep pointing at it.
    """
    __tablename__ = "pharm_batches"
    __table_args__ = (
        UniqueConstraint("medicine_id", "store_id", "active_key", name="uq_pharm_batch_active"),
        Index("ix_pharm_batch_medicine_store", "medicine_id", "store_id"),
        Index("ix_pharm_batch_store_expiry", "store_id", "expiry_date"),
        Index("ix_pharm_batch_expired_store", "is_expired", "store_id"),
        CheckConstraint("strip_qty >= 0", name="ck_pharm_batch_strip_qty_nonneg"),
        CheckConstraint("individual_qty >= 0", name="ck_pharm_batch_individual_qty_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    medicine_id = Column(Integer, ForeignKey("pharm_medicines.id"), nullable=False, index=True)
    store_id = Column(Integer, nullable=False, index=True)

    batch_no = Column(String(100), nullable=False)
    active_key = Column(String(100), nullable=True)

    manufacturing_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=False)

    strip_qty = Column(Integer, nullable=False, default=0)
    individual_qty = Column(Integer, nullable=False, default=0)

    storage_location = Column(String(255), nullable=False, default="")

    # Supplier reference is a tagged variant: id, free text, or nothing
    supplier_id = Column(Integer, nullable=True)
    supplier_text = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_expired = Column(Boolean, default=False, nullable=False)

    created_by_id = Column(Integer, nullable=True)
    updated_by_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    medicine = relationship("Medicine", back_populates="batches")

    def qty_for(self, unit_type) -> int:
        if str(getattr(unit_type, "value", unit_type)) == "strip":
            return int(self.strip_qty or 0)
        return int(self.individual_qty or 0)

    def set_qty(self, unit_type, qty: int) -> None:
        if str(getattr(unit_type, "value", unit_type)) == "strip":
            self.strip_qty = qty
        else:
            self.individual_qty = qty

    def expired_on(self, today: date) -> bool:
        return bool(self.expiry_date and self.expiry_date < today)


@event.listens_for(MedicineBatch, "before_insert")
@event.listens_for(MedicineBatch, "before_update")
def _derive_expired_flag(mapper, connection, target: MedicineBatch) -> None:
    # one-way: the flag is advisory and only ever flips to True
    if target.expired_on(date.today()):
        target.is_expired = True
