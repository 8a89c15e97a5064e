# FILE: pharmstock/models/ledger.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime, Enum, Index

from pharmstock.db.base import Base


class ChangeType(str, enum.Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    SALES_RETURN = "sales_return"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    EXPIRY = "expiry"
    DAMAGE = "damage"
    CORRECTION = "correction"


class RefType(str, enum.Enum):
    SALE = "SALE"
    PURCHASE = "PURCHASE"
    RETURN = "RETURN"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"
    MIGRATION = "MIGRATION"


class LedgerScope(str, enum.Enum):
    BATCH = "BATCH"        # previous/new are the batch's quantities
    MEDICINE = "MEDICINE"  # previous/new are the medicine aggregate


class InventoryLedgerEntry(Base):
    """
    Append-only audit trail: one row per stock mutation.
    Rows are never updated; the only deletion is the retention purge.
    """
    __tablename__ = "pharm_inventory_ledger"
    __table_args__ = (
        Index("ix_pharm_ledger_medicine_time", "medicine_id", "store_id", "created_at"),
        Index("ix_pharm_ledger_store_type_time", "store_id", "change_type", "created_at"),
        Index("ix_pharm_ledger_ref", "ref_type", "ref_id"),
        Index("ix_pharm_ledger_actor_time", "performed_by_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # NO FK on medicine/batch: audit rows must outlive anything they describe
    medicine_id = Column(Integer, nullable=False, index=True)
    store_id = Column(Integer, nullable=False, index=True)

    change_type = Column(Enum(ChangeType, name="pharm_ledger_change_type",
                              values_callable=lambda e: [m.value for m in e]),
                         nullable=False)
    unit_type = Column(String(20), nullable=False)  # strip / individual
    scope = Column(Enum(LedgerScope, name="pharm_ledger_scope"), nullable=False,
                   default=LedgerScope.BATCH)

    quantity_changed = Column(Integer, nullable=False)  # +IN / -OUT
    previous_qty = Column(Integer, nullable=False)
    new_qty = Column(Integer, nullable=False)

    ref_type = Column(String(30), nullable=False, default="")
    ref_id = Column(Integer, nullable=True)
    ref_number = Column(String(100), nullable=False, default="")

    # batch snapshot at the time of change
    batch_id = Column(Integer, nullable=True, index=True)
    batch_no = Column(String(100), nullable=True)
    batch_expiry_date = Column(Date, nullable=True)

    performed_by_id = Column(Integer, nullable=True)  # system jobs may be null
    notes = Column(String(500), nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
