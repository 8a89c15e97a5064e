# FILE: pharmstock/models/purchase_return.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Text, Enum,
    ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from pharmstock.db.base import Base


class ReturnStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    COMPLETED = "completed"
    REJECTED = "rejected"


class RestorationStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


_values = dict(values_callable=lambda e: [m.value for m in e])


class PurchaseReturn(Base):
    __tablename__ = "pharm_purchase_returns"
    __table_args__ = (
        Index("ix_pharm_return_store_date", "store_id", "return_date"),
        Index("ix_pharm_return_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, nullable=False, index=True)
    return_number = Column(String(50), unique=True, nullable=False, index=True)

    original_purchase_id = Column(Integer, nullable=True, index=True)
    supplier_id = Column(Integer, nullable=True)

    return_date = Column(Date, nullable=False, default=lambda: datetime.utcnow().date())
    return_reason = Column(String(50), nullable=False, default="other")
    notes = Column(Text, nullable=False, default="")

    status = Column(Enum(ReturnStatus, name="pharm_return_status", **_values),
                    nullable=False, default=ReturnStatus.PENDING)
    inventory_restoration_status = Column(
        Enum(RestorationStatus, name="pharm_return_restoration_status", **_values),
        nullable=False, default=RestorationStatus.PENDING)

    approved_by_id = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approval_notes = Column(String(500), nullable=False, default="")

    processed_by_id = Column(Integer, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    completed_by_id = Column(Integer, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    rejected_by_id = Column(Integer, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    created_by_id = Column(Integer, nullable=True)
    updated_by_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship(
        "PurchaseReturnItem",
        back_populates="purchase_return",
        cascade="all, delete-orphan",
        order_by="PurchaseReturnItem.id",
    )


class PurchaseReturnItem(Base):
    __tablename__ = "pharm_purchase_return_items"
    __table_args__ = (
        CheckConstraint("return_quantity >= 0", name="ck_pharm_return_item_qty_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    return_id = Column(Integer, ForeignKey("pharm_purchase_returns.id", ondelete="CASCADE"),
                       nullable=False, index=True)

    original_purchase_item_id = Column(Integer, nullable=True)

    # NULL for customer-requested items that never made it into inventory
    medicine_id = Column(Integer, nullable=True, index=True)
    medicine_name = Column(String(255), nullable=False, default="")
    is_customer_requested = Column(Boolean, nullable=False, default=False)

    return_quantity = Column(Integer, nullable=False, default=0)
    unit_type = Column(String(20), nullable=False, default="strip")
    item_return_reason = Column(String(50), nullable=False, default="damaged_goods")
    remove_from_inventory = Column(Boolean, nullable=False, default=True)

    # batch snapshot
    batch_no = Column(String(100), nullable=True)
    batch_expiry_date = Column(Date, nullable=True)

    # inventory effect (written exactly once, on completion)
    inventory_updated = Column(Boolean, nullable=False, default=False)
    inventory_updated_at = Column(DateTime, nullable=True)
    inventory_updated_by_id = Column(Integer, nullable=True)
    restored_medicine_id = Column(Integer, nullable=True)
    restored_batch_id = Column(Integer, nullable=True)
    previous_qty = Column(Integer, nullable=True)
    new_qty = Column(Integer, nullable=True)
    skip_reason = Column(String(500), nullable=False, default="")

    purchase_return = relationship("PurchaseReturn", back_populates="items")
