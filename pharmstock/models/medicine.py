# FILE: pharmstock/models/medicine.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from pharmstock.db.base import Base


class UnitType(str, enum.Enum):
    STRIP = "strip"
    INDIVIDUAL = "individual"


class Medicine(Base):
    """
    Sellable product within one store, tracked in two independent units.

    - has_strips / has_individual are business configuration; both NULL = legacy record
      that only carries the flat stock/min_stock pair
    - strip_stock / individual_stock are a denormalized cache of the active batches
      (see services.reconciler.synchronize)
    """
    __tablename__ = "pharm_medicines"
    __table_args__ = (
        Index("ix_pharm_medicine_store_active", "store_id", "is_active"),
        Index("ix_pharm_medicine_store_name", "store_id", "name"),
        CheckConstraint("strip_stock >= 0", name="ck_pharm_medicine_strip_stock_nonneg"),
        CheckConstraint("individual_stock >= 0", name="ck_pharm_medicine_individual_stock_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # NO FK: stores live in the (excluded) tenant/store service
    store_id = Column(Integer, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    generic_name = Column(String(255), default="")
    manufacturer = Column(String(255), default="")

    # Dual unit configuration (NULL/NULL = legacy)
    has_strips = Column(Boolean, nullable=True)
    has_individual = Column(Boolean, nullable=True)
    units_per_strip = Column(Integer, nullable=False, default=10)

    strip_stock = Column(Integer, nullable=False, default=0)
    strip_min_stock = Column(Integer, nullable=False, default=5)
    strip_reorder_level = Column(Integer, nullable=False, default=10)

    individual_stock = Column(Integer, nullable=False, default=0)
    individual_min_stock = Column(Integer, nullable=False, default=50)
    individual_reorder_level = Column(Integer, nullable=False, default=100)

    # Legacy flat fields (pre dual-unit records)
    stock = Column(Integer, nullable=True, default=0)
    min_stock = Column(Integer, nullable=True, default=5)
    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    batches = relationship("MedicineBatch", back_populates="medicine")

    @property
    def is_legacy(self) -> bool:
        return self.has_strips is None and self.has_individual is None

    def supports(self, unit_type: UnitType) -> bool:
        if self.is_legacy:
            # legacy records are strips-only
            return UnitType(unit_type) == UnitType.STRIP
        if UnitType(unit_type) == UnitType.STRIP:
            return bool(self.has_strips)
        return bool(self.has_individual)

    def stock_for(self, unit_type: UnitType) -> int:
        if UnitType(unit_type) == UnitType.STRIP:
            return int(self.strip_stock or 0)
        return int(self.individual_stock or 0)

    def set_stock(self, unit_type: UnitType, qty: int) -> None:
        """
        Write the aggregate for one unit and keep the legacy flat field mirrored
        (strips when present, otherwise individual units).
        """
        if UnitType(unit_type) == UnitType.STRIP:
            self.strip_stock = qty
            if self.has_strips or self.is_legacy:
                self.stock = qty
        else:
            self.individual_stock = qty
            if self.has_individual and not self.has_strips:
                self.stock = qty


class Supplier(Base):
    __tablename__ = "pharm_suppliers"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    contact_person = Column(String(255), default="")
    phone = Column(String(50), default="")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
