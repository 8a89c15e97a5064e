# FILE: pharmstock/services/batch_store.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmstock.core.config import settings
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.ledger import ChangeType, LedgerScope, RefType
from pharmstock.models.medicine import Medicine, UnitType
from pharmstock.schemas.common import DocumentRef
from pharmstock.schemas.reconcile import ExpiryRefreshOut, LegacyMigrationOut
from pharmstock.services.errors import (
    BatchNotFound,
    DuplicateBatch,
    InvalidBatchDates,
    InvalidQuantity,
    PharmStockError,
    UnsupportedUnitType,
)
from pharmstock.services.ledger import actor_id_of, record_change
from pharmstock.services.medicines import get_medicine
from pharmstock.services.reconciler import synchronize
from pharmstock.services.supplier_ref import apply_supplier_ref, parse_supplier_ref

logger = logging.getLogger(__name__)


# -------------------------
# Helpers
# -------------------------

def _as_date(v: Any, field: str) -> date:
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str) and v.strip():
        try:
            return date.fromisoformat(v.strip()[:10])
        except ValueError:
            pass
    raise InvalidBatchDates(f"{field} must be a valid date")


def whole_quantity(v: Any, field: str = "Quantity") -> int:
    """Integer value of v; fractional or non-numeric input raises InvalidQuantity instead of truncating."""
    if isinstance(v, bool):
        raise InvalidQuantity(f"{field} must be a whole number")
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        raise InvalidQuantity(f"{field} must be a whole number")
    if not d.is_finite() or d != d.to_integral_value():
        raise InvalidQuantity(f"{field} must be a whole number")
    return int(d)


def _non_negative(v: Any, field: str) -> int:
    if v is None or v == "":
        return 0
    n = whole_quantity(v, field)
    if n < 0:
        raise InvalidQuantity(f"{field} cannot be negative")
    return n


def qty_column(unit_type: UnitType):
    return MedicineBatch.strip_qty if UnitType(unit_type) == UnitType.STRIP else MedicineBatch.individual_qty


def _expired_clause(today: date):
    # the stored flag may be stale in either direction until the sweep runs
    return or_(MedicineBatch.is_expired == True, MedicineBatch.expiry_date < today)  # noqa: E712


def active_batches_stmt(
    *,
    medicine_id: int,
    store_id: int,
    unit_type: UnitType,
    expired_only: bool = False,
    exclude_expired: bool = False,
    today: Optional[date] = None,
):
    """
    Base SELECT for active batches holding stock in the requested unit.
    Callers add ordering (allocation strategies) and locking.
    """
    if expired_only and exclude_expired:
        raise ValueError("expired_only and exclude_expired are mutually exclusive")

    today = today or date.today()
    q = select(MedicineBatch).where(
        MedicineBatch.medicine_id == medicine_id,
        MedicineBatch.store_id == store_id,
        MedicineBatch.is_active == True,  # noqa: E712
        qty_column(unit_type) > 0,
    )
    if expired_only:
        q = q.where(_expired_clause(today))
    elif exclude_expired:
        q = q.where(~_expired_clause(today))
    return q


def find_active_batches(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    unit_type: UnitType,
    expired_only: bool = False,
    exclude_expired: bool = False,
    today: Optional[date] = None,
) -> List[MedicineBatch]:
    q = active_batches_stmt(
        medicine_id=medicine_id,
        store_id=store_id,
        unit_type=unit_type,
        expired_only=expired_only,
        exclude_expired=exclude_expired,
        today=today,
    )
    return list(db.execute(q.order_by(MedicineBatch.id.asc())).scalars().all())


def get_batch(
    db: Session,
    batch_id: int,
    store_id: Optional[int] = None,
    *,
    for_update: bool = False,
    active_only: bool = False,
) -> MedicineBatch:
    q = db.query(MedicineBatch).filter(MedicineBatch.id == batch_id)
    if store_id is not None:
        q = q.filter(MedicineBatch.store_id == store_id)
    if active_only:
        q = q.filter(MedicineBatch.is_active == True)  # noqa: E712
    if for_update:
        q = q.with_for_update()
    b = q.first()
    if not b:
        raise BatchNotFound(f"Batch not found: {batch_id}")
    return b


def find_active_batch_by_number(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    batch_no: str,
    for_update: bool = False,
) -> Optional[MedicineBatch]:
    q = db.query(MedicineBatch).filter(
        MedicineBatch.medicine_id == medicine_id,
        MedicineBatch.store_id == store_id,
        MedicineBatch.batch_no == (batch_no or "").strip(),
        MedicineBatch.is_active == True,  # noqa: E712
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


# -------------------------
# Commands
# -------------------------

def create_batch(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    batch_no: str,
    manufacturing_date: Any,
    expiry_date: Any,
    strip_qty: Any = 0,
    individual_qty: Any = 0,
    storage_location: str = "",
    supplier: Any = None,
    actor: Any = None,
    notes: str = "",
    change_type: ChangeType = ChangeType.PURCHASE,
    reference: Optional[DocumentRef] = None,
) -> MedicineBatch:
    """
    Register a new batch. Initial quantities are written to the ledger
    (0 -> qty, scope BATCH) under change_type.
    """
    get_medicine(db, medicine_id, store_id)

    batch_no = (batch_no or "").strip()
    if not batch_no:
        raise PharmStockError("Batch number is required")

    mfg = _as_date(manufacturing_date, "manufacturing_date")
    exp = _as_date(expiry_date, "expiry_date")
    if mfg >= exp:
        raise InvalidBatchDates("Manufacturing date must be before expiry date")

    strips = _non_negative(strip_qty, "strip_qty")
    individual = _non_negative(individual_qty, "individual_qty")

    if find_active_batch_by_number(db, medicine_id=medicine_id, store_id=store_id, batch_no=batch_no):
        raise DuplicateBatch(f"Batch {batch_no} already exists for this medicine")

    uid = actor_id_of(actor)
    batch = MedicineBatch(
        medicine_id=medicine_id,
        store_id=store_id,
        batch_no=batch_no,
        active_key=batch_no,
        manufacturing_date=mfg,
        expiry_date=exp,
        strip_qty=strips,
        individual_qty=individual,
        storage_location=(storage_location or "").strip(),
        is_active=True,
        is_expired=False,
        created_by_id=uid,
        updated_by_id=uid,
        notes=(notes or "").strip(),
    )
    apply_supplier_ref(batch, parse_supplier_ref(supplier))
    db.add(batch)
    try:
        db.flush()
    except IntegrityError as exc:
        # lost a race against a concurrent create of the same active batch number
        raise DuplicateBatch(f"Batch {batch_no} already exists for this medicine") from exc

    for unit, qty in ((UnitType.STRIP, strips), (UnitType.INDIVIDUAL, individual)):
        if qty > 0:
            record_change(
                db,
                medicine_id=medicine_id,
                store_id=store_id,
                change_type=change_type,
                unit_type=unit,
                quantity_changed=qty,
                previous_qty=0,
                new_qty=qty,
                scope=LedgerScope.BATCH,
                reference=reference,
                batch=batch,
                actor=actor,
                notes=f"Batch {batch_no} created",
            )

    db.flush()
    logger.info(
        "Batch created id=%s medicine_id=%s store_id=%s batch_no=%s strips=%s individual=%s",
        batch.id, medicine_id, store_id, batch_no, strips, individual,
    )
    return batch


def deactivate_batch(
    db: Session,
    *,
    batch_id: int,
    store_id: Optional[int] = None,
    actor: Any = None,
) -> MedicineBatch:
    """
    Soft delete. Idempotent: an inactive batch is returned untouched.
    """
    batch = get_batch(db, batch_id, store_id, for_update=True)
    if not batch.is_active:
        return batch

    batch.is_active = False
    batch.active_key = None
    batch.updated_by_id = actor_id_of(actor)
    db.flush()

    logger.info(
        "Batch deactivated id=%s batch_no=%s remaining strips=%s individual=%s",
        batch.id, batch.batch_no, batch.strip_qty, batch.individual_qty,
    )
    return batch


def refresh_expired_status(
    db: Session,
    *,
    store_id: Optional[int] = None,
    today: Optional[date] = None,
) -> ExpiryRefreshOut:
    """
    Flip is_expired for every batch whose expiry date has passed.
    Idempotent and safe to run concurrently: the UPDATE only touches rows still flagged False.
    """
    today = today or date.today()

    scope = [MedicineBatch.expiry_date < today]
    if store_id is not None:
        scope.append(MedicineBatch.store_id == store_id)

    matched = db.execute(
        select(func.count(MedicineBatch.id)).where(*scope)
    ).scalar_one()

    res = db.execute(
        update(MedicineBatch)
        .where(*scope, MedicineBatch.is_expired == False)  # noqa: E712
        .values(is_expired=True, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    modified = int(res.rowcount or 0)

    logger.info(
        "Expiry sweep store_id=%s as_of=%s matched=%s modified=%s",
        store_id if store_id is not None else "all", today, matched, modified,
    )
    return ExpiryRefreshOut(matched=int(matched), modified=modified, store_id=store_id, as_of=today)


def _with_stock():
    return or_(MedicineBatch.strip_qty > 0, MedicineBatch.individual_qty > 0)


def expiring_batches(
    db: Session,
    *,
    store_id: int,
    days_ahead: Optional[int] = None,
    today: Optional[date] = None,
) -> List[MedicineBatch]:
    """Active batches with stock that are still valid but expire within days_ahead."""
    today = today or date.today()
    days_ahead = settings.EXPIRY_ALERT_DAYS if days_ahead is None else int(days_ahead)
    horizon = today + timedelta(days=days_ahead)

    return list(db.execute(
        select(MedicineBatch)
        .where(and_(
            MedicineBatch.store_id == store_id,
            MedicineBatch.is_active == True,  # noqa: E712
            MedicineBatch.expiry_date >= today,
            MedicineBatch.expiry_date <= horizon,
            _with_stock(),
        ))
        .order_by(MedicineBatch.expiry_date.asc(), MedicineBatch.id.asc())
    ).scalars().all())


def expired_batches(db: Session, *, store_id: int, today: Optional[date] = None) -> List[MedicineBatch]:
    today = today or date.today()
    return list(db.execute(
        select(MedicineBatch)
        .where(and_(
            MedicineBatch.store_id == store_id,
            MedicineBatch.is_active == True,  # noqa: E712
            MedicineBatch.expiry_date < today,
            _with_stock(),
        ))
        .order_by(MedicineBatch.expiry_date.asc(), MedicineBatch.id.asc())
    ).scalars().all())


def receive_stock(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    batch_no: str,
    expiry_date: Any,
    unit_type: UnitType,
    quantity: Any,
    manufacturing_date: Any = None,
    storage_location: str = "",
    supplier: Any = None,
    actor: Any = None,
    reference: Optional[DocumentRef] = None,
) -> MedicineBatch:
    """
    Purchase receipt: add to the active batch with this number, or create it,
    then re-derive the medicine aggregate from its batches.
    An existing batch must carry the same expiry date as the receipt (InvalidBatchDates).
    """
    unit_type = UnitType(unit_type)
    qty = _non_negative(quantity, "quantity")
    if qty <= 0:
        raise InvalidQuantity("Quantity must be > 0")

    med = get_medicine(db, medicine_id, store_id)
    if not med.supports(unit_type):
        raise UnsupportedUnitType(f"{med.name} is not stocked in {unit_type.value} units")

    batch = find_active_batch_by_number(
        db, medicine_id=medicine_id, store_id=store_id, batch_no=batch_no, for_update=True,
    )
    if batch is not None:
        expiry = _as_date(expiry_date, "expiry_date")
        if batch.expiry_date != expiry:
            raise InvalidBatchDates(
                f"Batch {batch.batch_no} is recorded with expiry {batch.expiry_date.isoformat()}, "
                f"receipt says {expiry.isoformat()}"
            )
        previous = batch.qty_for(unit_type)
        batch.set_qty(unit_type, previous + qty)
        batch.updated_by_id = actor_id_of(actor)
        record_change(
            db,
            medicine_id=medicine_id,
            store_id=store_id,
            change_type=ChangeType.PURCHASE,
            unit_type=unit_type,
            quantity_changed=qty,
            previous_qty=previous,
            new_qty=previous + qty,
            scope=LedgerScope.BATCH,
            reference=reference,
            batch=batch,
            actor=actor,
            notes=f"Received into existing batch {batch.batch_no}",
        )
        db.flush()
    else:
        batch = create_batch(
            db,
            medicine_id=medicine_id,
            store_id=store_id,
            batch_no=batch_no,
            manufacturing_date=manufacturing_date or date.today(),
            expiry_date=expiry_date,
            strip_qty=qty if unit_type == UnitType.STRIP else 0,
            individual_qty=qty if unit_type == UnitType.INDIVIDUAL else 0,
            storage_location=storage_location,
            supplier=supplier,
            actor=actor,
            notes=f"Created from {reference.kind.value} {reference.number}" if reference else "",
            change_type=ChangeType.PURCHASE,
            reference=reference,
        )

    synchronize(db, medicine_id=medicine_id, store_id=store_id)
    return batch


def migrate_legacy_stock(
    db: Session,
    *,
    store_id: int,
    actor: Any = None,
    today: Optional[date] = None,
) -> LegacyMigrationOut:
    """
    One batch per active medicine that still only carries flat aggregate stock.
    Medicines that already have an active batch, or no stock at all, are skipped.
    """
    today = today or date.today()
    out = LegacyMigrationOut(store_id=store_id)

    has_batch = (
        select(MedicineBatch.id)
        .where(
            MedicineBatch.medicine_id == Medicine.id,
            MedicineBatch.is_active == True,  # noqa: E712
        )
        .exists()
    )
    medicines = db.execute(
        select(Medicine)
        .where(
            Medicine.store_id == store_id,
            Medicine.is_active == True,  # noqa: E712
            ~has_batch,
        )
        .order_by(Medicine.id.asc())
    ).scalars().all()

    for med in medicines:
        strips = int((med.stock if med.is_legacy else med.strip_stock) or 0)
        individual = int(med.individual_stock or 0)
        if strips <= 0 and individual <= 0:
            out.skipped += 1
            continue

        expiry = med.expiry_date or (today + timedelta(days=settings.LEGACY_BATCH_SHELF_LIFE_DAYS))
        mfg = min(today, expiry - timedelta(days=1))
        batch_no = (med.batch_number or "").strip() or f"LEGACY-{med.id}"

        batch = create_batch(
            db,
            medicine_id=med.id,
            store_id=store_id,
            batch_no=batch_no,
            manufacturing_date=mfg,
            expiry_date=expiry,
            strip_qty=max(strips, 0),
            individual_qty=max(individual, 0),
            actor=actor,
            notes="Migrated from legacy medicine stock",
            change_type=ChangeType.ADJUSTMENT,
            reference=DocumentRef(kind=RefType.MIGRATION, id=med.id, number=f"LEGACY-{med.id}"),
        )
        synchronize(db, medicine_id=med.id, store_id=store_id)
        out.migrated_medicine_ids.append(med.id)
        out.created_batch_ids.append(batch.id)

    logger.info(
        "Legacy stock migration store_id=%s migrated=%d skipped=%d",
        store_id, len(out.migrated_medicine_ids), out.skipped,
    )
    return out
