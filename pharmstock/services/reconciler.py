# FILE: pharmstock/services/reconciler.py
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmstock.models.batch import MedicineBatch
from pharmstock.models.medicine import Medicine, UnitType
from pharmstock.schemas.reconcile import StoreSyncReport, SyncResult, UnitSyncOut
from pharmstock.services.medicines import get_medicine

logger = logging.getLogger(__name__)


def _batch_totals(db: Session, *, medicine_id: int, store_id: int):
    strips, individual, count = db.execute(
        select(
            func.coalesce(func.sum(MedicineBatch.strip_qty), 0),
            func.coalesce(func.sum(MedicineBatch.individual_qty), 0),
            func.count(MedicineBatch.id),
        ).where(
            MedicineBatch.medicine_id == medicine_id,
            MedicineBatch.store_id == store_id,
            MedicineBatch.is_active == True,  # noqa: E712
        )
    ).one()
    return int(strips or 0), int(individual or 0), int(count or 0)


def _sync_medicine(db: Session, med: Medicine) -> SyncResult:
    strips, individual, count = _batch_totals(db, medicine_id=med.id, store_id=med.store_id)

    out = {}
    for unit, total in ((UnitType.STRIP, strips), (UnitType.INDIVIDUAL, individual)):
        old = med.stock_for(unit)
        med.set_stock(unit, total)
        out[unit] = UnitSyncOut(old_aggregate=old, new_aggregate=total, delta=total - old)

    db.flush()
    return SyncResult(
        medicine_id=med.id,
        store_id=med.store_id,
        strips=out[UnitType.STRIP],
        individual=out[UnitType.INDIVIDUAL],
        batch_count=count,
    )


def synchronize(db: Session, *, medicine_id: int, store_id: int) -> SyncResult:
    """
    Overwrite the medicine's aggregate stock with the sum of its active batches.

    Batches are authoritative; the aggregate is a cache. No lock is taken and no
    ledger row is written: this is a repair, not a stock movement.
    """
    med = get_medicine(db, medicine_id, store_id)
    res = _sync_medicine(db, med)
    if res.drifted:
        logger.info(
            "Synchronized medicine_id=%s store_id=%s strips %s->%s individual %s->%s (batches=%s)",
            medicine_id, store_id,
            res.strips.old_aggregate, res.strips.new_aggregate,
            res.individual.old_aggregate, res.individual.new_aggregate,
            res.batch_count,
        )
    return res


def synchronize_store(db: Session, *, store_id: int) -> StoreSyncReport:
    """Scheduled sweep over every active medicine of a store."""
    meds = db.execute(
        select(Medicine)
        .where(Medicine.store_id == store_id, Medicine.is_active == True)  # noqa: E712
        .order_by(Medicine.id.asc())
    ).scalars().all()

    results = []
    drifted = 0
    for med in meds:
        res = _sync_medicine(db, med)
        if res.drifted:
            drifted += 1
            logger.warning(
                "Stock drift corrected medicine_id=%s (%s) strips delta=%s individual delta=%s",
                med.id, med.name, res.strips.delta, res.individual.delta,
            )
        results.append(res)

    logger.info("Store sync store_id=%s medicines=%d drifted=%d", store_id, len(meds), drifted)
    return StoreSyncReport(
        store_id=store_id,
        medicine_count=len(meds),
        drifted_count=drifted,
        results=results,
    )
