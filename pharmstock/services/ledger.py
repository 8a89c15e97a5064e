# FILE: pharmstock/services/ledger.py
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from pharmstock.core.config import settings
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.ledger import ChangeType, InventoryLedgerEntry, LedgerScope
from pharmstock.models.medicine import UnitType
from pharmstock.schemas.common import DocumentRef
from pharmstock.schemas.ledger import (
    LedgerEntryOut,
    LedgerPage,
    LedgerPurgeOut,
    LedgerSummaryOut,
    LedgerSummaryRow,
)

logger = logging.getLogger(__name__)


def actor_id_of(actor: Any) -> Optional[int]:
    """Accept a user object (anything with .id), a raw id, or None for system jobs."""
    if actor is None:
        return None
    if isinstance(actor, int):
        return actor
    return getattr(actor, "id", None)


def record_change(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    change_type: ChangeType,
    unit_type: UnitType,
    quantity_changed: int,
    previous_qty: int,
    new_qty: int,
    scope: LedgerScope = LedgerScope.BATCH,
    reference: Optional[DocumentRef] = None,
    batch: Optional[MedicineBatch] = None,
    batch_no: Optional[str] = None,
    batch_expiry_date=None,
    actor: Any = None,
    notes: str = "",
) -> InventoryLedgerEntry:
    """
    Central creator for ledger rows: always use this so the audit trail is consistent.
    Arithmetic drift is reported, never rejected: it means the reconciler should run.
    """
    if new_qty != previous_qty + quantity_changed:
        logger.warning(
            "Ledger arithmetic mismatch medicine_id=%s unit=%s previous=%s change=%s "
            "expected=%s actual=%s",
            medicine_id, UnitType(unit_type).value, previous_qty, quantity_changed,
            previous_qty + quantity_changed, new_qty,
        )

    entry = InventoryLedgerEntry(
        medicine_id=medicine_id,
        store_id=store_id,
        change_type=ChangeType(change_type),
        unit_type=UnitType(unit_type).value,
        scope=scope,
        quantity_changed=quantity_changed,
        previous_qty=previous_qty,
        new_qty=new_qty,
        ref_type=reference.kind.value if reference else "",
        ref_id=reference.id if reference else None,
        ref_number=(reference.number or "") if reference else "",
        batch_id=batch.id if batch is not None else None,
        batch_no=batch.batch_no if batch is not None else batch_no,
        batch_expiry_date=batch.expiry_date if batch is not None else batch_expiry_date,
        performed_by_id=actor_id_of(actor),
        notes=(notes or "")[:500],
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry


def medicine_history(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    change_type: Optional[ChangeType] = None,
    unit_type: Optional[UnitType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> LedgerPage:
    page = max(int(page or 1), 1)
    limit = max(int(limit or 50), 1)

    conds = [
        InventoryLedgerEntry.medicine_id == medicine_id,
        InventoryLedgerEntry.store_id == store_id,
    ]
    if change_type:
        conds.append(InventoryLedgerEntry.change_type == ChangeType(change_type))
    if unit_type:
        conds.append(InventoryLedgerEntry.unit_type == UnitType(unit_type).value)
    if start:
        conds.append(InventoryLedgerEntry.created_at >= start)
    if end:
        conds.append(InventoryLedgerEntry.created_at <= end)

    total = db.execute(
        select(func.count(InventoryLedgerEntry.id)).where(*conds)
    ).scalar_one()

    rows = db.execute(
        select(InventoryLedgerEntry)
        .where(*conds)
        .order_by(InventoryLedgerEntry.created_at.desc(), InventoryLedgerEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return LedgerPage(
        items=[LedgerEntryOut.model_validate(r) for r in rows],
        page=page,
        limit=limit,
        total=int(total),
        pages=math.ceil(total / limit) if total else 0,
    )


def store_summary(
    db: Session,
    *,
    store_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LedgerSummaryOut:
    end = end or datetime.utcnow()
    start = start or (end - timedelta(days=30))

    strip_net = func.sum(case(
        (InventoryLedgerEntry.unit_type == UnitType.STRIP.value, InventoryLedgerEntry.quantity_changed),
        else_=0,
    ))
    individual_net = func.sum(case(
        (InventoryLedgerEntry.unit_type == UnitType.INDIVIDUAL.value, InventoryLedgerEntry.quantity_changed),
        else_=0,
    ))

    rows = db.execute(
        select(
            InventoryLedgerEntry.change_type,
            func.count(InventoryLedgerEntry.id),
            func.sum(InventoryLedgerEntry.quantity_changed),
            strip_net,
            individual_net,
        )
        .where(
            InventoryLedgerEntry.store_id == store_id,
            InventoryLedgerEntry.created_at >= start,
            InventoryLedgerEntry.created_at <= end,
        )
        .group_by(InventoryLedgerEntry.change_type)
        .order_by(InventoryLedgerEntry.change_type)
    ).all()

    return LedgerSummaryOut(
        store_id=store_id,
        start=start,
        end=end,
        rows=[
            LedgerSummaryRow(
                change_type=ct,
                count=int(cnt or 0),
                net_quantity=int(net or 0),
                strip_net=int(s or 0),
                individual_net=int(i or 0),
            )
            for ct, cnt, net, s, i in rows
        ],
    )


def find_arithmetic_drift(db: Session, *, store_id: Optional[int] = None, limit: int = 500) -> List[LedgerEntryOut]:
    q = select(InventoryLedgerEntry).where(
        InventoryLedgerEntry.new_qty
        != InventoryLedgerEntry.previous_qty + InventoryLedgerEntry.quantity_changed
    )
    if store_id is not None:
        q = q.where(InventoryLedgerEntry.store_id == store_id)
    rows = db.execute(q.order_by(InventoryLedgerEntry.id.asc()).limit(limit)).scalars().all()
    return [LedgerEntryOut.model_validate(r) for r in rows]


def purge_older_than(
    db: Session,
    *,
    days: Optional[int] = None,
    store_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LedgerPurgeOut:
    """
    Retention purge: the ONLY way ledger rows ever disappear.
    """
    days = settings.LEDGER_RETENTION_DAYS if days is None else int(days)
    if days <= 0:
        raise ValueError("Retention days must be > 0")

    cutoff = (now or datetime.utcnow()) - timedelta(days=days)
    conds = [InventoryLedgerEntry.created_at < cutoff]
    if store_id is not None:
        conds.append(InventoryLedgerEntry.store_id == store_id)
    res = db.execute(
        delete(InventoryLedgerEntry)
        .where(*conds)
        .execution_options(synchronize_session=False)
    )
    deleted = int(res.rowcount or 0)
    logger.info("Purged %d ledger entries older than %s (%d days)", deleted, cutoff, days)
    return LedgerPurgeOut(deleted=deleted, cutoff=cutoff)
