# FILE: pharmstock/services/lot_mutator.py
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmstock.models.batch import MedicineBatch
from pharmstock.models.ledger import ChangeType, LedgerScope
from pharmstock.models.medicine import UnitType
from pharmstock.schemas.common import DocumentRef
from pharmstock.schemas.mutation import BatchChangeOut
from pharmstock.services.batch_store import whole_quantity
from pharmstock.services.errors import BatchNotFound, InsufficientBatchStock, InvalidQuantity
from pharmstock.services.ledger import actor_id_of, record_change

logger = logging.getLogger(__name__)


def _requested_by_batch(updates: Iterable[Any]) -> "OrderedDict[int, int]":
    """
    Accepts BatchSelection / BatchQuantity models or plain dicts with batch_id + quantity.
    Repeated batch ids are summed so sufficiency is checked against the total.
    """
    out: "OrderedDict[int, int]" = OrderedDict()
    for u in updates or []:
        if isinstance(u, dict):
            batch_id, qty = u.get("batch_id"), u.get("quantity")
        else:
            batch_id, qty = getattr(u, "batch_id", None), getattr(u, "quantity", None)

        if batch_id is None:
            raise BatchNotFound("Batch id is required")
        qty = whole_quantity(qty, f"Quantity for batch {batch_id}")
        if qty <= 0:
            raise InvalidQuantity(f"Quantity for batch {batch_id} must be > 0")

        out[int(batch_id)] = out.get(int(batch_id), 0) + qty

    if not out:
        raise InvalidQuantity("No batch quantities given")
    return out


def _lock_batches(db: Session, batch_ids: Iterable[int], store_id: Optional[int]) -> Dict[int, MedicineBatch]:
    ids = sorted(set(batch_ids))
    # ascending id order so concurrent commits always lock in the same sequence;
    # populate_existing so rows cached by the planning step are re-read
    q = (
        select(MedicineBatch)
        .where(MedicineBatch.id.in_(ids))
        .order_by(MedicineBatch.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    rows = {b.id: b for b in db.execute(q).scalars().all()}

    for bid in ids:
        b = rows.get(bid)
        if b is None or not b.is_active or (store_id is not None and b.store_id != store_id):
            raise BatchNotFound(f"Batch not found: {bid}")
    return rows


def _apply(
    db: Session,
    *,
    sign: int,
    batch_updates: Iterable[Any],
    unit_type: UnitType,
    actor: Any,
    change_type: ChangeType,
    reference: Optional[DocumentRef],
    notes: str,
    store_id: Optional[int],
) -> List[BatchChangeOut]:
    unit_type = UnitType(unit_type)
    requested = _requested_by_batch(batch_updates)
    batches = _lock_batches(db, requested.keys(), store_id)

    # validate everything before the first write
    if sign < 0:
        for bid in sorted(requested):
            b = batches[bid]
            available = b.qty_for(unit_type)
            if available < requested[bid]:
                raise InsufficientBatchStock(bid, available, requested[bid], b.batch_no)

    uid = actor_id_of(actor)
    entries = []
    for bid, qty in requested.items():
        b = batches[bid]
        previous = b.qty_for(unit_type)
        new = previous + sign * qty
        b.set_qty(unit_type, new)
        b.updated_by_id = uid

        entry = record_change(
            db,
            medicine_id=b.medicine_id,
            store_id=b.store_id,
            change_type=change_type,
            unit_type=unit_type,
            quantity_changed=sign * qty,
            previous_qty=previous,
            new_qty=new,
            scope=LedgerScope.BATCH,
            reference=reference,
            batch=b,
            actor=actor,
            notes=notes,
        )
        entries.append((b, previous, new, entry))

    db.flush()

    changes = [
        BatchChangeOut(
            batch_id=b.id,
            batch_no=b.batch_no,
            medicine_id=b.medicine_id,
            quantity_changed=new - previous,
            previous_qty=previous,
            new_qty=new,
            ledger_entry_id=entry.id,
        )
        for b, previous, new, entry in entries
    ]
    logger.info(
        "%s committed unit=%s change=%s batches=%s",
        "Deduction" if sign < 0 else "Addition",
        unit_type.value,
        ChangeType(change_type).value,
        [(c.batch_id, c.quantity_changed) for c in changes],
    )
    return changes


def commit_deduction(
    db: Session,
    selections: Iterable[Any],
    unit_type: UnitType,
    actor: Any = None,
    *,
    change_type: ChangeType = ChangeType.SALE,
    reference: Optional[DocumentRef] = None,
    notes: str = "",
    store_id: Optional[int] = None,
) -> List[BatchChangeOut]:
    """
    Deduct the selected quantities from their batches, all or nothing.

    Every touched batch is locked (FOR UPDATE) and re-read; if any one holds less
    than requested, InsufficientBatchStock is raised before anything is written and
    the caller's transaction rolls back.
    One BATCH-scope ledger entry per batch with a negative delta.
    """
    return _apply(
        db,
        sign=-1,
        batch_updates=selections,
        unit_type=unit_type,
        actor=actor,
        change_type=change_type,
        reference=reference,
        notes=notes,
        store_id=store_id,
    )


def commit_addition(
    db: Session,
    batch_updates: Iterable[Any],
    unit_type: UnitType,
    actor: Any = None,
    *,
    change_type: ChangeType = ChangeType.SALES_RETURN,
    reference: Optional[DocumentRef] = None,
    notes: str = "",
    store_id: Optional[int] = None,
) -> List[BatchChangeOut]:
    """Add quantities back to batches (customer returns, positive adjustments)."""
    return _apply(
        db,
        sign=1,
        batch_updates=batch_updates,
        unit_type=unit_type,
        actor=actor,
        change_type=change_type,
        reference=reference,
        notes=notes,
        store_id=store_id,
    )
