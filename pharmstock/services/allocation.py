# FILE: pharmstock/services/allocation.py
"""
Batch allocation planning.

allocate() is read-only: it never locks or writes, so it can back availability
checks as well as real sales. The commit step (lot_mutator) re-validates every
quantity it was handed.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from pharmstock.core.config import settings
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.medicine import UnitType
from pharmstock.schemas.allocation import AllocationPlan, AllocationStrategy, BatchSelection
from pharmstock.services.batch_store import active_batches_stmt, whole_quantity
from pharmstock.services.errors import InvalidQuantity
from pharmstock.services.supplier_ref import describe_supplier, supplier_ref_of

logger = logging.getLogger(__name__)


def strategy_order_by(strategy: AllocationStrategy) -> list:
    """
    ORDER BY for a strategy; creation order (created_at, id) is always the tie-break.
    """
    strategy = AllocationStrategy(strategy)
    receipt = [MedicineBatch.created_at.asc(), MedicineBatch.id.asc()]
    if strategy == AllocationStrategy.FEFO:
        return [MedicineBatch.expiry_date.asc(), *receipt]
    if strategy == AllocationStrategy.FIFO:
        return [MedicineBatch.manufacturing_date.asc(), *receipt]
    return receipt


def _required(v: Any) -> int:
    n = whole_quantity(v, "Required quantity")
    if n <= 0:
        raise InvalidQuantity("Required quantity must be > 0")
    return n


def allocate(
    db: Session,
    *,
    medicine_id: int,
    store_id: int,
    unit_type: UnitType,
    required_qty: Any,
    strategy: Optional[AllocationStrategy] = None,
    today: Optional[date] = None,
) -> AllocationPlan:
    """
    Greedy plan over active, unexpired batches with stock in unit_type.

    ✅ never raises for "not enough": shortfall > 0 and can_fulfill=False instead
    ✅ InvalidQuantity for required_qty <= 0
    """
    required = _required(required_qty)
    unit_type = UnitType(unit_type)
    strategy = AllocationStrategy(strategy or settings.DEFAULT_ALLOCATION_STRATEGY)

    q = active_batches_stmt(
        medicine_id=medicine_id,
        store_id=store_id,
        unit_type=unit_type,
        exclude_expired=True,
        today=today,
    ).order_by(*strategy_order_by(strategy))
    batches = db.execute(q).scalars().all()

    remaining = required
    selections: List[BatchSelection] = []
    for b in batches:
        if remaining <= 0:
            break
        available = b.qty_for(unit_type)
        take = min(remaining, available)
        if take <= 0:
            continue
        selections.append(BatchSelection(
            batch_id=b.id,
            batch_no=b.batch_no,
            quantity=take,
            available_qty=available,
            expiry_date=b.expiry_date,
            manufacturing_date=b.manufacturing_date,
            storage_location=b.storage_location or "",
            supplier=describe_supplier(db, supplier_ref_of(b)),
            received_at=b.created_at,
        ))
        remaining -= take

    selected = required - remaining
    plan = AllocationPlan(
        medicine_id=medicine_id,
        store_id=store_id,
        unit_type=unit_type,
        strategy=strategy,
        selections=selections,
        total_requested=required,
        total_selected=selected,
        shortfall=remaining,
        can_fulfill=remaining == 0,
    )
    logger.debug(
        "Allocation medicine_id=%s unit=%s strategy=%s requested=%s selected=%s batches=%s",
        medicine_id, unit_type.value, strategy.value, required, selected,
        [s.batch_id for s in selections],
    )
    return plan
