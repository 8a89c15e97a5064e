# FILE: pharmstock/services/purchase_returns.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from pharmstock.core.config import settings
from pharmstock.models.ledger import ChangeType, LedgerScope, RefType
from pharmstock.models.medicine import Medicine, UnitType
from pharmstock.models.purchase_return import (
    PurchaseReturn,
    PurchaseReturnItem,
    RestorationStatus,
    ReturnStatus,
)
from pharmstock.schemas.common import DocumentRef
from pharmstock.schemas.purchase_return import (
    ItemRestorationOut,
    PurchaseReturnCreate,
    RestorationReport,
    TransitionResult,
)
from pharmstock.services.batch_store import find_active_batch_by_number
from pharmstock.services.errors import (
    InvalidQuantity,
    InvalidStatusTransition,
    MedicineNotFound,
    PharmStockError,
    PurchaseReturnNotFound,
    UnsupportedUnitType,
)
from pharmstock.services.ledger import actor_id_of, record_change
from pharmstock.services.medicines import find_medicine_by_name, get_medicine
from pharmstock.services.number_series import next_document_number

logger = logging.getLogger(__name__)


# pending -> approved -> processed -> completed, rejected from pending/approved
ALLOWED_TRANSITIONS: Dict[ReturnStatus, FrozenSet[ReturnStatus]] = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset({ReturnStatus.PROCESSED, ReturnStatus.REJECTED}),
    ReturnStatus.PROCESSED: frozenset({ReturnStatus.COMPLETED}),
    ReturnStatus.COMPLETED: frozenset(),
    ReturnStatus.REJECTED: frozenset(),
}


def can_transition(current: ReturnStatus, target: ReturnStatus) -> bool:
    return ReturnStatus(target) in ALLOWED_TRANSITIONS[ReturnStatus(current)]


def get_purchase_return(
    db: Session,
    return_id: int,
    store_id: Optional[int] = None,
    *,
    for_update: bool = False,
) -> PurchaseReturn:
    q = db.query(PurchaseReturn).filter(PurchaseReturn.id == return_id)
    if store_id is not None:
        q = q.filter(PurchaseReturn.store_id == store_id)
    if for_update:
        q = q.with_for_update()
    ret = q.first()
    if not ret:
        raise PurchaseReturnNotFound(f"Purchase return not found: {return_id}")
    return ret


def create_purchase_return(db: Session, data: PurchaseReturnCreate, actor: Any = None) -> PurchaseReturn:
    """
    Create a pending return. Items referencing a medicine must point at one in the
    same store; customer-requested items may carry only a name.
    """
    for idx, it in enumerate(data.items, start=1):
        if it.medicine_id is None and not (it.medicine_name or "").strip():
            raise PharmStockError(f"Item #{idx}: medicine_id or medicine_name is required")
        if it.medicine_id is not None:
            get_medicine(db, it.medicine_id, data.store_id)

    return_date = data.return_date or date.today()
    prefix = settings.PURCHASE_RETURN_PREFIX
    uid = actor_id_of(actor)

    ret = PurchaseReturn(
        store_id=data.store_id,
        return_number=next_document_number(db, key=prefix, prefix=prefix, doc_date=return_date),
        original_purchase_id=data.original_purchase_id,
        supplier_id=data.supplier_id,
        return_date=return_date,
        return_reason=data.return_reason or "other",
        notes=(data.notes or "").strip(),
        status=ReturnStatus.PENDING,
        inventory_restoration_status=RestorationStatus.PENDING,
        created_by_id=uid,
        updated_by_id=uid,
    )
    for it in data.items:
        ret.items.append(PurchaseReturnItem(
            original_purchase_item_id=it.original_purchase_item_id,
            medicine_id=it.medicine_id,
            medicine_name=(it.medicine_name or "").strip(),
            is_customer_requested=bool(it.is_customer_requested),
            return_quantity=int(it.return_quantity),
            unit_type=UnitType(it.unit_type).value,
            item_return_reason=it.item_return_reason or "damaged_goods",
            remove_from_inventory=bool(it.remove_from_inventory),
            batch_no=(it.batch_no or "").strip() or None,
            batch_expiry_date=it.batch_expiry_date,
        ))

    db.add(ret)
    db.flush()
    logger.info("Purchase return created id=%s number=%s items=%d", ret.id, ret.return_number, len(ret.items))
    return ret


def _stamp(target: ReturnStatus, uid: Optional[int], now: datetime, notes: str) -> Dict[str, Any]:
    if target == ReturnStatus.APPROVED:
        return {"approved_by_id": uid, "approved_at": now, "approval_notes": (notes or "")[:500]}
    if target == ReturnStatus.PROCESSED:
        return {"processed_by_id": uid, "processed_at": now}
    if target == ReturnStatus.COMPLETED:
        return {"completed_by_id": uid, "completed_at": now}
    if target == ReturnStatus.REJECTED:
        return {"rejected_by_id": uid, "rejected_at": now, "approval_notes": (notes or "")[:500]}
    return {}


def transition_purchase_return(
    db: Session,
    *,
    return_id: int,
    target: ReturnStatus,
    store_id: Optional[int] = None,
    actor: Any = None,
    notes: str = "",
) -> TransitionResult:
    """
    Move a return along its state machine.

    ✅ same-state request = no-op (changed=False), never a second inventory credit
    ✅ the status flip is a compare-and-swap on the current status inside the
       caller's transaction, so two concurrent "complete" calls credit stock once
    ✅ only the change INTO completed restores inventory
    """
    target = ReturnStatus(target)
    ret = get_purchase_return(db, return_id, store_id, for_update=True)
    current = ReturnStatus(ret.status)

    def _result(changed: bool, restoration: Optional[RestorationReport] = None) -> TransitionResult:
        return TransitionResult(
            return_id=ret.id,
            return_number=ret.return_number,
            previous_status=current,
            status=ReturnStatus(ret.status),
            changed=changed,
            restoration=restoration,
        )

    if current == target:
        return _result(False)
    if not can_transition(current, target):
        raise InvalidStatusTransition(f"Cannot move return {ret.return_number} from {current.value} to {target.value}")

    uid = actor_id_of(actor)
    now = datetime.utcnow()
    res = db.execute(
        update(PurchaseReturn)
        .where(PurchaseReturn.id == ret.id, PurchaseReturn.status == current)
        .values(status=target, updated_by_id=uid, updated_at=now, **_stamp(target, uid, now, notes))
        .execution_options(synchronize_session="fetch")
    )
    if not res.rowcount:
        db.refresh(ret)
        if ReturnStatus(ret.status) == target:
            # somebody else got there first
            return _result(False)
        raise InvalidStatusTransition(f"Return {ret.return_number} changed status concurrently")

    logger.info("Purchase return %s: %s -> %s", ret.return_number, current.value, target.value)

    restoration = None
    if target == ReturnStatus.COMPLETED:
        restoration = process_inventory_restoration(db, ret, actor=actor)
    return _result(True, restoration)


def _resolve_item(db: Session, store_id: int, item: PurchaseReturnItem) -> Tuple[Medicine, UnitType, int]:
    """Read-only resolution of one line; raises PharmStockError describing why it can't be applied."""
    try:
        unit = UnitType(item.unit_type)
    except ValueError:
        raise UnsupportedUnitType(f"Unknown unit type '{item.unit_type}'")

    qty = int(item.return_quantity or 0)
    if qty <= 0:
        raise InvalidQuantity("Return quantity must be > 0")

    med = None
    if item.medicine_id is not None:
        try:
            med = get_medicine(db, item.medicine_id, store_id, for_update=True)
        except MedicineNotFound:
            med = None
    if med is None:
        med = find_medicine_by_name(db, store_id, item.medicine_name)
    if med is None:
        raise MedicineNotFound(f"No medicine matching '{item.medicine_name}' (id={item.medicine_id}) in this store")

    if not med.supports(unit):
        raise UnsupportedUnitType(f"{med.name} is not stocked in {unit.value} units")
    return med, unit, qty


def _restore_item(
    db: Session,
    ret: PurchaseReturn,
    item: PurchaseReturnItem,
    med: Medicine,
    unit: UnitType,
    qty: int,
    actor: Any,
    now: datetime,
) -> None:
    previous = med.stock_for(unit)
    new = previous + qty
    med.set_stock(unit, new)

    batch = None
    item.skip_reason = ""
    if item.batch_no:
        batch = find_active_batch_by_number(
            db, medicine_id=med.id, store_id=ret.store_id, batch_no=item.batch_no, for_update=True,
        )
        if batch is not None:
            batch.set_qty(unit, batch.qty_for(unit) + qty)
            batch.updated_by_id = actor_id_of(actor)
        else:
            logger.warning(
                "Return %s item %s: batch %s not found for medicine_id=%s, aggregate restored only",
                ret.return_number, item.id, item.batch_no, med.id,
            )
            item.skip_reason = f"Batch {item.batch_no} not found; aggregate stock restored only"

    record_change(
        db,
        medicine_id=med.id,
        store_id=ret.store_id,
        change_type=ChangeType.PURCHASE_RETURN,
        unit_type=unit,
        quantity_changed=qty,
        previous_qty=previous,
        new_qty=new,
        scope=LedgerScope.MEDICINE,
        reference=DocumentRef(kind=RefType.PURCHASE_RETURN, id=ret.id, number=ret.return_number),
        batch=batch,
        batch_no=item.batch_no,
        batch_expiry_date=item.batch_expiry_date,
        actor=actor,
        notes=f"Purchase return {ret.return_number} completed",
    )

    item.inventory_updated = True
    item.inventory_updated_at = now
    item.inventory_updated_by_id = actor_id_of(actor)
    item.restored_medicine_id = med.id
    item.restored_batch_id = batch.id if batch is not None else None
    item.previous_qty = previous
    item.new_qty = new


def process_inventory_restoration(db: Session, ret: PurchaseReturn, actor: Any = None) -> RestorationReport:
    """
    Apply every eligible line (remove_from_inventory and not yet inventory_updated).

    A line that cannot be resolved is skipped with its reason recorded; it never
    blocks the other lines. Lines already applied are counted, not re-applied.
    """
    now = datetime.utcnow()
    out: List[ItemRestorationOut] = []
    eligible = 0
    updated = 0

    for item in ret.items:
        if not item.remove_from_inventory:
            continue
        eligible += 1

        if not item.inventory_updated:
            try:
                med, unit, qty = _resolve_item(db, ret.store_id, item)
            except PharmStockError as exc:
                item.skip_reason = (exc.detail or str(exc))[:500]
                logger.warning(
                    "Return %s item %s skipped: %s", ret.return_number, item.id, item.skip_reason,
                )
            else:
                _restore_item(db, ret, item, med, unit, qty, actor, now)
                logger.info(
                    "Return %s item %s restored %s %s to medicine_id=%s (%s -> %s)",
                    ret.return_number, item.id, qty, unit.value, med.id, item.previous_qty, item.new_qty,
                )

        if item.inventory_updated:
            updated += 1
        out.append(ItemRestorationOut(
            item_id=item.id,
            updated=bool(item.inventory_updated),
            medicine_id=item.restored_medicine_id,
            batch_id=item.restored_batch_id,
            unit_type=item.unit_type,
            quantity=int(item.return_quantity or 0),
            previous_qty=item.previous_qty,
            new_qty=item.new_qty,
            skip_reason=item.skip_reason or "",
        ))

    status = RestorationStatus.COMPLETED if updated == eligible else RestorationStatus.PARTIAL
    ret.inventory_restoration_status = status
    db.flush()

    logger.info(
        "Return %s restoration %s: %d/%d eligible items applied",
        ret.return_number, status.value, updated, eligible,
    )
    return RestorationReport(return_id=ret.id, status=status, items=out)


def retry_restoration(
    db: Session,
    *,
    return_id: int,
    store_id: Optional[int] = None,
    actor: Any = None,
) -> RestorationReport:
    """Re-run restoration for a completed return whose lines were partly skipped."""
    ret = get_purchase_return(db, return_id, store_id, for_update=True)
    if ReturnStatus(ret.status) != ReturnStatus.COMPLETED:
        raise InvalidStatusTransition(f"Return {ret.return_number} is not completed")
    return process_inventory_restoration(db, ret, actor=actor)
