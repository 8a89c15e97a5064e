# FILE: pharmstock/services/engine.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from pharmstock.core.config import settings
from pharmstock.db.session import SessionFactory, session_scope
from pharmstock.models.batch import MedicineBatch
from pharmstock.models.ledger import ChangeType
from pharmstock.models.medicine import Medicine, UnitType
from pharmstock.models.purchase_return import ReturnStatus
from pharmstock.schemas.allocation import AllocationPlan, AllocationStrategy
from pharmstock.schemas.common import DocumentRef
from pharmstock.schemas.ledger import LedgerEntryOut, LedgerPage, LedgerPurgeOut, LedgerSummaryOut
from pharmstock.schemas.mutation import BatchChangeOut, DispenseResult
from pharmstock.schemas.purchase_return import PurchaseReturnCreate, RestorationReport, TransitionResult
from pharmstock.schemas.reconcile import ExpiryRefreshOut, LegacyMigrationOut, StoreSyncReport, SyncResult
from pharmstock.services import batch_store, ledger, low_stock, purchase_returns
from pharmstock.services.allocation import allocate
from pharmstock.services.errors import InsufficientBatchStock
from pharmstock.services.lot_mutator import commit_addition, commit_deduction
from pharmstock.services.reconciler import synchronize, synchronize_store

logger = logging.getLogger(__name__)


class InventoryEngine:
    """
    Entry point for callers (HTTP layer, jobs). Holds no state besides the injected
    session factory; every public method is one transaction via session_scope.

    ORM rows returned from here are detached (expire_on_commit=False) snapshots.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def _tx(self):
        return session_scope(self._session_factory)

    # -------------------------
    # Batch store
    # -------------------------

    def create_batch(self, **kwargs) -> MedicineBatch:
        with self._tx() as db:
            return batch_store.create_batch(db, **kwargs)

    def deactivate_batch(self, batch_id: int, *, store_id: Optional[int] = None, actor: Any = None) -> MedicineBatch:
        with self._tx() as db:
            return batch_store.deactivate_batch(db, batch_id=batch_id, store_id=store_id, actor=actor)

    def find_active_batches(
        self,
        medicine_id: int,
        store_id: int,
        unit_type: UnitType,
        *,
        expired_only: bool = False,
        exclude_expired: bool = False,
    ) -> List[MedicineBatch]:
        with self._tx() as db:
            return batch_store.find_active_batches(
                db,
                medicine_id=medicine_id,
                store_id=store_id,
                unit_type=unit_type,
                expired_only=expired_only,
                exclude_expired=exclude_expired,
            )

    def refresh_expired_status(self, store_id: Optional[int] = None) -> ExpiryRefreshOut:
        with self._tx() as db:
            return batch_store.refresh_expired_status(db, store_id=store_id)

    def expiring_batches(self, store_id: int, days_ahead: Optional[int] = None) -> List[MedicineBatch]:
        with self._tx() as db:
            return batch_store.expiring_batches(db, store_id=store_id, days_ahead=days_ahead)

    def expired_batches(self, store_id: int) -> List[MedicineBatch]:
        with self._tx() as db:
            return batch_store.expired_batches(db, store_id=store_id)

    def receive_stock(self, **kwargs) -> MedicineBatch:
        with self._tx() as db:
            return batch_store.receive_stock(db, **kwargs)

    def migrate_legacy_stock(self, store_id: int, *, actor: Any = None) -> LegacyMigrationOut:
        with self._tx() as db:
            return batch_store.migrate_legacy_stock(db, store_id=store_id, actor=actor)

    # -------------------------
    # Allocation / mutation
    # -------------------------

    def allocate(
        self,
        medicine_id: int,
        store_id: int,
        unit_type: UnitType,
        required_qty: int,
        strategy: Optional[AllocationStrategy] = None,
    ) -> AllocationPlan:
        with self._tx() as db:
            return allocate(
                db,
                medicine_id=medicine_id,
                store_id=store_id,
                unit_type=unit_type,
                required_qty=required_qty,
                strategy=strategy,
            )

    def commit_deduction(self, selections: Iterable[Any], unit_type: UnitType, actor: Any = None, **kwargs) -> List[BatchChangeOut]:
        with self._tx() as db:
            return commit_deduction(db, selections, unit_type, actor, **kwargs)

    def commit_addition(self, batch_updates: Iterable[Any], unit_type: UnitType, actor: Any = None, **kwargs) -> List[BatchChangeOut]:
        with self._tx() as db:
            return commit_addition(db, batch_updates, unit_type, actor, **kwargs)

    def dispense(
        self,
        medicine_id: int,
        store_id: int,
        unit_type: UnitType,
        quantity: int,
        *,
        strategy: Optional[AllocationStrategy] = None,
        actor: Any = None,
        reference: Optional[DocumentRef] = None,
        notes: str = "",
    ) -> DispenseResult:
        """
        Plan, deduct and resync in one transaction.

        A plan that cannot be fulfilled comes back with committed=False and nothing
        written. If a batch was drained between planning and commit, the whole attempt
        is rolled back and replanned, up to DISPENSE_COMMIT_RETRIES more times.
        """
        max_attempts = 1 + max(int(settings.DISPENSE_COMMIT_RETRIES), 0)
        attempts = 0
        while True:
            attempts += 1
            try:
                with self._tx() as db:
                    plan = allocate(
                        db,
                        medicine_id=medicine_id,
                        store_id=store_id,
                        unit_type=unit_type,
                        required_qty=quantity,
                        strategy=strategy,
                    )
                    if not plan.can_fulfill:
                        return DispenseResult(plan=plan, committed=False, attempts=attempts)

                    changes = commit_deduction(
                        db,
                        plan.selections,
                        unit_type,
                        actor,
                        change_type=ChangeType.SALE,
                        reference=reference,
                        notes=notes,
                        store_id=store_id,
                    )
                    sync = synchronize(db, medicine_id=medicine_id, store_id=store_id)
                    return DispenseResult(plan=plan, committed=True, attempts=attempts, changes=changes, sync=sync)
            except InsufficientBatchStock as exc:
                if attempts >= max_attempts:
                    raise
                logger.warning(
                    "Dispense medicine_id=%s attempt %d lost a race on batch %s (available=%s, requested=%s); replanning",
                    medicine_id, attempts, exc.batch_id, exc.available, exc.requested,
                )

    # -------------------------
    # Reconciliation / low stock
    # -------------------------

    def synchronize(self, medicine_id: int, store_id: int) -> SyncResult:
        with self._tx() as db:
            return synchronize(db, medicine_id=medicine_id, store_id=store_id)

    def synchronize_store(self, store_id: int) -> StoreSyncReport:
        with self._tx() as db:
            return synchronize_store(db, store_id=store_id)

    @staticmethod
    def is_low_stock(medicine: Any) -> bool:
        return low_stock.is_low_stock(medicine)

    def count_low_stock(self, store_id: int, threshold: low_stock.Threshold = low_stock.Threshold.MINIMUM) -> int:
        with self._tx() as db:
            return low_stock.count_low_stock(db, store_id, threshold)

    def find_low_stock(
        self,
        store_id: int,
        *,
        threshold: low_stock.Threshold = low_stock.Threshold.MINIMUM,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Medicine]:
        with self._tx() as db:
            return low_stock.find_low_stock(db, store_id, threshold=threshold, limit=limit, offset=offset)

    # -------------------------
    # Purchase returns
    # -------------------------

    def create_purchase_return(self, data: PurchaseReturnCreate, actor: Any = None) -> int:
        with self._tx() as db:
            return purchase_returns.create_purchase_return(db, data, actor=actor).id

    def transition_purchase_return(
        self,
        return_id: int,
        target: ReturnStatus,
        *,
        store_id: Optional[int] = None,
        actor: Any = None,
        notes: str = "",
    ) -> TransitionResult:
        with self._tx() as db:
            return purchase_returns.transition_purchase_return(
                db, return_id=return_id, target=target, store_id=store_id, actor=actor, notes=notes,
            )

    def retry_restoration(self, return_id: int, *, store_id: Optional[int] = None, actor: Any = None) -> RestorationReport:
        with self._tx() as db:
            return purchase_returns.retry_restoration(db, return_id=return_id, store_id=store_id, actor=actor)

    # -------------------------
    # Ledger
    # -------------------------

    def medicine_history(self, medicine_id: int, store_id: int, **filters) -> LedgerPage:
        with self._tx() as db:
            return ledger.medicine_history(db, medicine_id=medicine_id, store_id=store_id, **filters)

    def store_summary(self, store_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None) -> LedgerSummaryOut:
        with self._tx() as db:
            return ledger.store_summary(db, store_id=store_id, start=start, end=end)

    def purge_ledger(self, days: Optional[int] = None, store_id: Optional[int] = None) -> LedgerPurgeOut:
        with self._tx() as db:
            return ledger.purge_older_than(db, days=days, store_id=store_id)

    def find_ledger_drift(self, store_id: Optional[int] = None, limit: int = 500) -> List[LedgerEntryOut]:
        with self._tx() as db:
            return ledger.find_arithmetic_drift(db, store_id=store_id, limit=limit)
