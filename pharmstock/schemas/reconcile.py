# FILE: pharmstock/schemas/reconcile.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel


class UnitSyncOut(BaseModel):
    old_aggregate: int
    new_aggregate: int
    delta: int


class SyncResult(BaseModel):
    medicine_id: int
    store_id: int
    strips: UnitSyncOut
    individual: UnitSyncOut
    batch_count: int

    @property
    def drifted(self) -> bool:
        return bool(self.strips.delta or self.individual.delta)


class StoreSyncReport(BaseModel):
    store_id: int
    medicine_count: int
    drifted_count: int
    results: List[SyncResult] = []


class ExpiryRefreshOut(BaseModel):
    matched: int
    modified: int
    store_id: Optional[int] = None
    as_of: date


class LegacyMigrationOut(BaseModel):
    store_id: int
    migrated_medicine_ids: List[int] = []
    created_batch_ids: List[int] = []
    skipped: int = 0
