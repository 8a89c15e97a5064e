# FILE: pharmstock/services/errors.py
from __future__ import annotations

from typing import Optional


class PharmStockError(Exception):
    """
    Base for every domain error raised by the inventory engine.
    status_code is a hint for the HTTP layer (mirrors HTTPException usage there).
    """
    status_code: int = 400

    def __init__(self, detail: str = "", *, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class InvalidQuantity(PharmStockError):
    pass


class InvalidBatchDates(PharmStockError):
    pass


class UnsupportedUnitType(PharmStockError):
    pass


class DuplicateBatch(PharmStockError):
    status_code = 409


class BatchNotFound(PharmStockError):
    status_code = 404


class MedicineNotFound(PharmStockError):
    status_code = 404


class PurchaseReturnNotFound(PharmStockError):
    status_code = 404


class InvalidStatusTransition(PharmStockError):
    status_code = 409


class InsufficientBatchStock(PharmStockError):
    status_code = 409

    def __init__(self, batch_id: int, available: int, requested: int, batch_no: str = ""):
        super().__init__(
            f"Insufficient stock in batch {batch_no or batch_id}. "
            f"Available: {available}, Required: {requested}"
        )
        self.batch_id = batch_id
        self.batch_no = batch_no
        self.available = available
        self.requested = requested
