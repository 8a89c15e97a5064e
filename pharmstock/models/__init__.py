# pharmstock/models/__init__.py
from .medicine import Medicine, Supplier, UnitType
from .batch import MedicineBatch
from .ledger import InventoryLedgerEntry, ChangeType, RefType, LedgerScope
from .purchase_return import PurchaseReturn, PurchaseReturnItem, ReturnStatus, RestorationStatus
from .number_series import InvNumberSeries

__all__ = [
    "Medicine",
    "Supplier",
    "UnitType",
    "MedicineBatch",
    "InventoryLedgerEntry",
    "ChangeType",
    "RefType",
    "LedgerScope",
    "PurchaseReturn",
    "PurchaseReturnItem",
    "ReturnStatus",
    "RestorationStatus",
    "InvNumberSeries",
]
