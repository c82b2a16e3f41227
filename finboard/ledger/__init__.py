"""Ledger writes: validated transaction mutations and auto-locking."""

from .departments import DepartmentCatalog
from .locking import TransactionLocker
from .service import TransactionService

__all__ = [
    "DepartmentCatalog",
    "TransactionLocker",
    "TransactionService",
]
