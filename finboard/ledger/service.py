"""
Transaction Service

Create, update and delete ledger entries. Every successful write ends with
the analytics invalidation hook for the owning company; rejected writes
(validation errors, locked rows) leave the cache untouched.

Database work is synchronous SQLAlchemy and runs in a worker thread.
"""

import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import sessionmaker

from finboard.cache.invalidation import AnalyticsInvalidator, CacheEvent
from finboard.database.models import Company, Transaction, TransactionType
from finboard.database.session import session_scope
from finboard.errors import NotFoundError, ValidationError
from finboard.ledger.departments import DepartmentCatalog


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "amount", "type", "transaction_date", "department", "action", "comment")


class TransactionService:
    """Validated ledger writes with analytics invalidation."""

    def __init__(
        self,
        session_factory: sessionmaker,
        invalidator: AnalyticsInvalidator,
        departments: Optional[DepartmentCatalog] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._invalidator = invalidator
        self._departments = departments or DepartmentCatalog(session_factory)
        self._clock = clock

    # =========================================================================
    # Validation helpers
    # =========================================================================

    @staticmethod
    def _parse_amount(value: Union[Decimal, float, int, str]) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid amount: {value!r}")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        return amount

    @staticmethod
    def _parse_type(value: Union[TransactionType, str]) -> TransactionType:
        try:
            return TransactionType(value)
        except ValueError:
            raise ValidationError(f"Invalid transaction type: {value!r}")

    def _parse_date(self, value: Optional[Union[date, str]]) -> date:
        if value is None:
            return self._clock().date()
        if isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError:
                raise ValidationError(f"Invalid transaction date: {value!r}")
        if isinstance(value, datetime):
            value = value.date()
        if value > self._clock().date():
            raise ValidationError("Transaction date cannot be in the future")
        return value

    def _resolve_department(self, company_id: str, department: Optional[str]) -> Optional[str]:
        if not department:
            return None
        resolved = self._departments.resolve(company_id, department)
        if resolved is None:
            raise ValidationError(
                f"Department '{department}' does not exist in the company department list"
            )
        return resolved

    # =========================================================================
    # Synchronous database work
    # =========================================================================

    def _create(self, company_id: str, user_id: str, fields: Dict[str, Any]) -> Transaction:
        with session_scope(self._session_factory) as db:
            company = db.get(Company, company_id)
            if company is None:
                raise NotFoundError(f"Company {company_id} not found")

            transaction = Transaction(
                name=fields["name"],
                amount=self._parse_amount(fields["amount"]),
                type=self._parse_type(fields["type"]),
                transaction_date=self._parse_date(fields.get("transaction_date")),
                department=self._resolve_department(company_id, fields.get("department")),
                action=fields.get("action"),
                comment=fields.get("comment"),
                company_id=company_id,
                currency_id=company.currency_id,
                created_by=user_id,
            )
            db.add(transaction)
            db.flush()
            return transaction

    def _load(self, db, company_id: str, transaction_id: str) -> Transaction:
        transaction = db.get(Transaction, transaction_id)
        if transaction is None or transaction.company_id != company_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def _update(self, company_id: str, transaction_id: str, changes: Dict[str, Any]) -> Transaction:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with session_scope(self._session_factory) as db:
            transaction = self._load(db, company_id, transaction_id)
            if transaction.is_locked:
                raise ValidationError("Transaction is locked and cannot be modified")

            if "name" in changes:
                transaction.name = changes["name"]
            if "amount" in changes:
                transaction.amount = self._parse_amount(changes["amount"])
            if "type" in changes:
                transaction.type = self._parse_type(changes["type"])
            if "transaction_date" in changes:
                transaction.transaction_date = self._parse_date(changes["transaction_date"])
            if "department" in changes:
                transaction.department = self._resolve_department(company_id, changes["department"])
            if "action" in changes:
                transaction.action = changes["action"]
            if "comment" in changes:
                transaction.comment = changes["comment"]

            transaction.updated_at = self._clock()
            db.flush()
            return transaction

    def _delete(self, company_id: str, transaction_id: str):
        with session_scope(self._session_factory) as db:
            transaction = self._load(db, company_id, transaction_id)
            if transaction.is_locked:
                raise ValidationError("Transaction is locked and cannot be deleted")
            db.delete(transaction)

    def get_transaction(self, company_id: str, transaction_id: str) -> Transaction:
        with session_scope(self._session_factory) as db:
            return self._load(db, company_id, transaction_id)

    # =========================================================================
    # Public API
    # =========================================================================

    async def create_transaction(
        self,
        company_id: str,
        user_id: str,
        name: str,
        amount: Union[Decimal, float, int, str],
        type: Union[TransactionType, str],
        transaction_date: Optional[Union[date, str]] = None,
        department: Optional[str] = None,
        action: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Transaction:
        """
        Create a transaction and invalidate the company's analytics.

        Raises:
            NotFoundError: Company does not exist
            ValidationError: Amount, date, type or department rejected
        """
        fields = {
            "name": name,
            "amount": amount,
            "type": type,
            "transaction_date": transaction_date,
            "department": department,
            "action": action,
            "comment": comment,
        }
        transaction = await asyncio.to_thread(self._create, company_id, user_id, fields)
        logger.info(f"Created transaction {transaction.id} for company {company_id}")

        await self._invalidator.on_transaction_mutated(
            company_id, CacheEvent.TRANSACTION_CREATED, user_id
        )
        return transaction

    async def update_transaction(
        self,
        company_id: str,
        transaction_id: str,
        user_id: str = "system",
        **changes: Any,
    ) -> Transaction:
        """Update an unlocked transaction. Locked rows raise ValidationError."""
        transaction = await asyncio.to_thread(self._update, company_id, transaction_id, changes)
        logger.info(f"Updated transaction {transaction_id} for company {company_id}")

        await self._invalidator.on_transaction_mutated(
            company_id, CacheEvent.TRANSACTION_UPDATED, user_id
        )
        return transaction

    async def delete_transaction(
        self,
        company_id: str,
        transaction_id: str,
        user_id: str = "system",
    ) -> Dict[str, str]:
        """Delete an unlocked transaction. Locked rows raise ValidationError."""
        await asyncio.to_thread(self._delete, company_id, transaction_id)
        logger.info(f"Deleted transaction {transaction_id} for company {company_id}")

        await self._invalidator.on_transaction_mutated(
            company_id, CacheEvent.TRANSACTION_DELETED, user_id
        )
        return {"message": "Transaction deleted successfully"}
