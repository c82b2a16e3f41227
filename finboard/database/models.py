"""
SQLAlchemy Models for the Finboard ledger

Design Principles:
1. Transactions are the single source of truth for analytics
2. Every row is scoped to a company (tenant)
3. Locked rows are immutable history

Analytics views are never persisted here; they live in the cache and can
be rebuilt from these tables at any time.
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Boolean, Date, DateTime, Text, Numeric,
    ForeignKey, Enum, Index, JSON,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


def _enum_values(enum_cls) -> list:
    # Persist enum values ("income"), not member names ("INCOME")
    return [member.value for member in enum_cls]


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(enum.Enum):
    """Direction of a ledger entry"""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class CompanyStatus(enum.Enum):
    """Lifecycle state of a tenant"""
    ACTIVE = "active"
    INACTIVE = "inactive"


# =============================================================================
# CORE TABLES
# =============================================================================

class Company(Base):
    """Tenant owning a ledger"""
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(Enum(CompanyStatus, values_callable=_enum_values), default=CompanyStatus.ACTIVE)

    # Free-text department names, validated through DepartmentCatalog
    departments = Column(JSON, default=lambda: [])

    currency_id = Column(String(36))

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="company", cascade="all, delete-orphan")


class Transaction(Base):
    """Single income, expense or transfer entry"""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    type = Column(Enum(TransactionType, values_callable=_enum_values), nullable=False)
    comment = Column(Text)

    # Optional classification (bucketed as "Unspecified" in analytics)
    department = Column(String(255))
    action = Column(String(255))

    transaction_date = Column(Date, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)

    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    currency_id = Column(String(36))
    created_by = Column(String(255), nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company", back_populates="transactions")

    __table_args__ = (
        Index("idx_transaction_company_date", "company_id", "transaction_date"),
        Index("idx_transaction_company_type", "company_id", "type"),
        Index("idx_transaction_lock_scan", "is_locked", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.type.value if self.type else None} {self.amount}>"
