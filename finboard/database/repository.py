"""
Repository Layer - Clean Interface for Tenant Lookups

Handles all SQLAlchemy complexity internally so the analytics core only
sees the narrow tenant-store contract (exists / get).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .models import Company, CompanyStatus
from .session import session_scope

logger = logging.getLogger(__name__)


class CompanyRepository:
    """Tenant store backed by the companies table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def exists(self, company_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            found = db.execute(
                select(Company.id).where(Company.id == company_id)
            ).first()
            return found is not None

    def get(self, company_id: str) -> Optional[Company]:
        with session_scope(self._session_factory) as db:
            return db.get(Company, company_id)

    def create(
        self,
        name: str,
        departments: Optional[list] = None,
        currency_id: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Company:
        """Create a company (used by seeding scripts and tests)."""
        with session_scope(self._session_factory) as db:
            company = Company(
                name=name,
                departments=departments or [],
                currency_id=currency_id,
                status=CompanyStatus.ACTIVE,
            )
            if company_id:
                company.id = company_id
            db.add(company)
            db.flush()
            logger.info(f"Created company {company.id} ({name})")
            return company
