"""
Department catalog.

Transactions may carry a department name, which must be one of the
company's configured departments. Matching is case-insensitive and the
stored value is normalised to the company's spelling.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from finboard.database.models import Company
from finboard.database.session import session_scope
from finboard.errors import NotFoundError


logger = logging.getLogger(__name__)


class DepartmentCatalog:
    """Lookup of the departments a company has configured."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def list_departments(self, company_id: str) -> List[str]:
        with session_scope(self._session_factory) as db:
            company = db.get(Company, company_id)
            if company is None:
                raise NotFoundError(f"Company {company_id} not found")
            return [d for d in (company.departments or []) if d]

    def resolve(self, company_id: str, department: str) -> Optional[str]:
        """Return the company's spelling of `department`, or None if unknown."""
        wanted = department.strip().lower()
        for name in self.list_departments(company_id):
            if name.strip().lower() == wanted:
                return name
        return None

    def is_known(self, company_id: str, department: str) -> bool:
        return self.resolve(company_id, department) is not None
