"""
Finboard Database Layer

Usage:
    from finboard.database import (
        create_db_engine, make_session_factory, init_db,
        Company, Transaction, TransactionType,
        CompanyRepository,
    )

    engine = create_db_engine()
    init_db(engine)
    companies = CompanyRepository(make_session_factory(engine))
    if companies.exists(company_id):
        ...
"""

# Models
from .models import (
    Base,
    Company,
    Transaction,
    TransactionType,
    CompanyStatus,
)

# Session management
from .session import (
    get_database_url,
    create_db_engine,
    make_session_factory,
    session_scope,
    init_db,
    check_db_connection,
)

# Repository
from .repository import CompanyRepository

__all__ = [
    # Models
    "Base",
    "Company",
    "Transaction",
    "TransactionType",
    "CompanyStatus",
    # Session
    "get_database_url",
    "create_db_engine",
    "make_session_factory",
    "session_scope",
    "init_db",
    "check_db_connection",
    # Repository
    "CompanyRepository",
]
