"""
Database Package for the Case Deduplication Engine

This package provides:
- SQLAlchemy ORM models for cases, lookups and the deduplication audit
- Engine setup, Unit of Work and session scopes
- Repositories for cases and the append-only audit trail
- Query timing for the retrieval and history paths
"""

from database.models import (
    Base,
    Client,
    User,
    Case,
    CaseDeduplicationAudit,
    CaseStatus,
    DecisionType,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    CaseNotFoundError,
    ImmutableAuditError,
    CaseRepository,
    AuditRepository,
)
from database.monitoring import (
    query_timer,
    get_db_metrics,
    reset_metrics,
)

__all__ = [
    # Models
    'Base',
    'Client',
    'User',
    'Case',
    'CaseDeduplicationAudit',
    'CaseStatus',
    'DecisionType',
    # Connection
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories
    'RepositoryError',
    'CaseNotFoundError',
    'ImmutableAuditError',
    'CaseRepository',
    'AuditRepository',
    # Monitoring
    'query_timer',
    'get_db_metrics',
    'reset_metrics',
]
