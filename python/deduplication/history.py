"""Read-back of the deduplication audit trail for a case."""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.monitoring import query_timer
from database.repositories import AuditRepository
from deduplication.errors import StoreError
from deduplication.recorder import to_audit_entry
from deduplication.types import AuditEntry

logger = logging.getLogger(__name__)


class HistoryReader:
    """Lists audit entries for a case, newest first, with actor names"""

    def __init__(self, session: Session):
        self.session = session

    def history(self, case_id: UUID) -> List[AuditEntry]:
        """
        Audit entries for a case.

        Returns an empty list for a case that was never checked.

        Raises:
            StoreError: If the query fails
        """
        try:
            with query_timer("case_history"):
                rows = AuditRepository(self.session).history(case_id)
        except SQLAlchemyError as e:
            logger.error("History lookup for case %s failed: %s", case_id, e)
            raise StoreError("history", str(e), {'case_id': str(case_id)}) from e

        return [to_audit_entry(row, name) for row, name in rows]
