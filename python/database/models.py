"""
SQLAlchemy ORM Models for the Case Deduplication Engine

This module maps the tables the engine reads and writes:
- The case store and its lookups are owned by the surrounding system;
  the engine only reads them, except for the deduplication status columns
  on `cases` which the Decision Recorder sets.
- The deduplication audit table is owned by the engine and is append-only.

Column types are portable between PostgreSQL (production) and SQLite
(unit tests): JSON columns use JSONB on PostgreSQL, and UUIDs use the
generic Uuid type.

Tables:
1. clients - Owning organizations (external, read-only)
2. users - User directory (external, read-only)
3. cases - Business records searched for duplicates
4. case_deduplication_audit - Immutable record of what was shown and decided
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, DateTime, Text,
    ForeignKey, Index, CheckConstraint, Uuid, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
PortableJSON = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
AuditPrimaryKey = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Timezone-aware current time used for application-assigned timestamps."""
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class DecisionType(str, PyEnum):
    """Human decision recorded after a duplicate search"""
    CREATE_NEW = "CREATE_NEW"
    USE_EXISTING = "USE_EXISTING"
    MERGE_CASES = "MERGE_CASES"


class CaseStatus(str, PyEnum):
    """Lifecycle status of a case"""
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


DECISION_VALUES = tuple(d.value for d in DecisionType)


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# EXTERNAL LOOKUPS (READ-ONLY)
# ============================================

class Client(Base, TimestampMixin):
    """
    Organization owning a case.

    Only the display name is read, as the candidate's owning-organization label.
    """
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    cases: Mapped[List["Case"]] = relationship("Case", back_populates="client")

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}')>"


class User(Base, TimestampMixin):
    """
    User directory entry.

    Joined read-only by the History Reader to resolve actor display names.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}')>"


# ============================================
# CASE STORE
# ============================================

class Case(Base, TimestampMixin):
    """
    Business record searched for duplicates before a new case is created.

    Identifying fields (national_id, applicant_phone, applicant_name) are
    matched by the engine. The deduplication_* columns carry the outcome of
    the last recorded decision for this case.
    """
    __tablename__ = "cases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Human-facing case number
    case_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    # Subject identity
    applicant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    applicant_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    national_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CaseStatus.PENDING.value
    )

    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Deduplication outcome
    deduplication_checked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deduplication_decision: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    deduplication_rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    client: Mapped[Optional["Client"]] = relationship("Client", back_populates="cases")

    __table_args__ = (
        Index('ix_cases_national_id', 'national_id'),
        Index('ix_cases_applicant_phone', 'applicant_phone'),
        Index('ix_cases_created_at', 'created_at'),
        CheckConstraint(
            "deduplication_decision IS NULL OR deduplication_decision IN "
            "('CREATE_NEW', 'USE_EXISTING', 'MERGE_CASES')",
            name='ck_cases_dedup_decision'
        ),
    )

    def __repr__(self) -> str:
        return f"<Case(id={self.id}, case_number='{self.case_number}')>"


# ============================================
# DEDUPLICATION AUDIT
# ============================================

class CaseDeduplicationAudit(Base):
    """
    Permanent record of a duplicate search and the decision taken on it.

    Stores the criteria used and the candidates exactly as shown, so the
    entry stays reproducible after the underlying cases change.
    Immutable - ORM listeners in database.repositories reject updates and deletes.
    """
    __tablename__ = "case_deduplication_audit"

    id: Mapped[int] = mapped_column(AuditPrimaryKey, primary_key=True, autoincrement=True)

    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cases.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    search_criteria: Mapped[dict] = mapped_column(PortableJSON, nullable=False)
    candidates_shown: Mapped[list] = mapped_column(PortableJSON, nullable=False)

    decision: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)

    # Only set for USE_EXISTING
    selected_existing_case_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    performed_by: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # No updated_at - audit entries are immutable
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    __table_args__ = (
        Index('ix_dedup_audit_case_performed', 'case_id', 'performed_at'),
        CheckConstraint(
            "decision IN ('CREATE_NEW', 'USE_EXISTING', 'MERGE_CASES')",
            name='ck_dedup_audit_decision'
        ),
        CheckConstraint("length(trim(rationale)) > 0", name='ck_dedup_audit_rationale'),
    )

    def __repr__(self) -> str:
        return f"<CaseDeduplicationAudit(id={self.id}, case_id={self.case_id}, decision={self.decision})>"

