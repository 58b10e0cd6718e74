"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

This is the baseline migration that creates the tables read and written by
the case deduplication engine. clients, users and cases normally already
exist in the surrounding system; for such databases, use
`alembic stamp 001_initial` and apply the audit table separately.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Enable required extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "pg_trgm"')

    # Create clients table
    op.create_table(
        'clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('name', sa.String(200), nullable=False),
        *_timestamps()
    )

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('username', sa.String(100), unique=True),
        *_timestamps()
    )

    # Create cases table
    op.create_table(
        'cases',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('case_number', sa.String(50), nullable=False, unique=True),
        sa.Column('applicant_name', sa.String(200), nullable=False),
        sa.Column('applicant_phone', sa.String(30)),
        sa.Column('national_id', sa.String(50)),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('client_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='SET NULL')),
        sa.Column('deduplication_checked', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('deduplication_decision', sa.String(20)),
        sa.Column('deduplication_rationale', sa.Text),
        *_timestamps(),
        sa.CheckConstraint(
            "deduplication_decision IS NULL OR deduplication_decision IN "
            "('CREATE_NEW', 'USE_EXISTING', 'MERGE_CASES')",
            name='ck_cases_dedup_decision'
        )
    )

    # Create case_deduplication_audit table
    op.create_table(
        'case_deduplication_audit',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('case_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('cases.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('search_criteria', postgresql.JSONB, nullable=False),
        sa.Column('candidates_shown', postgresql.JSONB, nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('rationale', sa.Text, nullable=False),
        sa.Column('selected_existing_case_id', postgresql.UUID(as_uuid=True)),
        sa.Column('performed_by', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.CheckConstraint(
            "decision IN ('CREATE_NEW', 'USE_EXISTING', 'MERGE_CASES')",
            name='ck_dedup_audit_decision'
        ),
        sa.CheckConstraint("length(trim(rationale)) > 0", name='ck_dedup_audit_rationale')
    )

    # Create indexes
    op.create_index('ix_cases_national_id', 'cases', ['national_id'])
    op.create_index('ix_cases_applicant_phone', 'cases', ['applicant_phone'])
    op.create_index('ix_cases_created_at', 'cases', ['created_at'])
    op.create_index('ix_cases_client_id', 'cases', ['client_id'])
    op.create_index('ix_cases_applicant_name_trgm', 'cases', ['applicant_name'],
                    postgresql_using='gin', postgresql_ops={'applicant_name': 'gin_trgm_ops'})

    op.create_index('ix_case_deduplication_audit_case_id', 'case_deduplication_audit', ['case_id'])
    op.create_index('ix_case_deduplication_audit_decision', 'case_deduplication_audit', ['decision'])
    op.create_index('ix_case_deduplication_audit_performed_by', 'case_deduplication_audit', ['performed_by'])
    op.create_index('ix_case_deduplication_audit_performed_at', 'case_deduplication_audit', ['performed_at'])
    op.create_index('ix_dedup_audit_case_performed', 'case_deduplication_audit',
                    ['case_id', 'performed_at'])

    # Audit rows are append-only at the database level as well
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_dedup_audit_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'case_deduplication_audit is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_dedup_audit_immutable
        BEFORE UPDATE OR DELETE ON case_deduplication_audit
        FOR EACH ROW EXECUTE FUNCTION reject_dedup_audit_change()
    """)


def downgrade() -> None:
    """Drop all tables."""
    op.execute('DROP TRIGGER IF EXISTS trg_dedup_audit_immutable ON case_deduplication_audit')
    op.execute('DROP FUNCTION IF EXISTS reject_dedup_audit_change()')

    # Drop tables in reverse order
    op.drop_table('case_deduplication_audit')
    op.drop_table('cases')
    op.drop_table('users')
    op.drop_table('clients')
