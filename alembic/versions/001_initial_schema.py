"""Initial schema - approval_records, evidence_packs.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "approval_records",
        sa.Column("decision_id", sa.String(64), primary_key=True),
        sa.Column("request_id", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("requested_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("decided_by", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("auto_action", sa.String(20), nullable=False, server_default="EXPIRE"),
        sa.Column("request_json", _JSON, nullable=False),
        sa.Column("evaluation_json", _JSON, nullable=False),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED')",
            name="ck_approval_records_status",
        ),
        sa.CheckConstraint("auto_action = 'EXPIRE'", name="ck_approval_records_auto_action"),
    )
    op.create_index("ix_approval_records_request_id", "approval_records", ["request_id"])

    op.create_table(
        "evidence_packs",
        sa.Column("gate_id", sa.String(64), primary_key=True),
        sa.Column("request_id", sa.Text(), nullable=False),
        sa.Column("verdict", sa.String(32), nullable=False),
        sa.Column("request_hash", sa.String(64), nullable=False),
        sa.Column("evaluation_hash", sa.String(64), nullable=False),
        sa.Column("receipt_hash", sa.String(64), nullable=False),
        sa.Column("pack_json", _JSON, nullable=False),
        sa.Column("generated_at", sa.String(50), nullable=False),
    )
    op.create_index("ix_evidence_packs_request_id", "evidence_packs", ["request_id"])


def downgrade() -> None:
    op.drop_index("ix_evidence_packs_request_id", table_name="evidence_packs")
    op.drop_table("evidence_packs")
    op.drop_index("ix_approval_records_request_id", table_name="approval_records")
    op.drop_table("approval_records")
