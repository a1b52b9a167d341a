"""create retention policy registry and cleanup ledger"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None

_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create retention policy and cleanup ledger tables."""
    op.create_table(
        "retention_policies",
        sa.Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("max_age_seconds", sa.BigInteger(), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("predicate", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_owner", sa.String(length=256), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("entity_type", name="uq_retention_policies_entity_type"),
    )
    op.create_table(
        "cleanup_ledger",
        sa.Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column(
            "policy_id",
            _ID_TYPE,
            sa.ForeignKey("retention_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("record_id", sa.String(length=256), nullable=True),
        sa.Column("affected_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("cutoff", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_by", sa.String(length=256), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_cleanup_ledger_policy_id_recorded_at",
        "cleanup_ledger",
        ["policy_id", "recorded_at"],
    )
    op.create_index(
        "ix_cleanup_ledger_entity_type_recorded_at",
        "cleanup_ledger",
        ["entity_type", "recorded_at"],
    )


def downgrade() -> None:
    """Drop retention tables."""
    op.drop_index("ix_cleanup_ledger_entity_type_recorded_at", table_name="cleanup_ledger")
    op.drop_index("ix_cleanup_ledger_policy_id_recorded_at", table_name="cleanup_ledger")
    op.drop_table("cleanup_ledger")
    op.drop_table("retention_policies")
