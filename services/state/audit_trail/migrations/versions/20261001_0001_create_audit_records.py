"""create audit trail tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the append-only audit record table and its read indexes."""
    op.create_table(
        "audit_records",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("operation", sa.String(length=16), nullable=False),
        sa.Column("record_id", sa.String(length=256), nullable=False),
        sa.Column("before", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("after", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("diff", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("principal", sa.String(length=256), nullable=False),
        sa.Column("session_id", sa.String(length=256), nullable=True),
        sa.Column("origin_address", sa.String(length=256), nullable=True),
        sa.Column("client_label", sa.String(length=256), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_audit_records_entity_type_recorded_at",
        "audit_records",
        ["entity_type", "recorded_at"],
    )
    op.create_index("ix_audit_records_record_id", "audit_records", ["record_id"])
    op.create_index("ix_audit_records_recorded_at", "audit_records", ["recorded_at"])


def downgrade() -> None:
    """Drop the audit record table."""
    op.drop_index("ix_audit_records_recorded_at", table_name="audit_records")
    op.drop_index("ix_audit_records_record_id", table_name="audit_records")
    op.drop_index("ix_audit_records_entity_type_recorded_at", table_name="audit_records")
    op.drop_table("audit_records")
