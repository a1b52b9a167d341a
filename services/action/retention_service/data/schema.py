"""Table models for retention policies and the cleanup ledger."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")

retention_policies = Table(
    "retention_policies",
    metadata,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("entity_type", String(128), nullable=False),
    Column("max_age_seconds", BigInteger, nullable=False),
    Column("action", String(16), nullable=False),
    Column("predicate", JSON, nullable=False),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("last_run_at", DateTime(timezone=True), nullable=True),
    Column("lease_owner", String(256), nullable=True),
    Column("lease_expires_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("entity_type", name="uq_retention_policies_entity_type"),
)

cleanup_ledger = Table(
    "cleanup_ledger",
    metadata,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("kind", String(32), nullable=False),
    Column(
        "policy_id",
        _ID_TYPE,
        ForeignKey("retention_policies.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("entity_type", String(128), nullable=False),
    Column("action", String(32), nullable=False),
    Column("record_id", String(256), nullable=True),
    Column("affected_count", Integer, nullable=False, default=0),
    Column("failed_count", Integer, nullable=False, default=0),
    Column("cutoff", DateTime(timezone=True), nullable=True),
    Column("requested_by", String(256), nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    Index("ix_cleanup_ledger_policy_id_recorded_at", "policy_id", "recorded_at"),
    Index("ix_cleanup_ledger_entity_type_recorded_at", "entity_type", "recorded_at"),
)
