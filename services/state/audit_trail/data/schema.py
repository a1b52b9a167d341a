"""Table models for Audit Trail records."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)

from resources.adapters.record_store import EntityDescriptor

AUDIT_RECORD_ENTITY_TYPE = "audit_record"

metadata = MetaData()

audit_records = Table(
    "audit_records",
    metadata,
    Column(
        "id",
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column("entity_type", String(128), nullable=False),
    Column("operation", String(16), nullable=False),
    Column("record_id", String(256), nullable=False),
    Column("before", JSON(none_as_null=True), nullable=True),
    Column("after", JSON(none_as_null=True), nullable=True),
    Column("diff", JSON(none_as_null=True), nullable=True),
    Column("principal", String(256), nullable=False),
    Column("session_id", String(256), nullable=True),
    Column("origin_address", String(256), nullable=True),
    Column("client_label", String(256), nullable=True),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    Index("ix_audit_records_entity_type_recorded_at", "entity_type", "recorded_at"),
    Index("ix_audit_records_record_id", "record_id"),
    Index("ix_audit_records_recorded_at", "recorded_at"),
)


def audit_record_descriptor() -> EntityDescriptor:
    """Describe the audit table itself so retention can purge old records.

    Purging audit records is not itself captured; the cleanup ledger is the
    record of that action.
    """
    return EntityDescriptor(
        entity_type=AUDIT_RECORD_ENTITY_TYPE,
        table=audit_records,
        key_column="id",
        timestamp_column="recorded_at",
        captured=False,
    )
