"""SQLAlchemy ORM models for aumos-access-ledger.

Ledger rows are insert-only. Hashed columns are never updated; the only
mutable column is ``legal_hold`` (and the expiry it clears), which sits
outside the integrity hash. Anchor receipts live in their own table so that
anchoring never touches an entry row.

Table naming convention: acl_{table_name}
"""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all aumos-access-ledger tables."""


class AuditEntryRecord(Base):
    """Court-admissible audit ledger entry.

    Table: acl_audit_entries
    """

    __tablename__ = "acl_audit_entries"
    __table_args__ = (
        Index("ix_acl_audit_tenant_ts", "tenant_id", "timestamp"),
        Index("ix_acl_audit_tenant_actor_ts", "tenant_id", "actor_id", "timestamp"),
        Index("ix_acl_audit_tenant_resource", "tenant_id", "resource_type", "resource_id"),
        Index("ix_acl_audit_tenant_sequence", "tenant_id", "sequence", unique=True),
    )

    audit_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    event_category: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_type: Mapped[str] = mapped_column(String(32), nullable=False, default="USER")
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    case_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    network: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    application: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    legal: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    changes: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    entry_metadata: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    retention_policy: Mapped[str] = mapped_column(String(32), nullable=False)
    retention_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_tier: Mapped[str] = mapped_column(String(32), nullable=False)
    compression: Mapped[str] = mapped_column(String(16), nullable=False)
    legal_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    immutable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    integrity_hash: Mapped[str] = mapped_column(String(128), nullable=False)  # SHA-512 hex
    signature: Mapped[str] = mapped_column(String(64), nullable=False)  # HMAC-SHA256 hex
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    chain_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    tags: Mapped[list["ComplianceTagRecord"]] = relationship(
        back_populates="entry", lazy="selectin", cascade="all"
    )


class ComplianceTagRecord(Base):
    """Compliance tag attached to a ledger entry.

    Table: acl_audit_compliance_tags
    """

    __tablename__ = "acl_audit_compliance_tags"
    __table_args__ = (Index("ix_acl_tag_tenant_standard", "tenant_id", "standard"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audit_id: Mapped[str] = mapped_column(ForeignKey("acl_audit_entries.audit_id"), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    standard: Mapped[str] = mapped_column(String(32), nullable=False)
    requirement: Mapped[str] = mapped_column(String(255), nullable=False)
    article: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)

    entry: Mapped[AuditEntryRecord] = relationship(back_populates="tags")


class AnchorReceiptRecord(Base):
    """Receipt returned by the tamper-evidence anchor service.

    Table: acl_anchor_receipts
    """

    __tablename__ = "acl_anchor_receipts"

    audit_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    anchored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
