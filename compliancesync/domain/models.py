from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere so the same models run on sqlite in tests.
JsonType = JSON().with_variant(JSONB(), "postgresql")
# sqlite only autoincrements INTEGER PRIMARY KEY columns.
AuditIdType = BigInteger().with_variant(Integer(), "sqlite")


def _utc_now() -> datetime:
    # Assign timestamps in the application so rows never depend on DB clocks.
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    industry: Mapped[str] = mapped_column(String)
    # Headcount band chosen at registration (1-10, 11-25, 26-50, 51+).
    employee_count: Mapped[str] = mapped_column(String)
    # Selects which template catalog the tenant can browse.
    regulatory_framework: Mapped[str] = mapped_column(String, index=True)
    website: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    # Subscription is flattened onto the tenant row; seat checks read max_users directly.
    subscription_tier: Mapped[str] = mapped_column(String, default="starter")
    subscription_status: Mapped[str] = mapped_column(String, default="trial")
    max_users: Mapped[int] = mapped_column(Integer)
    monthly_price: Mapped[float] = mapped_column(Numeric(10, 2))
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Maintained alongside user status changes for O(1) seat checks.
    active_user_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)


class User(Base):
    __tablename__ = "users"

    # Opaque id issued by the identity provider.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(String)
    # active | pending | inactive; deletion only flips to inactive.
    status: Mapped[str] = mapped_column(String, default="active")
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)


class Invitation(Base):
    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str] = mapped_column(String, index=True)
    role: Mapped[str] = mapped_column(String)
    invited_by: Mapped[str] = mapped_column(String)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Only the SHA-256 of the acceptance token is stored.
    token_hash: Mapped[str] = mapped_column(String, unique=True)
    # pending | accepted | expired | revoked
    status: Mapped[str] = mapped_column(String, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RequirementTemplate(Base):
    __tablename__ = "requirement_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String)
    regulatory_framework: Mapped[str] = mapped_column(String, index=True)
    authority: Mapped[str] = mapped_column(String)
    evidence_types: Mapped[list[str]] = mapped_column(JsonType, default=list)
    frequency: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)


class Requirement(Base):
    __tablename__ = "requirements"
    __table_args__ = (Index("ix_requirements_tenant_template", "tenant_id", "template_id"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    template_id: Mapped[str] = mapped_column(String)
    # Template fields are copied at activation so catalog edits never rewrite history.
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String)
    authority: Mapped[str] = mapped_column(String)
    evidence_types: Mapped[list[str]] = mapped_column(JsonType, default=list)
    frequency: Mapped[str] = mapped_column(String)
    # Snapshot from the last write; reads always recompute via derive_status.
    status: Mapped[str] = mapped_column(String, default="not_started")
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Adjusted only through atomic increments in the evidence service.
    evidence_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    activated_by: Mapped[str] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)


class Evidence(Base):
    __tablename__ = "evidence"
    __table_args__ = (Index("ix_evidence_tenant_status", "tenant_id", "status"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    # Title and evidence date stay empty until the uploader completes the upload.
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String, default="manual_upload")
    evidence_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Blob locator (object path), never a signed URL.
    file_url: Mapped[str | None] = mapped_column(String, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String, nullable=True)
    external_link: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonType, default=dict)
    requirement_ids: Mapped[list[str]] = mapped_column(JsonType, default=list)
    uploaded_by: Mapped[str] = mapped_column(String)
    # uploading -> active -> deleted
    status: Mapped[str] = mapped_column(String, default="uploading")
    # Bumped by every state-changing write; writers compare-and-set against it.
    revision: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_tenant_timestamp", "tenant_id", "timestamp"),)

    # Monotonic id breaks ties between entries written in the same instant.
    id: Mapped[int] = mapped_column(AuditIdType, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    user_email: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, index=True)
    resource_type: Mapped[str] = mapped_column(String, index=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(Text)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonType, nullable=True)


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String)
    requirement_ids: Mapped[list[str]] = mapped_column(JsonType, default=list)
    # pending -> generating -> completed | failed
    status: Mapped[str] = mapped_column(String, default="pending")
    file_url: Mapped[str | None] = mapped_column(String, nullable=True)
    generated_by: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
