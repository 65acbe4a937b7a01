from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from sqlalchemy import (
    String,
    Text,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Boolean,
    Float,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
import enum


class ServiceType(str, enum.Enum):
    ITR = "itr"
    GST = "gst"
    AUDIT = "audit"
    ROC = "roc"
    TDS = "tds"
    CUSTOM = "custom"


class ChecklistStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ItemStatus(str, enum.Enum):
    """Single vocabulary for checklist item state.

    The plain checklist path uses pending/received/rejected/not_applicable,
    the review and upload paths use pending/uploaded/verified/rejected.
    Both write into the same field.
    """

    PENDING = "pending"
    UPLOADED = "uploaded"
    RECEIVED = "received"
    VERIFIED = "verified"
    REJECTED = "rejected"
    NOT_APPLICABLE = "not_applicable"


class UploadChannel(str, enum.Enum):
    WHATSAPP = "whatsapp"
    UPLOAD_LINK = "upload_link"
    ADMIN = "admin"


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(20), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    mobile: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


class ChecklistTemplate(Base):
    __tablename__ = "checklist_templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    service_type: Mapped[ServiceType] = mapped_column(Enum(ServiceType), index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{label, description, category, required}]
    items: Mapped[list[dict]] = mapped_column(JSON, default=list)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow)


class Checklist(Base):
    __tablename__ = "checklists"
    __table_args__ = (
        Index("ix_checklists_issuance_key", "client_id", "financial_year", "service_type"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey("clients.id"), index=True)
    template_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("checklist_templates.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200))
    financial_year: Mapped[str] = mapped_column(String(20))
    service_type: Mapped[ServiceType] = mapped_column(Enum(ServiceType))
    # embedded item documents, always replaced as a whole
    items: Mapped[list[dict]] = mapped_column(JSON, default=list)
    progress: Mapped[float] = mapped_column(Float, default=0)
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    received_items: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[ChecklistStatus] = mapped_column(Enum(ChecklistStatus), default=ChecklistStatus.ACTIVE, index=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    client: Mapped[Client] = relationship("Client")


class UploadToken(Base):
    __tablename__ = "upload_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    checklist_id: Mapped[str] = mapped_column(String(64), ForeignKey("checklists.id"), index=True)
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey("clients.id"))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    max_uploads: Mapped[int] = mapped_column(Integer, default=20)
    upload_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow)


class Folder(Base):
    __tablename__ = "folders"
    __table_args__ = (
        UniqueConstraint("client_id", "s3_prefix", name="uq_folders_client_prefix"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(32))  # root|year|documents
    client_id: Mapped[str] = mapped_column(String(64), ForeignKey("clients.id"), index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("folders.id"), nullable=True)
    s3_prefix: Mapped[str] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


class StoredFile(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(255))
    original_name: Mapped[str] = mapped_column(String(255))
    s3_path: Mapped[str] = mapped_column(String(512))
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer)
    folder_id: Mapped[str] = mapped_column(String(64), ForeignKey("folders.id"))
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(64))
    description: Mapped[str] = mapped_column(Text)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


def log_activity(
    db,
    action: str,
    description: str,
    *,
    user_id: str | None = None,
    entity_type: str | None = "checklist",
    entity_id: str | None = None,
    ip: str | None = None,
) -> ActivityLog:
    """Stage an audit row on ``db``; the caller's commit persists it."""
    row = ActivityLog(
        user_id=user_id,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
    )
    db.add(row)
    return row
