# backend/assetflow/core/database/models.py
"""
SQLAlchemy ORM models for the asset processing pipeline.

Models:
    - Asset: Uploaded asset with thumbnail state and the shared metadata document
    - AssetVersion: Immutable file version; exactly one is current per asset
    - BrandComplianceModel: Per-brand compliance switch and active version pointer
    - BrandComplianceModelVersion: Versioned scoring rules and weights
    - BrandComplianceScore: One score row per (asset, brand)
    - SystemIncident: Operational incidents, deduplicated while unresolved

Tenants, brands and users are owned by the surrounding application; they are
referenced here by plain UUID columns.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from .base import Base


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class Asset(Base):
    """
    Asset model holding pipeline state.

    The `metadata` column is a JSON document shared by every stage. Stages never
    replace it; they apply a MetadataPatch under a row lock (see
    assetflow.core.shared.asset_repository).

    Thumbnail lifecycle:
        pending -> processing -> completed | failed | skipped
        processing older than the stuck timeout is re-attempted by the next run
    """

    __tablename__ = "assets"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(), nullable=False, index=True)
    brand_id = Column(UUID(), nullable=True, index=True)

    title = Column(String(500), nullable=True)
    original_filename = Column(String(500), nullable=True)
    mime_type = Column(String(255), nullable=True)
    storage_path = Column(String(1024), nullable=True)
    file_size = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)

    # Thumbnail state machine
    thumbnail_status = Column(String(20), nullable=False, default="pending", index=True)
    thumbnail_started_at = Column(DateTime, nullable=True)
    thumbnail_error = Column(Text, nullable=True)
    thumbnail_retry_count = Column(Integer, nullable=False, default=0)
    thumbnail_last_retry_at = Column(DateTime, nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=False, default=dict, server_default="{}")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    versions = relationship(
        "AssetVersion", back_populates="asset", cascade="all, delete-orphan", order_by="AssetVersion.version_number"
    )

    __table_args__ = (
        Index("ix_assets_tenant_created", "tenant_id", "created_at"),
        Index("ix_assets_thumbnail_status_started", "thumbnail_status", "thumbnail_started_at"),
    )

    def __repr__(self) -> str:
        return f"<Asset(id={self.id}, filename={self.original_filename}, thumbnail_status={self.thumbnail_status})>"


class AssetVersion(Base):
    """
    Immutable version of an asset's file.

    pipeline_status becomes "complete" once the upload side has finished
    processing the version; only then may the asset be synchronised from it.
    """

    __tablename__ = "asset_versions"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    asset_id = Column(
        UUID(), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)

    file_path = Column(String(1024), nullable=False)
    checksum = Column(String(64), nullable=True)  # SHA-256
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(255), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict, server_default="{}")

    pipeline_status = Column(String(20), nullable=False, default="pending")
    is_current = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    asset = relationship("Asset", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("asset_id", "version_number", name="uq_asset_versions_asset_number"),
        Index(
            "ix_asset_versions_one_current",
            "asset_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    def __repr__(self) -> str:
        return f"<AssetVersion(asset_id={self.asset_id}, version={self.version_number}, current={self.is_current})>"


class BrandComplianceModel(Base):
    """Per-brand compliance configuration. Scoring only runs when enabled."""

    __tablename__ = "brand_compliance_models"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    brand_id = Column(UUID(), nullable=False, unique=True, index=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    active_version_id = Column(
        UUID(),
        ForeignKey("brand_compliance_model_versions.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    active_version = relationship(
        "BrandComplianceModelVersion", foreign_keys=[active_version_id], post_update=True
    )

    def __repr__(self) -> str:
        return f"<BrandComplianceModel(brand_id={self.brand_id}, enabled={self.is_enabled})>"


class BrandComplianceModelVersion(Base):
    """
    Versioned scoring payload.

    model_payload:
        {
            "scoring_rules": {"allowed_color_palette": [...], "banned_colors": [...],
                              "allowed_fonts": [...], "tone_keywords": [...],
                              "banned_keywords": [...], "photography_attributes": [...]},
            "scoring_config": {"color_weight": 0.3, "typography_weight": 0.2,
                               "tone_weight": 0.3, "imagery_weight": 0.2}
        }
    """

    __tablename__ = "brand_compliance_model_versions"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    model_id = Column(
        UUID(), ForeignKey("brand_compliance_models.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="draft")  # draft, active, archived
    model_payload = Column(JSON, nullable=False, default=dict, server_default="{}")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("model_id", "version_number", name="uq_compliance_model_versions_number"),
    )

    def __repr__(self) -> str:
        return f"<BrandComplianceModelVersion(model_id={self.model_id}, version={self.version_number}, status={self.status})>"


class BrandComplianceScore(Base):
    """Latest compliance evaluation of an asset against a brand."""

    __tablename__ = "brand_compliance_scores"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    asset_id = Column(
        UUID(), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    brand_id = Column(UUID(), nullable=False, index=True)
    model_version_id = Column(
        UUID(), ForeignKey("brand_compliance_model_versions.id", ondelete="SET NULL"), nullable=True
    )

    evaluation_status = Column(String(20), nullable=False)  # complete, incomplete, not_applicable
    overall_score = Column(Integer, nullable=True)
    color_score = Column(Integer, nullable=True)
    typography_score = Column(Integer, nullable=True)
    tone_score = Column(Integer, nullable=True)
    imagery_score = Column(Integer, nullable=True)
    breakdown_payload = Column(JSON, nullable=False, default=dict, server_default="{}")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("asset_id", "brand_id", name="uq_compliance_scores_asset_brand"),
    )

    def __repr__(self) -> str:
        return f"<BrandComplianceScore(asset_id={self.asset_id}, status={self.evaluation_status}, overall={self.overall_score})>"


class SystemIncident(Base):
    """
    Operational incident raised by the pipeline.

    At most one unresolved incident exists per (source_type, source_id, title),
    enforced by the partial unique index uq_system_incidents_open.
    """

    __tablename__ = "system_incidents"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    source_type = Column(String(50), nullable=False)
    source_id = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False, default="warning")  # info, warning, error, critical
    metadata_ = Column("metadata", JSON, nullable=False, default=dict, server_default="{}")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    auto_resolved = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index(
            "uq_system_incidents_open",
            "source_type",
            "source_id",
            "title",
            unique=True,
            postgresql_where=text("resolved_at IS NULL"),
        ),
        Index("ix_system_incidents_unresolved", "resolved_at"),
    )

    def __repr__(self) -> str:
        return f"<SystemIncident(source={self.source_type}:{self.source_id}, title={self.title}, resolved={self.resolved_at is not None})>"
