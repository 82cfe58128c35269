"""
Asset record store backed by PostgreSQL.

Every call runs in its own short transaction so a stage's writes are visible
to the next gate check as soon as the call returns. Metadata updates take a
row lock (SELECT ... FOR UPDATE), apply the MetadataPatch to the current
document and write the merged result, so concurrent stages only ever replace
their own keys.

Usage:
    from assetflow.core.shared.asset_repository import SqlAssetRepository

    repository = SqlAssetRepository()
    asset = await repository.get(asset_id)
    await repository.update(asset_id, patch=ExtractionFacet(metadata_extracted=True).to_patch())
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from assetflow.core.database.models import Asset, AssetVersion
from assetflow.core.pipeline.metadata_document import MetadataPatch
from assetflow.core.pipeline.models import (
    AssetNotFoundError,
    AssetRecord,
    AssetVersionRecord,
    ThumbnailStatus,
    UpdateRejectedError,
)
from assetflow.core.shared.database_service import database_service

logger = logging.getLogger("assetflow.asset_repository")

# Columns stages are allowed to write through update()
WRITABLE_COLUMNS = frozenset({
    "thumbnail_status",
    "thumbnail_started_at",
    "thumbnail_error",
    "thumbnail_retry_count",
    "thumbnail_last_retry_at",
    "mime_type",
    "storage_path",
    "file_size",
    "width",
    "height",
})


def asset_to_record(asset: Asset) -> AssetRecord:
    return AssetRecord(
        id=asset.id,
        tenant_id=asset.tenant_id,
        brand_id=asset.brand_id,
        mime_type=asset.mime_type,
        original_filename=asset.original_filename,
        storage_path=asset.storage_path,
        thumbnail_status=ThumbnailStatus(asset.thumbnail_status or ThumbnailStatus.PENDING.value),
        thumbnail_started_at=asset.thumbnail_started_at,
        thumbnail_error=asset.thumbnail_error,
        thumbnail_retry_count=asset.thumbnail_retry_count or 0,
        thumbnail_last_retry_at=asset.thumbnail_last_retry_at,
        title=asset.title,
        file_size=asset.file_size,
        width=asset.width,
        height=asset.height,
        metadata=dict(asset.metadata_ or {}),
    )


def version_to_record(version: AssetVersion) -> AssetVersionRecord:
    return AssetVersionRecord(
        id=version.id,
        asset_id=version.asset_id,
        version_number=version.version_number,
        file_path=version.file_path,
        mime_type=version.mime_type,
        file_size=version.file_size,
        checksum=version.checksum,
        width=version.width,
        height=version.height,
        pipeline_status=version.pipeline_status,
        is_current=version.is_current,
        metadata=dict(version.metadata_ or {}),
    )


class SqlAssetRepository:
    """AssetRepository over the assets / asset_versions tables."""

    def __init__(self, session_provider=None):
        self._session_provider = session_provider or database_service.get_session

    async def get(self, asset_id: UUID) -> AssetRecord:
        async with self._session_provider() as session:
            asset = await self._load(session, asset_id)
            return asset_to_record(asset)

    async def update(
        self,
        asset_id: UUID,
        *,
        fields: Optional[Mapping[str, Any]] = None,
        patch: Optional[MetadataPatch] = None,
        guard: Optional[Callable[[AssetRecord], Optional[str]]] = None,
    ) -> AssetRecord:
        fields = dict(fields or {})
        unknown = set(fields) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not writable by the pipeline: {sorted(unknown)}")

        async with self._session_provider() as session:
            asset = await self._load(session, asset_id, for_update=True)

            if guard is not None:
                reason = guard(asset_to_record(asset))
                if reason is not None:
                    raise UpdateRejectedError(reason)

            for column, value in fields.items():
                setattr(asset, column, value.value if isinstance(value, Enum) else value)

            if patch is not None and not patch.is_empty():
                # Assign a new object so the JSON column is flagged dirty
                asset.metadata_ = patch.apply(asset.metadata_)

            asset.updated_at = datetime.utcnow()
            await session.flush()
            return asset_to_record(asset)

    async def get_current_version(self, asset_id: UUID) -> Optional[AssetVersionRecord]:
        async with self._session_provider() as session:
            result = await session.execute(
                select(AssetVersion).where(
                    and_(AssetVersion.asset_id == asset_id, AssetVersion.is_current.is_(True))
                )
            )
            version = result.scalar_one_or_none()
            return version_to_record(version) if version else None

    async def list_stuck_thumbnails(self, started_before: datetime, limit: int) -> List[AssetRecord]:
        """Assets in PROCESSING whose claim is older than `started_before` (or has no timestamp)."""
        async with self._session_provider() as session:
            result = await session.execute(
                select(Asset)
                .where(
                    and_(
                        Asset.thumbnail_status == ThumbnailStatus.PROCESSING.value,
                        or_(
                            Asset.thumbnail_started_at.is_(None),
                            Asset.thumbnail_started_at < started_before,
                        ),
                    )
                )
                .order_by(Asset.thumbnail_started_at.asc().nullsfirst())
                .limit(limit)
            )
            return [asset_to_record(a) for a in result.scalars().all()]

    async def _load(self, session: AsyncSession, asset_id: UUID, for_update: bool = False) -> Asset:
        query = select(Asset).where(Asset.id == asset_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        asset = result.scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(asset_id)
        return asset
