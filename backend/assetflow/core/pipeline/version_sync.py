"""
Finalize an asset from its current version.

Runs once the upload side marks the current version's pipeline_status
"complete". File columns are copied across and the version's metadata is
merged onto the asset without letting null values or a sparse snapshot wipe
asset-scoped keys such as category_id.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from uuid import UUID

from .interfaces import AssetRepository, Dispatcher
from .metadata_document import version_sync_patch
from .models import StageName, StageOutcome, StageResult, ThumbnailStatus

logger = logging.getLogger("assetflow.pipeline.version_sync")

# Asset column <- version attribute
FILE_FIELDS = {
    "mime_type": "mime_type",
    "storage_path": "file_path",
    "file_size": "file_size",
    "width": "width",
    "height": "height",
}


class VersionSyncService:
    stage = StageName.FINALIZE

    def __init__(self, repository: AssetRepository, dispatcher: Dispatcher):
        self._repository = repository
        self._dispatcher = dispatcher

    async def run(self, asset_id: UUID) -> StageResult:
        asset = await self._repository.get(asset_id)
        version = await self._repository.get_current_version(asset_id)

        if version is None:
            logger.warning(f"Asset {asset_id} has no current version; nothing to finalize")
            return StageResult(self.stage, asset_id, StageOutcome.SKIPPED, detail="no_current_version")

        if version.pipeline_status != "complete":
            logger.info(
                f"Asset {asset_id} version {version.version_number} pipeline_status="
                f"{version.pipeline_status}; finalize deferred to version completion"
            )
            return StageResult(
                self.stage, asset_id, StageOutcome.SKIPPED,
                detail=f"version_pipeline_{version.pipeline_status}",
            )

        fields: Dict[str, Any] = {}
        for column, attribute in FILE_FIELDS.items():
            value = getattr(version, attribute)
            if value is not None:
                fields[column] = value

        patch = version_sync_patch(version.metadata)
        updated = await self._repository.update(asset.id, fields=fields, patch=patch)

        dispatched = []
        if updated.thumbnail_status == ThumbnailStatus.SKIPPED:
            # Non-visual type: compliance records not_applicable
            self._dispatcher.dispatch(StageName.COMPLIANCE, asset.id)
            dispatched.append(StageName.COMPLIANCE.value)

        logger.info(f"Asset {asset_id} finalized from version {version.version_number}")
        return StageResult(
            self.stage, asset_id, StageOutcome.COMPLETED,
            data={"version_number": version.version_number, "dispatched": dispatched},
        )
