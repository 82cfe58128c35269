"""
Manual thumbnail retry.

A user (or an operator) may ask for thumbnails to be generated again after a
FAILED or SKIPPED run. Retries are bounded per asset.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple
from uuid import UUID

from .coordinator import PipelineConfig
from .interfaces import AssetRepository, Dispatcher, ThumbnailRenderer
from .metadata_document import ThumbnailFacet
from .models import AssetRecord, StageName, ThumbnailStatus, UpdateRejectedError

logger = logging.getLogger("assetflow.pipeline.thumbnail_retry")


class ThumbnailRetryService:
    def __init__(
        self,
        repository: AssetRepository,
        renderer: ThumbnailRenderer,
        dispatcher: Dispatcher,
        config: PipelineConfig,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._repository = repository
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    def can_retry(self, asset: AssetRecord) -> Tuple[bool, Optional[str]]:
        """Returns (allowed, reason-if-not)."""
        if not self._renderer.supports(asset.mime_type):
            return False, f"Thumbnail generation not supported for {asset.mime_type or 'unknown type'}"
        if asset.thumbnail_retry_count >= self._config.thumbnail_max_retries:
            return False, f"Maximum retry attempts ({self._config.thumbnail_max_retries}) exceeded"
        if asset.thumbnail_status == ThumbnailStatus.PROCESSING:
            return False, "Thumbnail generation is already in progress"
        if not asset.storage_path:
            return False, "Asset has no stored source file"
        return True, None

    async def request_retry(self, asset_id: UUID) -> Tuple[bool, Optional[str]]:
        asset = await self._repository.get(asset_id)
        allowed, reason = self.can_retry(asset)
        if not allowed:
            logger.info(f"Thumbnail retry refused for asset {asset_id}: {reason}")
            return False, reason

        def still_retryable(locked: AssetRecord) -> Optional[str]:
            # The count written below is only valid if nobody retried in between
            if locked.thumbnail_retry_count != asset.thumbnail_retry_count:
                return "Thumbnail retry already requested"
            return self.can_retry(locked)[1]

        try:
            await self._repository.update(
                asset.id,
                fields={
                    "thumbnail_status": ThumbnailStatus.PENDING,
                    "thumbnail_error": None,
                    "thumbnail_started_at": None,
                    "thumbnail_retry_count": asset.thumbnail_retry_count + 1,
                    "thumbnail_last_retry_at": self._clock(),
                },
                patch=ThumbnailFacet(thumbnail_timeout=None).to_patch(),
                guard=still_retryable,
            )
        except UpdateRejectedError as e:
            logger.info(f"Thumbnail retry refused for asset {asset_id}: {e}")
            return False, str(e)

        self._dispatcher.dispatch(StageName.THUMBNAILS, asset.id)
        logger.info(
            f"Thumbnail retry {asset.thumbnail_retry_count + 1}/{self._config.thumbnail_max_retries} "
            f"queued for asset {asset_id}"
        )
        return True, None
