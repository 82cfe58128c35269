"""
Thumbnail stage.

Renders the configured preview sizes for raster images, SVG, PDF and video and
always leaves the asset in a terminal thumbnail status once it has claimed it:

    PENDING/FAILED/SKIPPED --claim--> PROCESSING --> COMPLETED | FAILED | SKIPPED

A PROCESSING row younger than the stuck timeout belongs to another invocation;
this run defers to it and checks back when its lease expires. An older row is
abandoned work and is regenerated by this run (the only recovery transition).
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import UUID

from .coordinator import PipelineConfig, dispatch_thumbnail_dependents
from .interfaces import AssetRepository, AssetStorage, Dispatcher, ThumbnailRenderer
from .metadata_document import Dimensions, ThumbnailFacet
from .models import (
    AssetRecord,
    StageName,
    StageOutcome,
    StageResult,
    ThumbnailGenerationError,
    ThumbnailStatus,
)

logger = logging.getLogger("assetflow.pipeline.thumbnails")

_OUTCOMES = {
    ThumbnailStatus.COMPLETED: StageOutcome.COMPLETED,
    ThumbnailStatus.FAILED: StageOutcome.FAILED,
    ThumbnailStatus.SKIPPED: StageOutcome.SKIPPED,
}


def thumbnail_key(asset: AssetRecord, size: str) -> str:
    return f"tenants/{asset.tenant_id}/assets/{asset.id}/thumbnails/{size}.jpg"


class ThumbnailStage:
    stage = StageName.THUMBNAILS

    def __init__(
        self,
        repository: AssetRepository,
        storage: AssetStorage,
        renderer: ThumbnailRenderer,
        dispatcher: Dispatcher,
        config: PipelineConfig,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._repository = repository
        self._storage = storage
        self._renderer = renderer
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    async def run(self, asset_id: UUID) -> StageResult:
        asset = await self._repository.get(asset_id)
        now = self._clock()

        if asset.thumbnail_status == ThumbnailStatus.COMPLETED:
            # Redelivery: nothing to render, but a lost fan-out is healed here
            dispatched = dispatch_thumbnail_dependents(self._dispatcher, asset.id, ThumbnailStatus.COMPLETED)
            return StageResult(
                self.stage, asset.id, StageOutcome.COMPLETED,
                detail="already_completed",
                data={"thumbnail_status": ThumbnailStatus.COMPLETED.value, "dispatched": [s.value for s in dispatched]},
            )

        recovered = False
        if asset.thumbnail_status == ThumbnailStatus.PROCESSING:
            remaining = self._remaining_lease(asset, now)
            if remaining is not None:
                countdown = max(1, math.ceil(remaining))
                self._dispatcher.dispatch(self.stage, asset.id, countdown=countdown)
                logger.info(
                    f"Asset {asset.id} thumbnail already processing; rechecking in {countdown}s"
                )
                return StageResult(
                    self.stage, asset.id, StageOutcome.DEFERRED,
                    detail="processing_elsewhere", data={"countdown": countdown},
                )
            logger.warning(
                f"Asset {asset.id} stuck in thumbnail processing since "
                f"{asset.thumbnail_started_at}; regenerating"
            )
            recovered = True

        if not self._renderer.supports(asset.mime_type):
            return await self._settle(
                asset,
                ThumbnailStatus.SKIPPED,
                error=f"Thumbnail generation not supported for {asset.mime_type or 'unknown type'}",
                recovered=recovered,
            )

        await self._repository.update(
            asset.id,
            fields={
                "thumbnail_status": ThumbnailStatus.PROCESSING,
                "thumbnail_started_at": now,
                "thumbnail_error": None,
            },
            patch=ThumbnailFacet(thumbnail_timeout=True).to_patch() if recovered else None,
        )

        try:
            facet = self._generate(asset)
        except Exception as e:
            logger.error(f"Thumbnail generation failed for asset {asset.id}: {e}", exc_info=True)
            return await self._settle(
                asset, ThumbnailStatus.FAILED, error=str(e) or e.__class__.__name__, recovered=recovered
            )

        return await self._settle(asset, ThumbnailStatus.COMPLETED, facet=facet, recovered=recovered)

    def _remaining_lease(self, asset: AssetRecord, now: datetime) -> Optional[float]:
        """Seconds until a PROCESSING claim counts as abandoned; None if it already does."""
        if asset.thumbnail_started_at is None:
            return None
        age = (now - asset.thumbnail_started_at).total_seconds()
        remaining = self._config.thumbnail_stuck_timeout_seconds - age
        return remaining if remaining > 0 else None

    def _generate(self, asset: AssetRecord) -> ThumbnailFacet:
        if not asset.storage_path:
            raise ThumbnailGenerationError("Asset has no stored source file")

        source = self._storage.get_bytes(asset.storage_path)
        rendered = self._renderer.render(source, asset.mime_type, self._config.thumbnail_sizes)
        if not rendered.images:
            raise ThumbnailGenerationError("Renderer produced no thumbnails")

        paths: Dict[str, str] = {}
        dimensions: Dict[str, Dimensions] = {}
        for size, image in sorted(rendered.images.items()):
            paths[size] = self._storage.put_bytes(thumbnail_key(asset, size), image.data, image.content_type)
            dimensions[size] = Dimensions(width=image.width, height=image.height)

        return ThumbnailFacet(
            thumbnails=paths,
            thumbnail_dimensions=dimensions,
            source_dimensions=Dimensions(width=rendered.source_width, height=rendered.source_height),
            preview_generated=True,
            thumbnail_timeout=None,
        )

    async def _settle(
        self,
        asset: AssetRecord,
        status: ThumbnailStatus,
        *,
        error: Optional[str] = None,
        facet: Optional[ThumbnailFacet] = None,
        recovered: bool = False,
    ) -> StageResult:
        await self._repository.update(
            asset.id,
            fields={"thumbnail_status": status, "thumbnail_error": error},
            patch=facet.to_patch() if facet is not None else None,
        )

        if status == ThumbnailStatus.COMPLETED:
            logger.info(f"Thumbnails generated for asset {asset.id}")
        else:
            logger.info(f"Thumbnail {status.value} for asset {asset.id}: {error}")

        dispatched = dispatch_thumbnail_dependents(self._dispatcher, asset.id, status)
        return StageResult(
            self.stage, asset.id, _OUTCOMES[status],
            detail=error,
            data={
                "thumbnail_status": status.value,
                "recovered_from_stuck": recovered,
                "dispatched": [s.value for s in dispatched],
            },
        )
