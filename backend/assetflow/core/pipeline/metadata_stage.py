"""
Metadata extraction stage.

Derives orientation, resolution class and dominant colours from the completed
thumbnails. Gate policy defaults to RETRY: while thumbnails are not ready the
stage reschedules itself with backoff instead of finishing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from .coordinator import (
    ANALYSIS_SIZE,
    THUMBNAIL_UNAVAILABLE,
    PipelineConfig,
    check_thumbnail_gate,
    report_missing_visual_metadata,
)
from .interfaces import AssetRepository, AssetStorage, ColorAnalyzer, Dispatcher, IncidentSink
from .metadata_document import Dimensions, ExtractionFacet, MetadataView
from .models import AssetRecord, ColorAnalysisError, StageName, StageOutcome, StageResult

logger = logging.getLogger("assetflow.pipeline.metadata")

# Upper bounds in megapixels; anything larger is "ultra"
RESOLUTION_CLASSES = (
    (1.0, "low"),
    (4.0, "medium"),
    (12.0, "high"),
)


def classify_orientation(dimensions: Dimensions) -> str:
    if dimensions.width > dimensions.height:
        return "landscape"
    if dimensions.width < dimensions.height:
        return "portrait"
    return "square"


def classify_resolution(dimensions: Dimensions) -> str:
    megapixels = dimensions.megapixels
    for limit, name in RESOLUTION_CLASSES:
        if megapixels < limit:
            return name
    return "ultra"


class MetadataExtractionStage:
    stage = StageName.METADATA_EXTRACTION

    def __init__(
        self,
        repository: AssetRepository,
        storage: AssetStorage,
        analyzer: ColorAnalyzer,
        dispatcher: Dispatcher,
        incidents: IncidentSink,
        config: PipelineConfig,
    ):
        self._repository = repository
        self._storage = storage
        self._analyzer = analyzer
        self._dispatcher = dispatcher
        self._incidents = incidents
        self._config = config

    async def run(self, asset_id: UUID, attempt: int = 1) -> StageResult:
        asset = await self._repository.get(asset_id)

        gate = check_thumbnail_gate(asset, self.stage, attempt, self._config)
        if not gate.passed:
            return await self._gate_missed(asset, gate, attempt)

        view = MetadataView(asset.metadata)
        medium = view.thumbnail_dimensions(ANALYSIS_SIZE)
        if medium is None or view.flag("thumbnail_timeout"):
            reason = (
                "thumbnail generation recovered from a timeout"
                if view.flag("thumbnail_timeout")
                else f"{ANALYSIS_SIZE} thumbnail dimensions missing or malformed"
            )
            await report_missing_visual_metadata(
                self._incidents,
                asset,
                f"Thumbnail status is completed but {reason}; derived metadata not populated",
                stage=self.stage,
            )
            self._dispatcher.dispatch(StageName.COMPLIANCE, asset.id)
            return StageResult(self.stage, asset.id, StageOutcome.INCOMPLETE, detail=reason)

        values: Dict[str, Any] = {
            "orientation": classify_orientation(medium),
            "metadata_extracted": True,
            "metadata_extraction_skipped": None,
            "metadata_extraction_skip_reason": None,
        }
        source = view.source_dimensions()
        if source is not None:
            values["resolution_class"] = classify_resolution(source)

        colors = self._analyze_colors(asset, view)
        if colors is not None:
            values.update(colors)

        await self._repository.update(asset.id, patch=ExtractionFacet(**values).to_patch())
        self._dispatcher.dispatch(StageName.COMPLIANCE, asset.id)

        logger.info(
            f"Metadata extracted for asset {asset.id}: orientation={values['orientation']}, "
            f"resolution={values.get('resolution_class')}, colors={len(values.get('dominant_colors') or [])}"
        )
        return StageResult(
            self.stage, asset.id, StageOutcome.COMPLETED,
            data={"colors_analyzed": colors is not None},
        )

    def _analyze_colors(self, asset: AssetRecord, view: MetadataView) -> Optional[Dict[str, Any]]:
        """Colour keys to write, or None to leave existing colour keys as they are."""
        path = view.thumbnail_path(ANALYSIS_SIZE)
        try:
            if path is None:
                raise ColorAnalysisError(f"No {ANALYSIS_SIZE} thumbnail path recorded")
            analysis = self._analyzer.analyze(self._storage.get_bytes(path))
        except Exception as e:
            logger.warning(f"Color analysis failed for asset {asset.id}: {e}", exc_info=True)
            return None
        return {
            "dominant_colors": analysis.dominant_colors,
            "dominant_color_bucket": analysis.bucket,
        }

    async def _gate_missed(self, asset: AssetRecord, gate, attempt: int) -> StageResult:
        status = asset.thumbnail_status.value

        if gate.should_retry:
            self._dispatcher.dispatch(
                self.stage, asset.id, countdown=gate.countdown, attempt=attempt + 1
            )
            logger.info(
                f"Asset {asset.id} thumbnails {status}; metadata extraction retry "
                f"{attempt + 1} in {gate.countdown}s"
            )
            return StageResult(
                self.stage, asset.id, StageOutcome.RETRY_SCHEDULED,
                detail=f"thumbnail_status={status}",
                data={"countdown": gate.countdown, "next_attempt": attempt + 1},
            )

        if gate.exhausted:
            # Thumbnail completion dispatches this stage again
            logger.warning(
                f"Asset {asset.id} thumbnails still {status} after {attempt} attempts; "
                f"giving up metadata extraction"
            )
            return StageResult(
                self.stage, asset.id, StageOutcome.GATE_EXHAUSTED,
                detail=f"thumbnail_status={status}", data={"attempts": attempt},
            )

        await self._repository.update(
            asset.id,
            patch=ExtractionFacet(
                metadata_extraction_skipped=True,
                metadata_extraction_skip_reason=THUMBNAIL_UNAVAILABLE,
            ).to_patch(),
        )
        self._dispatcher.dispatch(StageName.COMPLIANCE, asset.id)
        logger.info(f"Metadata extraction skipped for asset {asset.id}: thumbnails {status}")
        return StageResult(self.stage, asset.id, StageOutcome.SKIPPED, detail=THUMBNAIL_UNAVAILABLE)
