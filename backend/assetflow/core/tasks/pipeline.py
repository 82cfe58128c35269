"""
Pipeline stage Celery tasks.

Each task builds its stage with production collaborators, runs it under a
fresh event loop and returns the StageResult as a dict. Stage-level failures
(unsupported type, render error, gate miss) come back as results; only
infrastructure errors escape, and autoretry_for re-runs the whole invocation.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from assetflow.celery_app import app as celery_app
from assetflow.config import settings
from assetflow.core.imaging.color_analysis import DominantColorAnalyzer
from assetflow.core.imaging.thumbnail_generator import ThumbnailGenerator
from assetflow.core.llm.tagging_service import get_tag_generator
from assetflow.core.ops.dispatcher import CeleryDispatcher
from assetflow.core.pipeline.compliance_stage import ComplianceScoringStage
from assetflow.core.pipeline.coordinator import PipelineConfig
from assetflow.core.pipeline.metadata_stage import MetadataExtractionStage
from assetflow.core.pipeline.models import AssetNotFoundError, StageName, StageOutcome, StageResult
from assetflow.core.pipeline.tagging_stage import AiTaggingStage
from assetflow.core.pipeline.thumbnail_retry import ThumbnailRetryService
from assetflow.core.pipeline.thumbnail_stage import ThumbnailStage
from assetflow.core.pipeline.version_sync import VersionSyncService
from assetflow.core.shared.asset_repository import SqlAssetRepository
from assetflow.core.shared.brand_model_service import BrandModelService
from assetflow.core.shared.compliance_score_service import ComplianceScoreService
from assetflow.core.shared.incident_service import SystemIncidentService
from assetflow.core.storage.storage_service import get_storage

logger = logging.getLogger("assetflow.tasks.pipeline")


# ============================================================================
# Wiring
# ============================================================================


def _config() -> PipelineConfig:
    return PipelineConfig.from_settings(settings)


def build_thumbnail_stage() -> ThumbnailStage:
    return ThumbnailStage(
        repository=SqlAssetRepository(),
        storage=get_storage(),
        renderer=ThumbnailGenerator.from_settings(settings),
        dispatcher=CeleryDispatcher(celery_app),
        config=_config(),
    )


def build_metadata_stage() -> MetadataExtractionStage:
    return MetadataExtractionStage(
        repository=SqlAssetRepository(),
        storage=get_storage(),
        analyzer=DominantColorAnalyzer(),
        dispatcher=CeleryDispatcher(celery_app),
        incidents=SystemIncidentService(),
        config=_config(),
    )


def build_tagging_stage() -> AiTaggingStage:
    return AiTaggingStage(
        repository=SqlAssetRepository(),
        storage=get_storage(),
        generator=get_tag_generator(),
        dispatcher=CeleryDispatcher(celery_app),
        config=_config(),
    )


def build_compliance_stage() -> ComplianceScoringStage:
    return ComplianceScoringStage(
        repository=SqlAssetRepository(),
        brand_models=BrandModelService(),
        scores=ComplianceScoreService(),
        incidents=SystemIncidentService(),
    )


def build_version_sync() -> VersionSyncService:
    return VersionSyncService(repository=SqlAssetRepository(), dispatcher=CeleryDispatcher(celery_app))


def build_retry_service() -> ThumbnailRetryService:
    return ThumbnailRetryService(
        repository=SqlAssetRepository(),
        renderer=ThumbnailGenerator.from_settings(settings),
        dispatcher=CeleryDispatcher(celery_app),
        config=_config(),
    )


async def _run_stage(
    stage: StageName, asset_id: UUID, call: Callable[[], Awaitable[StageResult]]
) -> Dict[str, Any]:
    try:
        result = await call()
    except AssetNotFoundError:
        logger.warning(f"Asset {asset_id} no longer exists; abandoning {stage.value}")
        result = StageResult(stage, asset_id, StageOutcome.ABANDONED, detail="asset_not_found")
    return result.to_dict()


def _execute(stage: StageName, asset_id: str, call: Callable[[UUID], Awaitable[StageResult]]) -> Dict[str, Any]:
    uid = UUID(asset_id)
    logger.info(f"Starting {stage.value} for asset {asset_id}")
    try:
        result = asyncio.run(_run_stage(stage, uid, lambda: call(uid)))
    except Exception as e:
        logger.error(f"{stage.value} task failed for asset {asset_id}: {e}", exc_info=True)
        raise
    logger.info(f"{stage.value} finished for asset {asset_id}: {result.get('status')}")
    return result


# ============================================================================
# STAGE TASKS
# ============================================================================


@celery_app.task(bind=True, name="assetflow.tasks.generate_thumbnails", autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def generate_thumbnails_task(self, asset_id: str) -> Dict[str, Any]:
    """Render thumbnails and settle thumbnail_status."""
    return _execute(StageName.THUMBNAILS, asset_id, lambda uid: build_thumbnail_stage().run(uid))


@celery_app.task(bind=True, name="assetflow.tasks.extract_metadata", autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def extract_metadata_task(self, asset_id: str, attempt: int = 1) -> Dict[str, Any]:
    """Derive orientation, resolution class and dominant colours from thumbnails."""
    return _execute(StageName.METADATA_EXTRACTION, asset_id, lambda uid: build_metadata_stage().run(uid, attempt))


@celery_app.task(bind=True, name="assetflow.tasks.ai_tagging", autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def ai_tagging_task(self, asset_id: str, attempt: int = 1) -> Dict[str, Any]:
    return _execute(StageName.AI_TAGGING, asset_id, lambda uid: build_tagging_stage().run(uid, attempt))


@celery_app.task(bind=True, name="assetflow.tasks.score_compliance", autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def score_compliance_task(self, asset_id: str) -> Dict[str, Any]:
    return _execute(StageName.COMPLIANCE, asset_id, lambda uid: build_compliance_stage().run(uid))


@celery_app.task(bind=True, name="assetflow.tasks.finalize_asset", autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def finalize_asset_task(self, asset_id: str) -> Dict[str, Any]:
    """Synchronise the asset from its current, completed version."""
    return _execute(StageName.FINALIZE, asset_id, lambda uid: build_version_sync().run(uid))


@celery_app.task(bind=True, name="assetflow.tasks.retry_thumbnails")
def retry_thumbnails_task(self, asset_id: str) -> Dict[str, Any]:
    """Manual retry request: reset a FAILED/SKIPPED asset to PENDING and re-dispatch."""

    async def _retry() -> Dict[str, Any]:
        allowed, reason = await build_retry_service().request_retry(UUID(asset_id))
        return {"asset_id": asset_id, "status": "queued" if allowed else "refused", "detail": reason}

    return asyncio.run(_retry())
