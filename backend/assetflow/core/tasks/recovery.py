"""
Recovery tasks: re-dispatch thumbnails left in PROCESSING by lost workers.

Runs on worker startup (celery_app.on_worker_ready) and periodically from
beat as a backup.
"""
import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from assetflow.config import settings
from assetflow.core.ops.dispatcher import CeleryDispatcher
from assetflow.core.pipeline.coordinator import PipelineConfig
from assetflow.core.pipeline.stuck_sweep import StuckThumbnailSweeper
from assetflow.core.shared.asset_repository import SqlAssetRepository

logger = logging.getLogger("assetflow.tasks.recovery")


async def recover_stuck_thumbnails(limit: int = 100, dry_run: bool = False) -> Dict[str, Any]:
    sweeper = StuckThumbnailSweeper(
        repository=SqlAssetRepository(),
        dispatcher=CeleryDispatcher(),
        config=PipelineConfig.from_settings(settings),
    )
    report = await sweeper.sweep(limit=limit, dry_run=dry_run)
    return report.to_dict()


@shared_task(bind=True, name="assetflow.tasks.recover_stuck_thumbnails")
def recover_stuck_thumbnails_task(self, limit: int = 100) -> Dict[str, Any]:
    logger.info(f"Starting stuck thumbnail recovery (limit={limit})")
    try:
        result = asyncio.run(recover_stuck_thumbnails(limit=limit))
        logger.info(f"Recovery complete: {result['found']} found, {result['dispatched']} dispatched")
        return result
    except Exception as e:
        logger.error(f"Recovery failed: {e}", exc_info=True)
        return {"status": "failed", "error": str(e)}
