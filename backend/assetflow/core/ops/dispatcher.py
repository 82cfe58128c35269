"""
Stage dispatch over Celery.

Stages only know StageName; this module maps each name to its registered task
and queue and sends it by name, so stage modules never import task modules.
"""

import logging
from typing import Dict, Optional, Tuple
from uuid import UUID

from assetflow.core.pipeline.models import StageName

logger = logging.getLogger("assetflow.dispatcher")

# Stage -> (task name, queue)
STAGE_TASKS: Dict[StageName, Tuple[str, str]] = {
    StageName.THUMBNAILS: ("assetflow.tasks.generate_thumbnails", "thumbnails"),
    StageName.METADATA_EXTRACTION: ("assetflow.tasks.extract_metadata", "analysis"),
    StageName.AI_TAGGING: ("assetflow.tasks.ai_tagging", "analysis"),
    StageName.COMPLIANCE: ("assetflow.tasks.score_compliance", "analysis"),
    StageName.FINALIZE: ("assetflow.tasks.finalize_asset", "analysis"),
}

# Stages whose task takes an attempt counter
ATTEMPT_STAGES = frozenset({StageName.METADATA_EXTRACTION, StageName.AI_TAGGING})


class CeleryDispatcher:
    def __init__(self, app=None):
        if app is None:
            from assetflow.celery_app import app
        self._app = app

    def dispatch(
        self,
        stage: StageName,
        asset_id: UUID,
        *,
        countdown: Optional[float] = None,
        attempt: int = 1,
    ) -> None:
        task_name, queue = STAGE_TASKS[stage]
        kwargs = {"asset_id": str(asset_id)}
        if stage in ATTEMPT_STAGES:
            kwargs["attempt"] = attempt

        self._app.send_task(task_name, kwargs=kwargs, queue=queue, countdown=countdown)
        if countdown:
            logger.debug(f"Dispatched {stage.value} for asset {asset_id} in {countdown}s (attempt {attempt})")
        else:
            logger.debug(f"Dispatched {stage.value} for asset {asset_id}")
