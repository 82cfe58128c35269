"""
Celery tasks package for assetflow.

Re-exports all task functions; Celery discovers them via the include= list in
celery_app.py.
"""

from assetflow.core.tasks.pipeline import (
    ai_tagging_task,
    extract_metadata_task,
    finalize_asset_task,
    generate_thumbnails_task,
    retry_thumbnails_task,
    score_compliance_task,
)
from assetflow.core.tasks.recovery import recover_stuck_thumbnails_task

__all__ = [
    "ai_tagging_task",
    "extract_metadata_task",
    "finalize_asset_task",
    "generate_thumbnails_task",
    "recover_stuck_thumbnails_task",
    "retry_thumbnails_task",
    "score_compliance_task",
]
