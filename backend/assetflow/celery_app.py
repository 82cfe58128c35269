"""
Celery application setup for assetflow.

Queue Architecture:
- thumbnails: Thumbnail rendering (CPU heavy, first stage of every asset)
- analysis: Metadata extraction, AI tagging, compliance scoring, finalize
- maintenance: Stuck-thumbnail sweep and manual retries

Delivery is at-least-once (acks_late); every stage task is safe to run twice.
"""
import logging

from celery import Celery
from celery.signals import worker_ready
from kombu import Queue

from assetflow.config import settings

app = Celery(
    "assetflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["assetflow.core.tasks"],
)

app.conf.task_queues = (
    Queue("thumbnails", routing_key="thumbnails"),
    Queue("analysis", routing_key="analysis"),
    Queue("maintenance", routing_key="maintenance"),
)

app.conf.update(
    task_acks_late=settings.celery_acks_late,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=settings.celery_prefetch_multiplier,
    worker_max_tasks_per_child=settings.celery_max_tasks_per_child,
    task_soft_time_limit=settings.celery_task_soft_time_limit,
    task_time_limit=settings.celery_task_time_limit,
    result_expires=settings.celery_result_expires,
    task_default_queue="analysis",
    task_routes={
        "assetflow.tasks.generate_thumbnails": {"queue": "thumbnails"},
        "assetflow.tasks.extract_metadata": {"queue": "analysis"},
        "assetflow.tasks.ai_tagging": {"queue": "analysis"},
        "assetflow.tasks.score_compliance": {"queue": "analysis"},
        "assetflow.tasks.finalize_asset": {"queue": "analysis"},
        "assetflow.tasks.recover_stuck_thumbnails": {"queue": "maintenance"},
        "assetflow.tasks.retry_thumbnails": {"queue": "maintenance"},
    },
)

# ============================================================================
# Celery Beat Schedule
# ============================================================================
beat_schedule = {}

if settings.stuck_sweep_enabled:
    beat_schedule["recover-stuck-thumbnails"] = {
        "task": "assetflow.tasks.recover_stuck_thumbnails",
        "schedule": settings.stuck_sweep_interval_seconds,
        "kwargs": {"limit": settings.stuck_sweep_limit},
        "options": {"queue": "maintenance"},
    }

app.conf.beat_schedule = beat_schedule
app.conf.timezone = "UTC"


# ============================================================================
# WORKER STARTUP RECOVERY
# ============================================================================
# Assets left in PROCESSING by a crashed worker are re-dispatched as soon as a
# worker comes back, instead of waiting for the first beat tick.

_recovery_logger = logging.getLogger("assetflow.celery.recovery")


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    if not settings.stuck_sweep_enabled:
        _recovery_logger.info("Startup recovery disabled via STUCK_SWEEP_ENABLED")
        return

    from assetflow.core.tasks.recovery import recover_stuck_thumbnails_task

    recover_stuck_thumbnails_task.apply_async(
        kwargs={"limit": settings.stuck_sweep_limit},
        countdown=10,
    )
    _recovery_logger.info("Stuck thumbnail recovery task scheduled")
