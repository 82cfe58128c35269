"""
Rules shared by every stage: configuration, the thumbnail gate, fan-out after
a stage settles, and the missing-visual-metadata incident.

Gating
    No image-derived stage runs to completion until thumbnail_status is
    COMPLETED. Each gated stage has its own GatePolicy:

        metadata_extraction  RETRY  redispatch itself with backoff
        ai_tagging           SKIP   record skip markers and finish

    The two policies are configured separately on purpose; they are not
    unified.

Ordering
    A gate reads the persisted thumbnail status. Dependents are only
    dispatched after the thumbnail stage has written its terminal status, and
    a COMPLETED thumbnail run always re-dispatches them, so a dependent that
    exhausted its gate is picked up again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from .interfaces import Dispatcher, IncidentSink
from .models import AssetRecord, GatePolicy, StageName, ThumbnailStatus

logger = logging.getLogger("assetflow.pipeline.coordinator")

VISUAL_METADATA_MISSING = "Expected visual metadata missing"
THUMBNAIL_UNAVAILABLE = "thumbnail_unavailable"
AI_TAGGING_DISABLED = "ai_tagging_disabled"

# Size whose dimensions drive orientation and colour analysis
ANALYSIS_SIZE = "medium"


@dataclass
class PipelineConfig:
    """Stage tunables. Built from settings in production, directly in tests."""
    thumbnail_sizes: Dict[str, int] = field(
        default_factory=lambda: {"thumb": 320, "medium": 1024, "large": 2048}
    )
    thumbnail_stuck_timeout_seconds: int = 1200
    thumbnail_max_retries: int = 3
    metadata_extraction_gate_policy: GatePolicy = GatePolicy.RETRY
    ai_tagging_gate_policy: GatePolicy = GatePolicy.SKIP
    gate_retry_backoff_seconds: List[int] = field(default_factory=lambda: [60, 120, 300, 600, 900])
    gate_retry_max_attempts: int = 10
    ai_tagging_enabled: bool = True
    ai_tag_min_confidence: float = 0.5
    ai_tag_max_tags: int = 15

    @classmethod
    def from_settings(cls, settings) -> "PipelineConfig":
        return cls(
            thumbnail_sizes=dict(settings.thumbnail_sizes),
            thumbnail_stuck_timeout_seconds=settings.thumbnail_stuck_timeout_seconds,
            thumbnail_max_retries=settings.thumbnail_max_retries,
            metadata_extraction_gate_policy=settings.metadata_extraction_gate_policy,
            ai_tagging_gate_policy=settings.ai_tagging_gate_policy,
            gate_retry_backoff_seconds=list(settings.gate_retry_backoff_seconds),
            gate_retry_max_attempts=settings.gate_retry_max_attempts,
            ai_tagging_enabled=settings.ai_tagging_enabled,
            ai_tag_min_confidence=settings.ai_tag_min_confidence,
            ai_tag_max_tags=settings.ai_tag_max_tags,
        )

    def gate_policy(self, stage: StageName) -> GatePolicy:
        if stage == StageName.METADATA_EXTRACTION:
            return self.metadata_extraction_gate_policy
        if stage == StageName.AI_TAGGING:
            return self.ai_tagging_gate_policy
        raise ValueError(f"Stage {stage.value} is not thumbnail-gated")


# ============================================================================
# Gate
# ============================================================================


@dataclass
class GateDecision:
    passed: bool
    policy: GatePolicy
    countdown: Optional[int] = None
    exhausted: bool = False

    @property
    def should_retry(self) -> bool:
        return not self.passed and self.policy == GatePolicy.RETRY and not self.exhausted

    @property
    def should_skip(self) -> bool:
        return not self.passed and self.policy == GatePolicy.SKIP


def thumbnails_ready(asset: AssetRecord) -> bool:
    return asset.thumbnail_status == ThumbnailStatus.COMPLETED


def retry_countdown(attempt: int, schedule: Sequence[int]) -> int:
    """Backoff for the given 1-based attempt; the last step repeats."""
    if not schedule:
        return 60
    index = min(max(attempt, 1) - 1, len(schedule) - 1)
    return int(schedule[index])


def check_thumbnail_gate(
    asset: AssetRecord, stage: StageName, attempt: int, config: PipelineConfig
) -> GateDecision:
    policy = config.gate_policy(stage)
    if thumbnails_ready(asset):
        return GateDecision(passed=True, policy=policy)
    if policy == GatePolicy.SKIP:
        return GateDecision(passed=False, policy=policy)
    if attempt >= config.gate_retry_max_attempts:
        return GateDecision(passed=False, policy=policy, exhausted=True)
    return GateDecision(
        passed=False,
        policy=policy,
        countdown=retry_countdown(attempt, config.gate_retry_backoff_seconds),
    )


# ============================================================================
# Fan-out
# ============================================================================

# Stages started once thumbnails settle, keyed by terminal status
THUMBNAIL_DEPENDENTS: Dict[ThumbnailStatus, tuple] = {
    ThumbnailStatus.COMPLETED: (StageName.METADATA_EXTRACTION, StageName.AI_TAGGING),
    ThumbnailStatus.FAILED: (StageName.AI_TAGGING, StageName.COMPLIANCE),
    ThumbnailStatus.SKIPPED: (StageName.AI_TAGGING, StageName.COMPLIANCE),
}


def dispatch_thumbnail_dependents(
    dispatcher: Dispatcher, asset_id: UUID, status: ThumbnailStatus
) -> List[StageName]:
    stages = list(THUMBNAIL_DEPENDENTS.get(status, ()))
    for stage in stages:
        dispatcher.dispatch(stage, asset_id)
    if stages:
        logger.debug(
            f"Dispatched {', '.join(s.value for s in stages)} for asset {asset_id} "
            f"after thumbnail {status.value}"
        )
    return stages


async def report_missing_visual_metadata(
    incidents: IncidentSink, asset: AssetRecord, detail: str, *, stage: StageName
) -> bool:
    """Open the asset-scoped incident unless one is already unresolved."""
    created = await incidents.record(
        "asset",
        str(asset.id),
        VISUAL_METADATA_MISSING,
        detail,
        severity="warning",
        metadata={
            "stage": stage.value,
            "tenant_id": str(asset.tenant_id),
            "thumbnail_status": asset.thumbnail_status.value,
        },
    )
    if created:
        logger.warning(f"Asset {asset.id}: {VISUAL_METADATA_MISSING} ({detail})")
    return created
