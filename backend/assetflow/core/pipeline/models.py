"""
Value types shared by every pipeline stage.

Kept free of database and settings imports so configuration, ORM models and
stages can all depend on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class ThumbnailStatus(str, Enum):
    """Thumbnail state machine.

    PENDING -> PROCESSING -> {COMPLETED, FAILED, SKIPPED}
    PENDING -> SKIPPED (unsupported type)
    PROCESSING -> PROCESSING (stuck recovery after timeout, same invocation settles it)
    FAILED/SKIPPED -> PENDING (manual retry)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_THUMBNAIL_STATUSES


TERMINAL_THUMBNAIL_STATUSES = frozenset(
    {ThumbnailStatus.COMPLETED, ThumbnailStatus.FAILED, ThumbnailStatus.SKIPPED}
)


class StageName(str, Enum):
    THUMBNAILS = "thumbnails"
    METADATA_EXTRACTION = "metadata_extraction"
    AI_TAGGING = "ai_tagging"
    COMPLIANCE = "compliance"
    FINALIZE = "finalize"


class GatePolicy(str, Enum):
    """What a thumbnail-gated stage does when thumbnails are not ready."""
    RETRY = "retry"
    SKIP = "skip"


class StageOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    INCOMPLETE = "incomplete"
    RETRY_SCHEDULED = "retry_scheduled"
    DEFERRED = "deferred"
    GATE_EXHAUSTED = "gate_exhausted"
    ABANDONED = "abandoned"


class EvaluationStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    NOT_APPLICABLE = "not_applicable"


# ============================================================================
# Exceptions
# ============================================================================


class PipelineError(Exception):
    """Base class for errors raised inside pipeline stages."""


class AssetNotFoundError(PipelineError):
    def __init__(self, asset_id: UUID):
        super().__init__(f"Asset {asset_id} not found")
        self.asset_id = asset_id


class UnsupportedMediaError(PipelineError):
    """Renderer cannot produce a raster preview for this media type."""


class ThumbnailGenerationError(PipelineError):
    """Rendering or storing thumbnails failed."""


class ColorAnalysisError(PipelineError):
    """Dominant colour analysis could not read the thumbnail."""


class UpdateRejectedError(PipelineError):
    """A guarded update found the locked row no longer in the expected state."""


class TagGenerationError(PipelineError):
    """The tagging backend failed or returned an unusable response."""


# ============================================================================
# Records passed across the repository boundary
# ============================================================================


@dataclass
class AssetRecord:
    """Detached snapshot of an asset row."""
    id: UUID
    tenant_id: UUID
    brand_id: Optional[UUID]
    mime_type: Optional[str]
    original_filename: Optional[str]
    storage_path: Optional[str]
    thumbnail_status: ThumbnailStatus = ThumbnailStatus.PENDING
    thumbnail_started_at: Optional[datetime] = None
    thumbnail_error: Optional[str] = None
    thumbnail_retry_count: int = 0
    thumbnail_last_retry_at: Optional[datetime] = None
    title: Optional[str] = None
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AssetVersionRecord:
    id: UUID
    asset_id: UUID
    version_number: int
    file_path: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    checksum: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pipeline_status: str = "pending"
    is_current: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ComplianceModel:
    """Active brand compliance model version (rules + weights)."""
    brand_id: UUID
    version_id: UUID
    scoring_rules: Dict[str, Any] = field(default_factory=dict)
    scoring_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ComplianceResult:
    evaluation_status: EvaluationStatus
    overall_score: Optional[int] = None
    color_score: Optional[int] = None
    typography_score: Optional[int] = None
    tone_score: Optional[int] = None
    imagery_score: Optional[int] = None
    breakdown: Dict[str, Any] = field(default_factory=dict)
    model_version_id: Optional[UUID] = None


@dataclass
class StageResult:
    """What a stage invocation concluded. Returned by Celery tasks as a dict."""
    stage: StageName
    asset_id: UUID
    outcome: StageOutcome
    detail: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "asset_id": str(self.asset_id),
            "status": self.outcome.value,
            "detail": self.detail,
            **self.data,
        }
