"""
Pipeline stages and the rules they share.

Stages are plain classes with constructor-injected collaborators; the Celery
tasks in assetflow.core.tasks.pipeline wire them to the database, storage and
broker.
"""

from .compliance_stage import ComplianceScoringStage
from .coordinator import PipelineConfig
from .metadata_document import MetadataPatch, MetadataView
from .metadata_stage import MetadataExtractionStage
from .models import GatePolicy, StageName, StageOutcome, StageResult, ThumbnailStatus
from .tagging_stage import AiTaggingStage
from .thumbnail_retry import ThumbnailRetryService
from .thumbnail_stage import ThumbnailStage
from .version_sync import VersionSyncService

__all__ = [
    "AiTaggingStage",
    "ComplianceScoringStage",
    "GatePolicy",
    "MetadataExtractionStage",
    "MetadataPatch",
    "MetadataView",
    "PipelineConfig",
    "StageName",
    "StageOutcome",
    "StageResult",
    "ThumbnailRetryService",
    "ThumbnailStage",
    "ThumbnailStatus",
    "VersionSyncService",
]
