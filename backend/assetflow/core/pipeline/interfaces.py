"""
Boundary contracts the pipeline stages depend on.

Stages receive implementations through their constructors. Production
implementations:

    AssetRepository       assetflow.core.shared.asset_repository.SqlAssetRepository
    Dispatcher            assetflow.core.ops.dispatcher.CeleryDispatcher
    BrandModelLookup      assetflow.core.shared.brand_model_service.BrandModelService
    IncidentSink          assetflow.core.shared.incident_service.SystemIncidentService
    ComplianceScoreStore  assetflow.core.shared.compliance_score_service.ComplianceScoreService
    AssetStorage          assetflow.core.storage.storage_service (local / MinIO)
    ThumbnailRenderer     assetflow.core.imaging.thumbnail_generator.ThumbnailGenerator
    ColorAnalyzer         assetflow.core.imaging.color_analysis.DominantColorAnalyzer
    TagGenerator          assetflow.core.llm.tagging_service.VisionTagGenerator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from uuid import UUID

from .metadata_document import MetadataPatch
from .models import (
    AssetRecord,
    AssetVersionRecord,
    ComplianceModel,
    ComplianceResult,
    StageName,
)


@dataclass
class RenderedImage:
    data: bytes
    width: int
    height: int
    content_type: str = "image/jpeg"


@dataclass
class RenderedThumbnails:
    source_width: int
    source_height: int
    images: Dict[str, RenderedImage] = field(default_factory=dict)


@dataclass
class ColorAnalysis:
    dominant_colors: List[Dict[str, Any]] = field(default_factory=list)
    bucket: Optional[str] = None


@dataclass
class TagCandidate:
    label: str
    confidence: float = 1.0


class AssetRepository(Protocol):
    async def get(self, asset_id: UUID) -> AssetRecord:
        """Raises AssetNotFoundError."""

    async def update(
        self,
        asset_id: UUID,
        *,
        fields: Optional[Mapping[str, Any]] = None,
        patch: Optional[MetadataPatch] = None,
        guard: Optional[Callable[[AssetRecord], Optional[str]]] = None,
    ) -> AssetRecord:
        """
        Write columns and merge a metadata patch atomically under a row lock.

        `guard` sees the locked row first; a non-None reason aborts the write
        with UpdateRejectedError.
        """

    async def get_current_version(self, asset_id: UUID) -> Optional[AssetVersionRecord]:
        ...

    async def list_stuck_thumbnails(self, started_before: datetime, limit: int) -> List[AssetRecord]:
        ...


class Dispatcher(Protocol):
    def dispatch(
        self,
        stage: StageName,
        asset_id: UUID,
        *,
        countdown: Optional[float] = None,
        attempt: int = 1,
    ) -> None:
        ...


class BrandModelLookup(Protocol):
    async def active_model(self, brand_id: UUID) -> Optional[ComplianceModel]:
        """Enabled model's active version, or None."""


class IncidentSink(Protocol):
    async def record(
        self,
        source_type: str,
        source_id: str,
        title: str,
        detail: str,
        *,
        severity: str = "warning",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Returns True when a new incident was created, False when one is already open."""


class ComplianceScoreStore(Protocol):
    async def upsert(self, asset_id: UUID, brand_id: UUID, result: ComplianceResult) -> None:
        ...


class AssetStorage(Protocol):
    def get_bytes(self, path: str) -> bytes:
        ...

    def put_bytes(self, path: str, data: bytes, content_type: str) -> str:
        ...


class ThumbnailRenderer(Protocol):
    def supports(self, mime_type: Optional[str]) -> bool:
        ...

    def render(self, source: bytes, mime_type: str, sizes: Mapping[str, int]) -> RenderedThumbnails:
        ...


class ColorAnalyzer(Protocol):
    def analyze(self, image: bytes) -> ColorAnalysis:
        """Raises ColorAnalysisError."""


class TagGenerator(Protocol):
    def is_available(self) -> bool:
        ...

    def generate(self, image: bytes, context: Mapping[str, Any]) -> List[TagCandidate]:
        """Raises TagGenerationError."""
