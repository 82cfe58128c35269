"""
Typed access to the shared asset metadata document.

The document itself stays a JSON object on the asset row. Each stage owns a
facet (a pydantic model naming the keys it may write) and turns it into a
MetadataPatch; the repository applies the patch with read-merge-write so no
stage ever replaces keys it does not own.

A facet field explicitly set to None removes that key:

    ThumbnailFacet(preview_generated=True, thumbnail_timeout=None).to_patch()
    # -> set {"preview_generated": True}, unset {"thumbnail_timeout"}
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, conlist

from .models import StageName

# Keys written at upload or by the surrounding application. Version sync only
# fills them when the asset has no value of its own.
ASSET_SCOPED_KEYS: FrozenSet[str] = frozenset(
    {"category_id", "metadata_extracted", "preview_generated", "approval_status"}
)


@dataclass
class MetadataPatch:
    """
    Partial update to a metadata document.

    Applied in order: unset, defaults (only where the current value is absent
    or None), set.
    """
    set: Dict[str, Any] = field(default_factory=dict)
    unset: FrozenSet[str] = frozenset()
    defaults: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.unset = frozenset(self.unset)

    def is_empty(self) -> bool:
        return not (self.set or self.unset or self.defaults)

    def apply(self, document: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        result = copy.deepcopy(dict(document or {}))
        for key in self.unset:
            result.pop(key, None)
        for key, value in self.defaults.items():
            if result.get(key) is None:
                result[key] = copy.deepcopy(value)
        for key, value in self.set.items():
            result[key] = copy.deepcopy(value)
        return result


# ============================================================================
# Facet value types
# ============================================================================


class Dimensions(BaseModel):
    width: PositiveInt
    height: PositiveInt

    @property
    def megapixels(self) -> float:
        return (self.width * self.height) / 1_000_000


class DominantColor(BaseModel):
    hex: str = Field(pattern=r"^#[0-9A-Fa-f]{6}$")
    rgb: conlist(int, min_length=3, max_length=3)
    coverage: float = Field(ge=0.0, le=1.0)


# ============================================================================
# Facets
# ============================================================================


class MetadataFacet(BaseModel):
    """Keys one stage is allowed to write."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    owner: ClassVar[StageName]

    @classmethod
    def keys(cls) -> FrozenSet[str]:
        return frozenset(f.alias or name for name, f in cls.model_fields.items())

    def to_patch(self) -> MetadataPatch:
        data = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return MetadataPatch(
            set={k: v for k, v in data.items() if v is not None},
            unset=frozenset(k for k, v in data.items() if v is None),
        )


class ThumbnailFacet(MetadataFacet):
    owner: ClassVar[StageName] = StageName.THUMBNAILS

    thumbnails: Optional[Dict[str, str]] = None
    thumbnail_dimensions: Optional[Dict[str, Dimensions]] = None
    source_dimensions: Optional[Dimensions] = None
    preview_generated: Optional[bool] = None
    thumbnail_timeout: Optional[bool] = None


class ExtractionFacet(MetadataFacet):
    owner: ClassVar[StageName] = StageName.METADATA_EXTRACTION

    dominant_colors: Optional[List[DominantColor]] = None
    dominant_color_bucket: Optional[str] = None
    orientation: Optional[Literal["landscape", "portrait", "square"]] = None
    resolution_class: Optional[Literal["low", "medium", "high", "ultra"]] = None
    metadata_extracted: Optional[bool] = None
    metadata_extraction_skipped: Optional[bool] = Field(default=None, alias="_metadata_extraction_skipped")
    metadata_extraction_skip_reason: Optional[str] = Field(default=None, alias="_metadata_extraction_skip_reason")


class TaggingFacet(MetadataFacet):
    owner: ClassVar[StageName] = StageName.AI_TAGGING

    ai_tags: Optional[List[str]] = None
    ai_tagging_completed: Optional[bool] = None
    ai_tagging_skipped: Optional[bool] = Field(default=None, alias="_ai_tagging_skipped")
    ai_tagging_skip_reason: Optional[str] = Field(default=None, alias="_ai_tagging_skip_reason")
    ai_tagging_error: Optional[str] = Field(default=None, alias="_ai_tagging_error")


FACETS: Tuple[Type[MetadataFacet], ...] = (ThumbnailFacet, ExtractionFacet, TaggingFacet)


def build_key_owners(facets) -> Dict[str, StageName]:
    """Map each metadata key to its owning stage; a key owned twice is a programming error."""
    owners: Dict[str, StageName] = {}
    for facet in facets:
        for key in facet.keys():
            if key in owners:
                raise ValueError(
                    f"Metadata key '{key}' claimed by both {owners[key].value} and {facet.owner.value}"
                )
            owners[key] = facet.owner
    return owners


KEY_OWNERS: Dict[str, StageName] = build_key_owners(FACETS)


# ============================================================================
# Reads
# ============================================================================


class MetadataView:
    """Tolerant typed reads; malformed entries read as missing."""

    def __init__(self, document: Optional[Mapping[str, Any]]):
        self._doc = document if isinstance(document, Mapping) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._doc.get(key, default)

    def flag(self, key: str) -> bool:
        return self._doc.get(key) is True

    def thumbnail_path(self, size: str) -> Optional[str]:
        thumbnails = self._doc.get("thumbnails")
        if not isinstance(thumbnails, Mapping):
            return None
        path = thumbnails.get(size)
        return path if isinstance(path, str) and path else None

    def thumbnail_dimensions(self, size: str) -> Optional[Dimensions]:
        dims = self._doc.get("thumbnail_dimensions")
        if not isinstance(dims, Mapping):
            return None
        return _parse_dimensions(dims.get(size))

    def source_dimensions(self) -> Optional[Dimensions]:
        return _parse_dimensions(self._doc.get("source_dimensions"))

    def dominant_colors(self) -> List[DominantColor]:
        raw = self._doc.get("dominant_colors")
        if not isinstance(raw, list):
            return []
        colors = []
        for entry in raw:
            try:
                colors.append(DominantColor.model_validate(entry))
            except ValidationError:
                continue
        return colors


def _parse_dimensions(value: Any) -> Optional[Dimensions]:
    if value is None:
        return None
    try:
        return Dimensions.model_validate(value)
    except ValidationError:
        return None


def version_sync_patch(version_metadata: Optional[Mapping[str, Any]]) -> MetadataPatch:
    """
    Patch that brings a version's metadata onto its asset.

    Null version values never overwrite. Asset-scoped keys only fill gaps.
    Keys owned by a stage facet are left to that stage; a version snapshot
    can carry stale markers from an earlier run.
    """
    set_: Dict[str, Any] = {}
    defaults: Dict[str, Any] = {}
    for key, value in (version_metadata or {}).items():
        if value is None:
            continue
        if key in ASSET_SCOPED_KEYS:
            defaults[key] = value
        elif key not in KEY_OWNERS:
            set_[key] = value
    return MetadataPatch(set=set_, defaults=defaults)
