"""
AI tagging stage.

Gate policy defaults to SKIP: without completed thumbnails the stage records
why it did not run and finishes in the same invocation. A successful run
removes every skip or error marker a previous run left behind.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from .coordinator import (
    AI_TAGGING_DISABLED,
    ANALYSIS_SIZE,
    THUMBNAIL_UNAVAILABLE,
    PipelineConfig,
    check_thumbnail_gate,
)
from .interfaces import AssetRepository, AssetStorage, Dispatcher, TagCandidate, TagGenerator
from .metadata_document import MetadataView, TaggingFacet
from .models import AssetRecord, StageName, StageOutcome, StageResult, TagGenerationError

logger = logging.getLogger("assetflow.pipeline.tagging")


MIN_TAG_LENGTH = 2
MAX_TAG_LENGTH = 64

# First matching suffix wins; the bare "s" rule goes last
_SINGULAR_RULES = (
    (re.compile(r"ies$"), "y"),
    (re.compile(r"ves$"), "f"),
    (re.compile(r"ses$"), "s"),
    (re.compile(r"xes$"), "x"),
    (re.compile(r"zes$"), "z"),
    (re.compile(r"ches$"), "ch"),
    (re.compile(r"shes$"), "sh"),
    (re.compile(r"men$"), "man"),
    (re.compile(r"een$"), "een"),
    (re.compile(r"s$"), ""),
)


def singularize(tag: str) -> str:
    for pattern, replacement in _SINGULAR_RULES:
        if pattern.search(tag):
            return pattern.sub(replacement, tag)
    return tag


def canonical_tag(label: Optional[str]) -> Optional[str]:
    """
    Deterministic tag form: lower-case, punctuation stripped, words joined
    by single hyphens, singularised, at most MAX_TAG_LENGTH characters.

    Returns None when nothing usable is left.
    """
    tag = (label or "").strip().lower()
    tag = re.sub(r"[^\w\s-]", "", tag)
    tag = re.sub(r"\s+", "-", tag.strip("-").strip())
    tag = re.sub(r"-+", "-", tag)
    tag = singularize(tag)

    if len(tag) > MAX_TAG_LENGTH:
        # Drop the word cut in half by truncation
        tag = re.sub(r"-[^-]*$", "", tag[:MAX_TAG_LENGTH])
    tag = tag.strip("-")

    if len(tag) < MIN_TAG_LENGTH or not re.search(r"[a-z0-9]", tag):
        return None
    return tag


def normalize_tags(candidates: Iterable[TagCandidate], min_confidence: float, max_tags: int) -> List[str]:
    """Canonicalise and de-duplicate labels, keeping the most confident ones."""
    best: Dict[str, float] = {}
    for candidate in candidates:
        if candidate.confidence < min_confidence:
            continue
        tag = canonical_tag(candidate.label)
        if tag is None:
            continue
        best[tag] = max(candidate.confidence, best.get(tag, 0.0))

    ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))[:max_tags]
    return sorted(tag for tag, _ in ranked)


class AiTaggingStage:
    stage = StageName.AI_TAGGING

    def __init__(
        self,
        repository: AssetRepository,
        storage: AssetStorage,
        generator: TagGenerator,
        dispatcher: Dispatcher,
        config: PipelineConfig,
    ):
        self._repository = repository
        self._storage = storage
        self._generator = generator
        self._dispatcher = dispatcher
        self._config = config

    async def run(self, asset_id: UUID, attempt: int = 1) -> StageResult:
        asset = await self._repository.get(asset_id)

        gate = check_thumbnail_gate(asset, self.stage, attempt, self._config)
        if gate.should_retry:
            self._dispatcher.dispatch(self.stage, asset.id, countdown=gate.countdown, attempt=attempt + 1)
            return StageResult(
                self.stage, asset.id, StageOutcome.RETRY_SCHEDULED,
                detail=f"thumbnail_status={asset.thumbnail_status.value}",
                data={"countdown": gate.countdown, "next_attempt": attempt + 1},
            )
        if gate.exhausted:
            logger.warning(f"Asset {asset.id} thumbnails never completed; giving up AI tagging")
            return StageResult(self.stage, asset.id, StageOutcome.GATE_EXHAUSTED, data={"attempts": attempt})
        if not gate.passed:
            return await self._skip(asset, THUMBNAIL_UNAVAILABLE)

        if not self._config.ai_tagging_enabled or not self._generator.is_available():
            return await self._skip(asset, AI_TAGGING_DISABLED)

        view = MetadataView(asset.metadata)
        try:
            path = view.thumbnail_path(ANALYSIS_SIZE) or view.thumbnail_path("thumb")
            if path is None:
                raise TagGenerationError("No thumbnail path recorded")
            candidates = self._generator.generate(
                self._storage.get_bytes(path),
                {
                    "title": asset.title,
                    "filename": asset.original_filename,
                    "mime_type": asset.mime_type,
                },
            )
        except Exception as e:
            logger.error(f"AI tagging failed for asset {asset.id}: {e}", exc_info=True)
            await self._repository.update(
                asset.id, patch=TaggingFacet(ai_tagging_error=str(e) or e.__class__.__name__).to_patch()
            )
            return StageResult(self.stage, asset.id, StageOutcome.FAILED, detail=str(e))

        tags = normalize_tags(candidates, self._config.ai_tag_min_confidence, self._config.ai_tag_max_tags)
        await self._repository.update(
            asset.id,
            patch=TaggingFacet(
                ai_tags=tags,
                ai_tagging_completed=True,
                ai_tagging_skipped=None,
                ai_tagging_skip_reason=None,
                ai_tagging_error=None,
            ).to_patch(),
        )
        logger.info(f"AI tagging completed for asset {asset.id}: {len(tags)} tags")
        return StageResult(self.stage, asset.id, StageOutcome.COMPLETED, data={"tag_count": len(tags)})

    async def _skip(self, asset: AssetRecord, reason: str) -> StageResult:
        await self._repository.update(
            asset.id,
            patch=TaggingFacet(
                ai_tagging_skipped=True,
                ai_tagging_skip_reason=reason,
                ai_tagging_completed=None,
            ).to_patch(),
        )
        logger.info(f"AI tagging skipped for asset {asset.id}: {reason}")
        return StageResult(self.stage, asset.id, StageOutcome.SKIPPED, detail=reason)
