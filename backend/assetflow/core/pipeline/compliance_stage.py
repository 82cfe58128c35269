"""
Brand compliance scoring stage.

Deterministic scoring of an asset's metadata against the active version of
its brand's compliance model. No AI is involved.

Each dimension yields (score, reason, status):
    scored          rules configured and asset data available
    not_configured  no rules for this dimension
    not_evaluated   rules configured but the asset lacks the data

The overall score is the weighted mean of scored dimensions. If colour rules
exist but the asset has no dominant colours the evaluation is "incomplete"
rather than a misleading number.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from .coordinator import report_missing_visual_metadata
from .interfaces import AssetRepository, BrandModelLookup, ComplianceScoreStore, IncidentSink
from .metadata_document import MetadataView
from .models import (
    AssetRecord,
    ComplianceModel,
    ComplianceResult,
    EvaluationStatus,
    StageName,
    StageOutcome,
    StageResult,
    ThumbnailStatus,
)

logger = logging.getLogger("assetflow.pipeline.compliance")

SCORED = "scored"
NOT_CONFIGURED = "not_configured"
NOT_EVALUATED = "not_evaluated"

DEFAULT_WEIGHTS = {
    "color": 0.3,
    "typography": 0.2,
    "tone": 0.3,
    "imagery": 0.2,
}

MAX_COLORS_COMPARED = 5
FONT_KEY_HINTS = ("font", "typography")
STYLE_KEY_HINTS = ("photography", "style", "imagery")
TEXT_KEYS = ("description", "caption", "alt_text")

DimensionResult = Tuple[Optional[int], str, str]


# ============================================================================
# Dimension scoring
# ============================================================================


def _normalize_hex(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("hex")
    if not isinstance(value, str):
        return None
    normalized = value.replace(" ", "").strip().lower()
    if not normalized:
        return None
    return normalized if normalized.startswith("#") else f"#{normalized}"


def _ranked_hexes(metadata: Mapping[str, Any]) -> List[str]:
    colors = sorted(MetadataView(metadata).dominant_colors(), key=lambda c: -c.coverage)
    return [c.hex.lower() for c in colors[:MAX_COLORS_COMPARED]]


def score_color(metadata: Mapping[str, Any], rules: Mapping[str, Any]) -> DimensionResult:
    allowed = {h for h in map(_normalize_hex, rules.get("allowed_color_palette") or []) if h}
    banned = {h for h in map(_normalize_hex, rules.get("banned_colors") or []) if h}
    if not allowed and not banned:
        return None, "No color rules configured.", NOT_CONFIGURED

    hexes = _ranked_hexes(metadata)
    if not hexes:
        return None, "No dominant color data available.", NOT_EVALUATED

    for hex_ in hexes:
        if hex_ in banned:
            return 0, f"Dominant color {hex_} is in banned colors list.", SCORED
    for hex_ in hexes:
        if hex_ in allowed:
            return 100, f"Dominant color {hex_} matches allowed palette.", SCORED
    return 0, "Dominant colors not found in allowed palette.", SCORED


def _string_value(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("value") or value.get("text")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _find_by_key_hint(metadata: Mapping[str, Any], hints: Iterable[str]) -> Optional[str]:
    for key in sorted(metadata):
        if key.startswith("_") or not any(h in key.lower() for h in hints):
            continue
        value = _string_value(metadata[key])
        if value:
            return value
    return None


def _labels(items: Iterable[Any]) -> List[str]:
    labels = []
    for item in items or []:
        if isinstance(item, Mapping):
            item = item.get("name") or item.get("value")
        if isinstance(item, str) and item.strip():
            labels.append(item.strip())
    return labels


def score_typography(metadata: Mapping[str, Any], rules: Mapping[str, Any]) -> DimensionResult:
    allowed_fonts = _labels(rules.get("allowed_fonts"))
    if not allowed_fonts:
        return None, "No typography rules configured.", NOT_CONFIGURED

    font = _find_by_key_hint(metadata, FONT_KEY_HINTS)
    if not font:
        return None, "No font metadata found.", NOT_EVALUATED

    lowered = font.lower()
    if any(f.lower() in lowered for f in allowed_fonts):
        return 100, f'Font "{font}" matches allowed fonts.', SCORED
    return 40, f'Font "{font}" not found in allowed fonts list.', SCORED


def score_tone(title: Optional[str], metadata: Mapping[str, Any], rules: Mapping[str, Any]) -> DimensionResult:
    tone_keywords = _labels(rules.get("tone_keywords"))
    banned_keywords = _labels(rules.get("banned_keywords"))
    if not tone_keywords and not banned_keywords:
        return None, "No tone rules configured.", NOT_CONFIGURED

    parts = [title] if title and title.strip() else []
    parts.extend(v for v in (_string_value(metadata.get(k)) for k in TEXT_KEYS) if v)
    if not parts:
        return None, "No text content to evaluate.", NOT_EVALUATED

    text = " ".join(parts).lower()
    score = 70
    reasons = []
    for keyword in banned_keywords:
        if keyword.lower() in text:
            score -= 30
            reasons.append(f'Contains banned keyword: "{keyword}"')
    for keyword in tone_keywords:
        if keyword.lower() in text:
            score += 10
            reasons.append(f'Matches tone keyword: "{keyword}"')

    score = min(100, max(0, score))
    return score, ". ".join(reasons) if reasons else "No tone keywords matched.", SCORED


def score_imagery(metadata: Mapping[str, Any], rules: Mapping[str, Any]) -> DimensionResult:
    attributes = _labels(rules.get("photography_attributes"))
    if not attributes:
        return None, "No photography rules configured.", NOT_CONFIGURED

    style = _find_by_key_hint(metadata, STYLE_KEY_HINTS)
    if not style:
        return None, "No photography style metadata found.", NOT_EVALUATED

    lowered = style.lower()
    if any(a.lower() in lowered for a in attributes):
        return 100, f'Style "{style}" matches allowed photography attributes.', SCORED
    return 50, f'Style "{style}" not found in allowed photography attributes.', SCORED


def _weights(scoring_config: Mapping[str, Any]) -> Dict[str, float]:
    weights = {}
    for dimension, default in DEFAULT_WEIGHTS.items():
        try:
            weights[dimension] = float(scoring_config.get(f"{dimension}_weight", default))
        except (TypeError, ValueError):
            weights[dimension] = default
    return weights


def evaluate_asset(asset: AssetRecord, model: ComplianceModel) -> ComplianceResult:
    """Score an asset against a compliance model version. Pure; no I/O."""
    rules = model.scoring_rules or {}
    metadata = asset.metadata or {}
    weights = _weights(model.scoring_config or {})

    results = {
        "color": score_color(metadata, rules),
        "typography": score_typography(metadata, rules),
        "tone": score_tone(asset.title, metadata, rules),
        "imagery": score_imagery(metadata, rules),
    }

    breakdown: Dict[str, Any] = {}
    applicable = []
    for dimension, (score, reason, status) in results.items():
        breakdown[dimension] = {
            "score": score,
            "weight": weights[dimension],
            "reason": reason,
            "status": status,
        }
        if status == SCORED:
            applicable.append((score, weights[dimension]))

    scores = {f"{d}_score": r[0] for d, r in results.items()}

    if results["color"][2] == NOT_EVALUATED:
        return ComplianceResult(
            evaluation_status=EvaluationStatus.INCOMPLETE,
            overall_score=None,
            breakdown=breakdown,
            model_version_id=model.version_id,
            **scores,
        )

    overall = None
    total_weight = sum(w for _, w in applicable)
    if applicable and total_weight > 0:
        weighted = sum(score * (w / total_weight) for score, w in applicable)
        overall = min(100, max(0, int(round(weighted))))

    return ComplianceResult(
        evaluation_status=EvaluationStatus.COMPLETE,
        overall_score=overall,
        breakdown=breakdown,
        model_version_id=model.version_id,
        **scores,
    )


# ============================================================================
# Stage
# ============================================================================


class ComplianceScoringStage:
    stage = StageName.COMPLIANCE

    def __init__(
        self,
        repository: AssetRepository,
        brand_models: BrandModelLookup,
        scores: ComplianceScoreStore,
        incidents: IncidentSink,
    ):
        self._repository = repository
        self._brand_models = brand_models
        self._scores = scores
        self._incidents = incidents

    async def run(self, asset_id: UUID) -> StageResult:
        asset = await self._repository.get(asset_id)

        if asset.brand_id is None:
            return StageResult(self.stage, asset.id, StageOutcome.SKIPPED, detail="no_brand")

        model = await self._brand_models.active_model(asset.brand_id)
        if model is None:
            logger.debug(f"No active compliance model for brand {asset.brand_id}; skipping asset {asset.id}")
            return StageResult(self.stage, asset.id, StageOutcome.SKIPPED, detail="no_active_model")

        if asset.thumbnail_status == ThumbnailStatus.SKIPPED:
            result = ComplianceResult(
                evaluation_status=EvaluationStatus.NOT_APPLICABLE,
                breakdown={"reason": "File type unsupported for visual compliance scoring."},
                model_version_id=model.version_id,
            )
        else:
            result = evaluate_asset(asset, model)

        if (
            result.evaluation_status == EvaluationStatus.INCOMPLETE
            and asset.thumbnail_status == ThumbnailStatus.COMPLETED
        ):
            await report_missing_visual_metadata(
                self._incidents,
                asset,
                "Compliance scoring found no dominant colors although thumbnails completed",
                stage=self.stage,
            )

        await self._scores.upsert(asset.id, asset.brand_id, result)

        logger.info(
            f"Compliance for asset {asset.id} brand {asset.brand_id}: "
            f"{result.evaluation_status.value} overall={result.overall_score}"
        )
        outcome = (
            StageOutcome.INCOMPLETE
            if result.evaluation_status == EvaluationStatus.INCOMPLETE
            else StageOutcome.COMPLETED
        )
        return StageResult(
            self.stage, asset.id, outcome,
            detail=result.evaluation_status.value,
            data={"evaluation_status": result.evaluation_status.value, "overall_score": result.overall_score},
        )
