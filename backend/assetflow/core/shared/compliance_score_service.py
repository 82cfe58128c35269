"""
Compliance score persistence.

One row per (asset, brand), enforced by a unique constraint. Upserts go
through PostgreSQL INSERT ... ON CONFLICT so concurrent scoring runs for the
same asset converge on a single row.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert

from assetflow.core.database.models import BrandComplianceScore
from assetflow.core.pipeline.models import ComplianceResult
from assetflow.core.shared.database_service import database_service

logger = logging.getLogger("assetflow.compliance_scores")


class ComplianceScoreService:
    def __init__(self, session_provider=None):
        self._session_provider = session_provider or database_service.get_session

    async def upsert(self, asset_id: UUID, brand_id: UUID, result: ComplianceResult) -> None:
        now = datetime.utcnow()
        values = {
            "evaluation_status": result.evaluation_status.value,
            "overall_score": result.overall_score,
            "color_score": result.color_score,
            "typography_score": result.typography_score,
            "tone_score": result.tone_score,
            "imagery_score": result.imagery_score,
            "breakdown_payload": result.breakdown,
            "model_version_id": result.model_version_id,
            "updated_at": now,
        }
        statement = insert(BrandComplianceScore).values(
            asset_id=asset_id, brand_id=brand_id, created_at=now, **values
        )
        statement = statement.on_conflict_do_update(
            constraint="uq_compliance_scores_asset_brand",
            set_=values,
        )

        async with self._session_provider() as session:
            await session.execute(statement)

        logger.debug(f"Stored compliance score for asset {asset_id} brand {brand_id}")
