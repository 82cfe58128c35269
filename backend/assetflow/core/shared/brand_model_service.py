"""
Brand compliance model lookup.

Resolves a brand to the scoring payload of its active model version. Returns
None when the brand has no model, the model is disabled, or no version is
active; the compliance stage treats all three the same way.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select

from assetflow.core.database.models import BrandComplianceModel, BrandComplianceModelVersion
from assetflow.core.pipeline.models import ComplianceModel
from assetflow.core.shared.database_service import database_service

logger = logging.getLogger("assetflow.brand_models")


class BrandModelService:
    def __init__(self, session_provider=None):
        self._session_provider = session_provider or database_service.get_session

    async def active_model(self, brand_id: UUID) -> Optional[ComplianceModel]:
        async with self._session_provider() as session:
            result = await session.execute(
                select(BrandComplianceModel).where(BrandComplianceModel.brand_id == brand_id)
            )
            model = result.scalar_one_or_none()
            if model is None or not model.is_enabled or model.active_version_id is None:
                return None

            version = await session.get(BrandComplianceModelVersion, model.active_version_id)
            if version is None:
                logger.warning(
                    f"Brand {brand_id} points at missing compliance model version {model.active_version_id}"
                )
                return None

            payload = version.model_payload or {}
            return ComplianceModel(
                brand_id=brand_id,
                version_id=version.id,
                scoring_rules=dict(payload.get("scoring_rules") or {}),
                scoring_config=dict(payload.get("scoring_config") or {}),
            )
