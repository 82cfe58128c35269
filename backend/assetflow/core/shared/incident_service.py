"""
System incident service.

Records operational incidents raised by pipeline stages. An incident is keyed
by (source_type, source_id, title). A partial unique index over unresolved
rows backs the insert, so recording a key that is already open is a no-op
even when two stage invocations race on redelivery.

Usage:
    from assetflow.core.shared.incident_service import SystemIncidentService

    incidents = SystemIncidentService()
    await incidents.record("asset", str(asset_id), "Expected visual metadata missing", detail)
    await incidents.resolve("asset", str(asset_id), "Expected visual metadata missing", auto=True)
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import and_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from assetflow.core.database.models import SystemIncident
from assetflow.core.shared.database_service import database_service

logger = logging.getLogger("assetflow.incidents")


class SystemIncidentService:
    """IncidentSink backed by the system_incidents table."""

    def __init__(self, session_provider=None):
        self._session_provider = session_provider or database_service.get_session

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
        incidents = SystemIncident.__table__
        statement = (
            insert(incidents)
            .values(
                source_type=source_type,
                source_id=source_id,
                title=title,
                message=detail,
                severity=severity,
                metadata=metadata or {},
            )
            # Partial unique index uq_system_incidents_open
            .on_conflict_do_nothing(
                index_elements=["source_type", "source_id", "title"],
                index_where=incidents.c.resolved_at.is_(None),
            )
            .returning(incidents.c.id)
        )

        async with self._session_provider() as session:
            result = await session.execute(statement)
            created = result.scalar_one_or_none() is not None

        if created:
            logger.info(f"Recorded {severity} incident for {source_type}:{source_id}: {title}")
        else:
            logger.debug(f"Incident already open for {source_type}:{source_id} ({title})")
        return created

    async def resolve(self, source_type: str, source_id: str, title: str, *, auto: bool = False) -> bool:
        """Resolve the open incident for this key; False when none is open."""
        async with self._session_provider() as session:
            incident = await self._find_open(session, source_type, source_id, title)
            if incident is None:
                return False
            incident.resolved_at = datetime.utcnow()
            incident.auto_resolved = auto
            logger.info(f"Resolved incident {incident.id} for {source_type}:{source_id} (auto={auto})")
            return True

    async def _find_open(
        self, session: AsyncSession, source_type: str, source_id: str, title: str
    ) -> Optional[SystemIncident]:
        result = await session.execute(
            select(SystemIncident)
            .where(
                and_(
                    SystemIncident.source_type == source_type,
                    SystemIncident.source_id == source_id,
                    SystemIncident.title == title,
                    SystemIncident.resolved_at.is_(None),
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()
