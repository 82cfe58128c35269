"""
Periodic sweep for thumbnails stuck in PROCESSING.

The thumbnail stage already recovers a stuck asset the next time it runs; the
sweep makes sure that next run happens even when the original task was lost
with its worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List

from .coordinator import PipelineConfig
from .interfaces import AssetRepository, Dispatcher
from .models import StageName

logger = logging.getLogger("assetflow.pipeline.stuck_sweep")


@dataclass
class SweepReport:
    found: int = 0
    dispatched: int = 0
    dry_run: bool = False
    asset_ids: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "status": "completed",
            "found": self.found,
            "dispatched": self.dispatched,
            "dry_run": self.dry_run,
            "asset_ids": self.asset_ids,
        }


class StuckThumbnailSweeper:
    def __init__(
        self,
        repository: AssetRepository,
        dispatcher: Dispatcher,
        config: PipelineConfig,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    async def sweep(self, limit: int = 100, dry_run: bool = False) -> SweepReport:
        cutoff = self._clock() - timedelta(seconds=self._config.thumbnail_stuck_timeout_seconds)
        stuck = await self._repository.list_stuck_thumbnails(cutoff, limit)

        report = SweepReport(found=len(stuck), dry_run=dry_run)
        for asset in stuck:
            report.asset_ids.append(str(asset.id))
            if dry_run:
                logger.info(f"[dry-run] Would re-dispatch thumbnails for asset {asset.id} "
                            f"(processing since {asset.thumbnail_started_at})")
                continue
            self._dispatcher.dispatch(StageName.THUMBNAILS, asset.id)
            report.dispatched += 1

        if stuck:
            logger.info(f"Stuck thumbnail sweep: found={report.found} dispatched={report.dispatched}")
        return report
