"""
Tests for the pipeline Celery tasks: wiring, result serialisation and the
deleted-asset path.
"""
import uuid
from unittest.mock import AsyncMock, Mock, patch

import pytest

from assetflow.core.pipeline.models import AssetNotFoundError, StageName, StageOutcome, StageResult
from assetflow.core.tasks import pipeline as tasks


def _stage(result=None, error=None):
    stage = Mock()
    stage.run = AsyncMock(return_value=result, side_effect=error)
    return stage


class TestStageTasks:
    def test_thumbnail_task_returns_result_dict(self):
        asset_id = uuid.uuid4()
        stage = _stage(StageResult(StageName.THUMBNAILS, asset_id, StageOutcome.COMPLETED))

        with patch.object(tasks, "build_thumbnail_stage", return_value=stage):
            result = tasks.generate_thumbnails_task(str(asset_id))

        assert result["status"] == "completed"
        assert result["asset_id"] == str(asset_id)
        stage.run.assert_awaited_once_with(asset_id)

    def test_metadata_task_passes_attempt(self):
        asset_id = uuid.uuid4()
        stage = _stage(StageResult(StageName.METADATA_EXTRACTION, asset_id, StageOutcome.RETRY_SCHEDULED))

        with patch.object(tasks, "build_metadata_stage", return_value=stage):
            result = tasks.extract_metadata_task(str(asset_id), attempt=4)

        assert result["status"] == "retry_scheduled"
        stage.run.assert_awaited_once_with(asset_id, 4)

    def test_deleted_asset_is_abandoned(self):
        asset_id = uuid.uuid4()
        stage = _stage(error=AssetNotFoundError(asset_id))

        with patch.object(tasks, "build_compliance_stage", return_value=stage):
            result = tasks.score_compliance_task(str(asset_id))

        assert result["status"] == "abandoned"
        assert result["stage"] == "compliance"

    def test_infrastructure_errors_propagate(self):
        stage = _stage(error=ConnectionError("db down"))

        with patch.object(tasks, "build_tagging_stage", return_value=stage):
            with pytest.raises(ConnectionError):
                tasks.ai_tagging_task(str(uuid.uuid4()))

    def test_finalize_task(self):
        asset_id = uuid.uuid4()
        service = _stage(StageResult(StageName.FINALIZE, asset_id, StageOutcome.COMPLETED, data={"version_number": 2}))

        with patch.object(tasks, "build_version_sync", return_value=service):
            result = tasks.finalize_asset_task(str(asset_id))

        assert result["version_number"] == 2


class TestRetryTask:
    @pytest.mark.parametrize("allowed,reason,status", [
        (True, None, "queued"),
        (False, "Maximum retry attempts (3) exceeded", "refused"),
    ])
    def test_retry_outcome(self, allowed, reason, status):
        service = Mock()
        service.request_retry = AsyncMock(return_value=(allowed, reason))
        asset_id = str(uuid.uuid4())

        with patch.object(tasks, "build_retry_service", return_value=service):
            result = tasks.retry_thumbnails_task(asset_id)

        assert result == {"asset_id": asset_id, "status": status, "detail": reason}
