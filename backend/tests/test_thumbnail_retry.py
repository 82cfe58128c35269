"""
Tests for manual thumbnail retries.
"""
from unittest.mock import AsyncMock

import pytest

from pipeline_fakes import FakeRenderer, make_asset
from assetflow.core.pipeline.coordinator import PipelineConfig
from assetflow.core.pipeline.models import StageName, ThumbnailStatus
from assetflow.core.pipeline.thumbnail_retry import ThumbnailRetryService


@pytest.fixture
def service(repository, dispatcher, config, clock):
    return ThumbnailRetryService(
        repository=repository,
        renderer=FakeRenderer(),
        dispatcher=dispatcher,
        config=config,
        clock=clock,
    )


class TestCanRetry:
    def test_failed_asset_can_retry(self, service):
        assert service.can_retry(make_asset(thumbnail_status=ThumbnailStatus.FAILED)) == (True, None)

    def test_unsupported_type_refused(self, service):
        allowed, reason = service.can_retry(make_asset(mime_type="application/zip"))

        assert not allowed
        assert "application/zip" in reason

    def test_retry_limit(self, service):
        allowed, reason = service.can_retry(make_asset(thumbnail_retry_count=3))

        assert not allowed
        assert "Maximum retry attempts (3)" in reason

    def test_processing_refused(self, service):
        assert not service.can_retry(make_asset(thumbnail_status=ThumbnailStatus.PROCESSING))[0]

    def test_missing_source_refused(self, service):
        assert not service.can_retry(make_asset(storage_path=None))[0]


class TestRequestRetry:
    @pytest.mark.asyncio
    async def test_resets_and_dispatches(self, service, repository, dispatcher, now):
        asset = repository.add(make_asset(
            thumbnail_status=ThumbnailStatus.FAILED,
            thumbnail_error="boom",
            thumbnail_retry_count=1,
            metadata={"thumbnail_timeout": True, "category_id": "c"},
        ))

        allowed, reason = await service.request_retry(asset.id)

        assert (allowed, reason) == (True, None)
        saved = repository.current(asset.id)
        assert saved.thumbnail_status == ThumbnailStatus.PENDING
        assert saved.thumbnail_error is None
        assert saved.thumbnail_retry_count == 2
        assert saved.thumbnail_last_retry_at == now
        assert saved.metadata == {"category_id": "c"}
        assert dispatcher.stages == [StageName.THUMBNAILS]

    @pytest.mark.asyncio
    async def test_refusal_changes_nothing(self, repository, dispatcher, clock):
        service = ThumbnailRetryService(
            repository=repository,
            renderer=FakeRenderer(),
            dispatcher=dispatcher,
            config=PipelineConfig(thumbnail_max_retries=1),
            clock=clock,
        )
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.FAILED, thumbnail_retry_count=1))

        allowed, _ = await service.request_retry(asset.id)

        assert not allowed
        assert repository.updates == []
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_retry_cannot_pass_limit(self, repository, dispatcher, clock):
        service = ThumbnailRetryService(
            repository=repository,
            renderer=FakeRenderer(),
            dispatcher=dispatcher,
            config=PipelineConfig(thumbnail_max_retries=1),
            clock=clock,
        )
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.FAILED, thumbnail_retry_count=0))
        stale = await repository.get(asset.id)
        # Another request is granted between this request's read and its write
        assert await service.request_retry(asset.id) == (True, None)
        repository.get = AsyncMock(return_value=stale)

        allowed, reason = await service.request_retry(asset.id)

        assert not allowed
        assert reason == "Thumbnail retry already requested"
        assert repository.current(asset.id).thumbnail_retry_count == 1
        assert dispatcher.stages == [StageName.THUMBNAILS]

    @pytest.mark.asyncio
    async def test_asset_claimed_meanwhile_is_refused(self, service, repository, dispatcher):
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.FAILED))
        repository.get = AsyncMock(return_value=repository.current(asset.id))
        await repository.update(asset.id, fields={"thumbnail_status": ThumbnailStatus.PROCESSING})

        allowed, reason = await service.request_retry(asset.id)

        assert not allowed
        assert reason == "Thumbnail generation is already in progress"
        assert dispatcher.calls == []
