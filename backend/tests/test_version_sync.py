"""
Tests for finalizing an asset from its current version.
"""
import uuid

import pytest

from pipeline_fakes import FakeColorAnalyzer, completed_thumbnail_metadata, make_asset
from assetflow.core.pipeline.metadata_stage import MetadataExtractionStage
from assetflow.core.pipeline.models import AssetVersionRecord, StageName, StageOutcome, ThumbnailStatus
from assetflow.core.pipeline.version_sync import VersionSyncService


def _version(asset, **overrides):
    values = dict(
        id=uuid.uuid4(),
        asset_id=asset.id,
        version_number=2,
        file_path="tenants/t/assets/a/v2/photo.png",
        mime_type="image/png",
        file_size=2048,
        width=800,
        height=600,
        pipeline_status="complete",
    )
    values.update(overrides)
    return AssetVersionRecord(**values)


@pytest.fixture
def service(repository, dispatcher):
    return VersionSyncService(repository=repository, dispatcher=dispatcher)


class TestVersionSync:
    """VersionSyncService.run"""

    @pytest.mark.asyncio
    async def test_copies_file_fields(self, service, repository):
        asset = repository.add(make_asset())
        repository.add_version(_version(asset))

        result = await service.run(asset.id)

        assert result.outcome == StageOutcome.COMPLETED
        saved = repository.current(asset.id)
        assert saved.storage_path == "tenants/t/assets/a/v2/photo.png"
        assert saved.mime_type == "image/png"
        assert (saved.file_size, saved.width, saved.height) == (2048, 800, 600)

    @pytest.mark.asyncio
    async def test_null_version_category_preserves_asset_category(self, service, repository):
        asset = repository.add(make_asset(metadata={"category_id": "cat-1", "approval_status": "approved"}))
        repository.add_version(_version(asset, metadata={"category_id": None, "exif": {"iso": 200}}))

        await service.run(asset.id)

        saved = repository.current(asset.id).metadata
        assert saved["category_id"] == "cat-1"
        assert saved["approval_status"] == "approved"
        assert saved["exif"] == {"iso": 200}

    @pytest.mark.asyncio
    async def test_version_category_fills_missing_asset_category(self, service, repository):
        asset = repository.add(make_asset(metadata={}))
        repository.add_version(_version(asset, metadata={"category_id": "cat-9"}))

        await service.run(asset.id)

        assert repository.current(asset.id).metadata["category_id"] == "cat-9"

    @pytest.mark.asyncio
    async def test_null_file_fields_not_copied(self, service, repository):
        asset = repository.add(make_asset(width=100, height=50))
        repository.add_version(_version(asset, width=None, height=None))

        await service.run(asset.id)

        saved = repository.current(asset.id)
        assert (saved.width, saved.height) == (100, 50)

    @pytest.mark.asyncio
    async def test_incomplete_version_is_skipped(self, service, repository):
        asset = repository.add(make_asset(metadata={"category_id": "cat-1"}))
        repository.add_version(_version(asset, pipeline_status="processing", metadata={"x": 1}))

        result = await service.run(asset.id)

        assert result.outcome == StageOutcome.SKIPPED
        assert repository.updates == []

    @pytest.mark.asyncio
    async def test_no_current_version(self, service, repository):
        asset = repository.add(make_asset())

        result = await service.run(asset.id)

        assert result.detail == "no_current_version"

    @pytest.mark.asyncio
    async def test_skipped_thumbnail_dispatches_compliance(self, service, repository, dispatcher):
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.SKIPPED))
        repository.add_version(_version(asset))

        await service.run(asset.id)

        assert dispatcher.stages == [StageName.COMPLIANCE]

    @pytest.mark.asyncio
    async def test_completed_thumbnail_dispatches_nothing(self, service, repository, dispatcher):
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.COMPLETED))
        repository.add_version(_version(asset))

        await service.run(asset.id)

        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_stale_stage_markers_in_version_are_ignored(
        self, service, repository, storage, dispatcher, incidents, config
    ):
        metadata = completed_thumbnail_metadata()
        metadata.update({"ai_tagging_completed": True, "ai_tags": ["lake"]})
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.COMPLETED, metadata=metadata))
        storage.objects["thumbs/medium.jpg"] = b"medium-jpeg"
        repository.add_version(_version(asset, metadata={
            "_ai_tagging_skipped": True,
            "_ai_tagging_skip_reason": "thumbnail_unavailable",
            "thumbnail_timeout": True,
            "dominant_colors": [],
            "exif": {"iso": 100},
        }))

        await service.run(asset.id)

        saved = repository.current(asset.id).metadata
        assert saved["ai_tagging_completed"] is True
        assert saved["ai_tags"] == ["lake"]
        assert saved["exif"] == {"iso": 100}
        for key in ("_ai_tagging_skipped", "_ai_tagging_skip_reason", "thumbnail_timeout", "dominant_colors"):
            assert key not in saved

        extraction = MetadataExtractionStage(
            repository=repository,
            storage=storage,
            analyzer=FakeColorAnalyzer(),
            dispatcher=dispatcher,
            incidents=incidents,
            config=config,
        )
        result = await extraction.run(asset.id, 1)

        assert result.outcome == StageOutcome.COMPLETED
        assert incidents.incidents == []
