"""
Tests for the AI tagging stage and tag normalisation.
"""
import pytest

from pipeline_fakes import FakeTagGenerator, completed_thumbnail_metadata, make_asset
from assetflow.core.pipeline.coordinator import PipelineConfig
from assetflow.core.pipeline.interfaces import TagCandidate
from assetflow.core.pipeline.models import (
    GatePolicy,
    StageName,
    StageOutcome,
    TagGenerationError,
    ThumbnailStatus,
)
from assetflow.core.pipeline.tagging_stage import (
    MAX_TAG_LENGTH,
    AiTaggingStage,
    canonical_tag,
    normalize_tags,
    singularize,
)

SKIP_MARKERS = ("_ai_tagging_skipped", "_ai_tagging_skip_reason", "_ai_tagging_error")


@pytest.fixture
def build_stage(repository, storage, dispatcher, config):
    def _build(generator=None, config_=None):
        return AiTaggingStage(
            repository=repository,
            storage=storage,
            generator=generator or FakeTagGenerator(),
            dispatcher=dispatcher,
            config=config_ or config,
        )
    return _build


@pytest.fixture
def completed_asset(repository, storage):
    def _add(metadata=None):
        asset = repository.add(make_asset(
            thumbnail_status=ThumbnailStatus.COMPLETED,
            metadata=completed_thumbnail_metadata() if metadata is None else metadata,
        ))
        storage.objects["thumbs/medium.jpg"] = b"medium-jpeg"
        storage.objects["thumbs/thumb.jpg"] = b"thumb-jpeg"
        return asset
    return _add


class TestNormalizeTags:
    """Label clean-up, thresholds and limits."""

    def test_lowercases_hyphenates_and_dedupes(self):
        tags = normalize_tags(
            [TagCandidate(" Blue  Sky ", 0.9), TagCandidate("blue sky", 0.6), TagCandidate("Lake", 0.8)],
            min_confidence=0.5,
            max_tags=10,
        )

        assert tags == ["blue-sky", "lake"]

    def test_drops_low_confidence_and_empty(self):
        tags = normalize_tags(
            [TagCandidate("tree", 0.4), TagCandidate("   ", 0.9), TagCandidate("rock", 0.5)],
            min_confidence=0.5,
            max_tags=10,
        )

        assert tags == ["rock"]

    def test_keeps_most_confident_when_limited(self):
        tags = normalize_tags(
            [TagCandidate("aa", 0.6), TagCandidate("bb", 0.99), TagCandidate("cc", 0.8)],
            min_confidence=0.0,
            max_tags=2,
        )

        assert tags == ["bb", "cc"]

    def test_plural_and_singular_collapse(self):
        tags = normalize_tags(
            [TagCandidate("Dogs", 0.7), TagCandidate("dog", 0.9), TagCandidate("!!!", 0.9), TagCandidate("sunset, beach", 0.8)],
            min_confidence=0.0,
            max_tags=10,
        )

        assert tags == ["dog", "sunset-beach"]


class TestCanonicalTag:
    @pytest.mark.parametrize("label,expected", [
        ("Hello, World!", "hello-world"),
        ("--rock--", "rock"),
        ("snow - capped", "snow-capped"),
        ("mid___century", "mid___century"),
        ("  Golden   Hour ", "golden-hour"),
    ])
    def test_punctuation_and_hyphens(self, label, expected):
        assert canonical_tag(label) == expected

    @pytest.mark.parametrize("plural,singular", [
        ("categories", "category"),
        ("wolves", "wolf"),
        ("classes", "class"),
        ("boxes", "box"),
        ("fizzes", "fizz"),
        ("matches", "match"),
        ("wishes", "wish"),
        ("women", "woman"),
        ("thirteen", "thirteen"),
        ("dogs", "dog"),
        ("tree", "tree"),
    ])
    def test_singularize(self, plural, singular):
        assert singularize(plural) == singular

    def test_long_tag_truncated(self):
        assert canonical_tag("x" * 300) == "x" * MAX_TAG_LENGTH

    def test_truncation_drops_partial_word(self):
        label = "-".join(["landscape"] * 10)

        tag = canonical_tag(label)

        assert len(tag) <= MAX_TAG_LENGTH
        assert tag == "-".join(["landscape"] * 6)

    @pytest.mark.parametrize("label", [None, "", "a", "!!!", "- -", "__"])
    def test_rejected(self, label):
        assert canonical_tag(label) is None


class TestGateMiss:
    """Thumbnails not completed: default SKIP policy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [
        ThumbnailStatus.PENDING,
        ThumbnailStatus.PROCESSING,
        ThumbnailStatus.FAILED,
        ThumbnailStatus.SKIPPED,
    ])
    async def test_records_skip_markers(self, build_stage, repository, status):
        asset = repository.add(make_asset(thumbnail_status=status))
        generator = FakeTagGenerator()

        result = await build_stage(generator).run(asset.id)

        assert result.outcome == StageOutcome.SKIPPED
        saved = repository.current(asset.id).metadata
        assert saved["_ai_tagging_skipped"] is True
        assert saved["_ai_tagging_skip_reason"] == "thumbnail_unavailable"
        assert "ai_tagging_completed" not in saved
        assert generator.contexts == []

    @pytest.mark.asyncio
    async def test_skip_removes_stale_completed_flag(self, build_stage, repository):
        asset = repository.add(make_asset(
            thumbnail_status=ThumbnailStatus.FAILED,
            metadata={"ai_tagging_completed": True, "ai_tags": ["old"]},
        ))

        await build_stage().run(asset.id)

        saved = repository.current(asset.id).metadata
        assert "ai_tagging_completed" not in saved
        assert saved["ai_tags"] == ["old"]

    @pytest.mark.asyncio
    async def test_retry_policy_reschedules(self, build_stage, repository, dispatcher):
        asset = repository.add(make_asset(thumbnail_status=ThumbnailStatus.PENDING))
        config = PipelineConfig(ai_tagging_gate_policy=GatePolicy.RETRY)

        result = await build_stage(config_=config).run(asset.id, attempt=2)

        assert result.outcome == StageOutcome.RETRY_SCHEDULED
        assert dispatcher.calls[0]["stage"] == StageName.AI_TAGGING
        assert dispatcher.calls[0]["attempt"] == 3
        assert dispatcher.calls[0]["countdown"] == 120
        assert repository.updates == []


class TestTagging:
    """Completed thumbnails."""

    @pytest.mark.asyncio
    async def test_success_writes_tags_and_clears_markers(self, build_stage, completed_asset, repository):
        metadata = completed_thumbnail_metadata()
        metadata.update({
            "_ai_tagging_skipped": True,
            "_ai_tagging_skip_reason": "thumbnail_unavailable",
            "_ai_tagging_error": "timeout",
        })
        asset = completed_asset(metadata=metadata)

        result = await build_stage().run(asset.id)

        assert result.outcome == StageOutcome.COMPLETED
        saved = repository.current(asset.id).metadata
        assert saved["ai_tags"] == ["lake", "mountain", "sunrise"]
        assert saved["ai_tagging_completed"] is True
        for marker in SKIP_MARKERS:
            assert marker not in saved

    @pytest.mark.asyncio
    async def test_sends_asset_context(self, build_stage, completed_asset):
        asset = completed_asset()
        generator = FakeTagGenerator()

        await build_stage(generator).run(asset.id)

        assert generator.contexts == [{
            "title": "Mountain lake at dawn",
            "filename": "photo.jpg",
            "mime_type": "image/jpeg",
        }]

    @pytest.mark.asyncio
    async def test_disabled_records_reason(self, build_stage, completed_asset, repository):
        asset = completed_asset()

        result = await build_stage(FakeTagGenerator(available=False)).run(asset.id)

        assert result.outcome == StageOutcome.SKIPPED
        saved = repository.current(asset.id).metadata
        assert saved["_ai_tagging_skip_reason"] == "ai_tagging_disabled"
        assert "ai_tagging_completed" not in saved

    @pytest.mark.asyncio
    async def test_config_switch_disables(self, build_stage, completed_asset, repository):
        asset = completed_asset()

        result = await build_stage(config_=PipelineConfig(ai_tagging_enabled=False)).run(asset.id)

        assert result.detail == "ai_tagging_disabled"

    @pytest.mark.asyncio
    async def test_generator_error_recorded(self, build_stage, completed_asset, repository):
        asset = completed_asset()
        generator = FakeTagGenerator(error=TagGenerationError("rate limited"))

        result = await build_stage(generator).run(asset.id)

        assert result.outcome == StageOutcome.FAILED
        saved = repository.current(asset.id).metadata
        assert saved["_ai_tagging_error"] == "rate limited"
        assert "ai_tags" not in saved
        assert saved["thumbnails"] == completed_thumbnail_metadata()["thumbnails"]

    @pytest.mark.asyncio
    async def test_falls_back_to_small_thumbnail(self, build_stage, completed_asset, repository):
        metadata = completed_thumbnail_metadata()
        del metadata["thumbnails"]["medium"]
        asset = completed_asset(metadata=metadata)

        result = await build_stage().run(asset.id)

        assert result.outcome == StageOutcome.COMPLETED
