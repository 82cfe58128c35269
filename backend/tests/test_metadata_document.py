"""
Tests for the shared metadata document: patches, facets, tolerant reads and
version sync merging.
"""
import pytest

from assetflow.core.pipeline.metadata_document import (
    FACETS,
    KEY_OWNERS,
    ExtractionFacet,
    MetadataFacet,
    MetadataPatch,
    MetadataView,
    TaggingFacet,
    ThumbnailFacet,
    build_key_owners,
    version_sync_patch,
)
from assetflow.core.pipeline.models import StageName


class TestMetadataPatch:
    """MetadataPatch.apply."""

    def test_apply_leaves_unrelated_keys(self):
        document = {"category_id": "cat-1", "ai_tags": ["lake"]}
        patch = MetadataPatch(set={"orientation": "landscape"})

        result = patch.apply(document)

        assert result == {"category_id": "cat-1", "ai_tags": ["lake"], "orientation": "landscape"}

    def test_apply_does_not_mutate_input(self):
        document = {"thumbnails": {"thumb": "a.jpg"}}
        patch = MetadataPatch(set={"preview_generated": True}, unset={"thumbnails"})

        patch.apply(document)

        assert document == {"thumbnails": {"thumb": "a.jpg"}}

    def test_unset_removes_keys(self):
        patch = MetadataPatch(unset={"_ai_tagging_skipped", "missing"})

        assert patch.apply({"_ai_tagging_skipped": True, "x": 1}) == {"x": 1}

    def test_defaults_only_fill_absent_or_null(self):
        patch = MetadataPatch(defaults={"category_id": "new", "approval_status": "pending"})

        result = patch.apply({"category_id": "keep", "approval_status": None})

        assert result == {"category_id": "keep", "approval_status": "pending"}

    def test_apply_handles_none_document(self):
        assert MetadataPatch(set={"a": 1}).apply(None) == {"a": 1}

    def test_is_empty(self):
        assert MetadataPatch().is_empty()
        assert not MetadataPatch(unset={"a"}).is_empty()


class TestFacets:
    """Facet models and key ownership."""

    def test_explicit_none_unsets_and_omitted_fields_untouched(self):
        patch = TaggingFacet(ai_tags=["lake"], ai_tagging_completed=True, ai_tagging_error=None).to_patch()

        assert patch.set == {"ai_tags": ["lake"], "ai_tagging_completed": True}
        assert patch.unset == frozenset({"_ai_tagging_error"})

    def test_aliases_are_the_document_keys(self):
        assert "_metadata_extraction_skipped" in ExtractionFacet.keys()
        assert "metadata_extraction_skipped" not in ExtractionFacet.keys()

    def test_facet_accepts_field_names_and_aliases(self):
        by_name = ExtractionFacet(metadata_extraction_skipped=True).to_patch()
        by_alias = ExtractionFacet(_metadata_extraction_skipped=True).to_patch()

        assert by_name.set == by_alias.set == {"_metadata_extraction_skipped": True}

    def test_facet_rejects_foreign_keys(self):
        with pytest.raises(ValueError):
            ThumbnailFacet(ai_tags=["x"])

    def test_dimensions_dump_as_plain_json(self):
        patch = ThumbnailFacet(source_dimensions={"width": 10, "height": 20}).to_patch()

        assert patch.set == {"source_dimensions": {"width": 10, "height": 20}}

    def test_every_key_has_exactly_one_owner(self):
        assert KEY_OWNERS["thumbnails"] == StageName.THUMBNAILS
        assert KEY_OWNERS["dominant_colors"] == StageName.METADATA_EXTRACTION
        assert KEY_OWNERS["ai_tags"] == StageName.AI_TAGGING
        assert len(KEY_OWNERS) == sum(len(f.keys()) for f in FACETS)

    def test_key_collision_is_rejected(self):
        class ClashingFacet(MetadataFacet):
            owner = StageName.COMPLIANCE
            ai_tags: list = None

        with pytest.raises(ValueError, match="ai_tags"):
            build_key_owners(FACETS + (ClashingFacet,))


class TestMetadataView:
    """Tolerant typed reads."""

    def test_reads_well_formed_values(self):
        view = MetadataView({
            "thumbnails": {"medium": "m.jpg"},
            "thumbnail_dimensions": {"medium": {"width": 1024, "height": 768}},
            "source_dimensions": {"width": 4000, "height": 3000},
        })

        assert view.thumbnail_path("medium") == "m.jpg"
        assert view.thumbnail_dimensions("medium").width == 1024
        assert view.source_dimensions().megapixels == 12.0

    @pytest.mark.parametrize("document", [
        None,
        "not a mapping",
        {"thumbnail_dimensions": "broken"},
        {"thumbnail_dimensions": {"medium": {"width": 0, "height": 10}}},
        {"thumbnail_dimensions": {"medium": {"width": "wide"}}},
    ])
    def test_malformed_dimensions_read_as_missing(self, document):
        assert MetadataView(document).thumbnail_dimensions("medium") is None

    def test_flag_requires_true(self):
        view = MetadataView({"thumbnail_timeout": "yes", "preview_generated": True})

        assert not view.flag("thumbnail_timeout")
        assert view.flag("preview_generated")

    def test_invalid_dominant_colors_are_dropped(self):
        view = MetadataView({"dominant_colors": [
            {"hex": "#112233", "rgb": [17, 34, 51], "coverage": 0.5},
            {"hex": "blue", "rgb": [0, 0, 255], "coverage": 0.2},
            "junk",
        ]})

        assert [c.hex for c in view.dominant_colors()] == ["#112233"]


class TestVersionSyncPatch:
    """Merging version metadata onto the asset."""

    def test_null_version_value_preserves_asset_value(self):
        patch = version_sync_patch({"category_id": None, "title_hint": None})

        assert patch.apply({"category_id": "cat-1"}) == {"category_id": "cat-1"}

    def test_asset_scoped_key_not_overwritten(self):
        patch = version_sync_patch({"category_id": "cat-2"})

        assert patch.apply({"category_id": "cat-1"})["category_id"] == "cat-1"

    def test_asset_scoped_key_fills_gap(self):
        patch = version_sync_patch({"category_id": "cat-2"})

        assert patch.apply({})["category_id"] == "cat-2"

    def test_version_scoped_keys_overwrite(self):
        patch = version_sync_patch({"exif": {"iso": 100}})

        assert patch.apply({"exif": {"iso": 400}, "category_id": "c"}) == {"exif": {"iso": 100}, "category_id": "c"}

    def test_sparse_snapshot_keeps_other_keys(self):
        patch = version_sync_patch({})

        assert patch.apply({"category_id": "c", "ai_tags": ["x"]}) == {"category_id": "c", "ai_tags": ["x"]}

    def test_stage_owned_keys_left_to_their_stage(self):
        patch = version_sync_patch({
            "_ai_tagging_skipped": True,
            "thumbnail_timeout": True,
            "_metadata_extraction_skipped": True,
            "ai_tagging_completed": False,
            "exif": {"iso": 100},
        })

        assert patch.apply({"ai_tagging_completed": True}) == {"ai_tagging_completed": True, "exif": {"iso": 100}}

    def test_asset_scoped_stage_key_still_fills_gap(self):
        patch = version_sync_patch({"preview_generated": True})

        assert patch.apply({}) == {"preview_generated": True}
        assert patch.apply({"preview_generated": False}) == {"preview_generated": False}
