"""assetflow - asset processing pipeline (thumbnails, metadata, AI tagging, brand compliance)."""

__version__ = "2.0.0"
