"""
Thumbnail rendering.

Turns a source file into JPEG previews at each configured size (longest edge
in pixels, never upscaled). Rasterisation per source family:

    raster images   Pillow
    PDF, SVG        PyMuPDF (first page / the drawing)
    video           ffmpeg poster frame, then Pillow

AVIF is deliberately not in the supported list.
"""

import io
import json
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Mapping, Optional

import fitz  # pymupdf
from PIL import Image, ImageOps

from assetflow.core.pipeline.interfaces import RenderedImage, RenderedThumbnails
from assetflow.core.pipeline.models import ThumbnailGenerationError, UnsupportedMediaError

logger = logging.getLogger("assetflow.imaging.thumbnails")

RASTER_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/pjpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
    "image/tif",
})
SVG_MIME_TYPES = frozenset({"image/svg+xml"})
PDF_MIME_TYPES = frozenset({"application/pdf"})
VIDEO_MIME_PREFIX = "video/"

# Render PDFs/SVGs at this DPI before downscaling
VECTOR_RENDER_DPI = 150
# Poster frame position as a share of the clip duration
VIDEO_FRAME_POSITION = 0.30


def _normalize_mime(mime_type: Optional[str]) -> str:
    return (mime_type or "").split(";")[0].strip().lower()


class ThumbnailGenerator:
    def __init__(
        self,
        jpeg_quality: int = 85,
        ffmpeg_binary: str = "ffmpeg",
        video_frame_offset_seconds: float = 1.0,
        ffmpeg_timeout: int = 120,
    ):
        self.jpeg_quality = jpeg_quality
        self.ffmpeg_binary = ffmpeg_binary
        self.video_frame_offset_seconds = video_frame_offset_seconds
        self.ffmpeg_timeout = ffmpeg_timeout

    @classmethod
    def from_settings(cls, settings) -> "ThumbnailGenerator":
        return cls(
            jpeg_quality=settings.thumbnail_jpeg_quality,
            ffmpeg_binary=settings.ffmpeg_binary,
            video_frame_offset_seconds=settings.video_frame_offset_seconds,
        )

    def supports(self, mime_type: Optional[str]) -> bool:
        mime = _normalize_mime(mime_type)
        return (
            mime in RASTER_MIME_TYPES
            or mime in SVG_MIME_TYPES
            or mime in PDF_MIME_TYPES
            or mime.startswith(VIDEO_MIME_PREFIX)
        )

    def render(self, source: bytes, mime_type: str, sizes: Mapping[str, int]) -> RenderedThumbnails:
        if not source:
            raise ThumbnailGenerationError("Source file is empty")

        image = self.load_image(source, mime_type)
        try:
            source_width, source_height = image.size
            images = {
                name: self._resize_to_jpeg(image, max_edge)
                for name, max_edge in sizes.items()
            }
        finally:
            image.close()

        return RenderedThumbnails(source_width=source_width, source_height=source_height, images=images)

    # =========================================================================
    # Source loading
    # =========================================================================

    def load_image(self, source: bytes, mime_type: str) -> Image.Image:
        mime = _normalize_mime(mime_type)
        if mime in RASTER_MIME_TYPES:
            return self._load_raster(source)
        if mime in PDF_MIME_TYPES:
            return self._load_vector(source, "pdf")
        if mime in SVG_MIME_TYPES:
            return self._load_vector(source, "svg")
        if mime.startswith(VIDEO_MIME_PREFIX):
            return self._load_video_frame(source)
        raise UnsupportedMediaError(f"Unsupported media type: {mime_type}")

    def _load_raster(self, source: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(source))
            image.seek(0)  # first frame of animated GIF/WebP
            image = ImageOps.exif_transpose(image)
            return self._flatten(image)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ThumbnailGenerationError(f"Cannot decode image: {e}") from e

    def _load_vector(self, source: bytes, filetype: str) -> Image.Image:
        try:
            with fitz.open(stream=source, filetype=filetype) as doc:
                if doc.page_count < 1:
                    raise ThumbnailGenerationError(f"{filetype.upper()} has no pages")
                zoom = VECTOR_RENDER_DPI / 72
                pix = doc[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
                return Image.open(io.BytesIO(pix.tobytes("png"))).convert("RGB")
        except ThumbnailGenerationError:
            raise
        except Exception as e:
            raise ThumbnailGenerationError(f"Cannot render {filetype.upper()}: {e}") from e

    def _load_video_frame(self, source: bytes) -> Image.Image:
        with tempfile.TemporaryDirectory(prefix="assetflow_video_") as tmpdir:
            video_path = Path(tmpdir) / "source"
            frame_path = Path(tmpdir) / "frame.jpg"
            video_path.write_bytes(source)

            duration = self._probe_duration(video_path)
            offset = max(0.5, duration * VIDEO_FRAME_POSITION) if duration else self.video_frame_offset_seconds

            cmd = [
                self.ffmpeg_binary, "-hide_banner", "-loglevel", "error",
                "-ss", f"{offset:.2f}", "-i", str(video_path),
                "-frames:v", "1", "-q:v", "2", "-y", str(frame_path),
            ]
            try:
                proc = subprocess.run(
                    cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                    timeout=self.ffmpeg_timeout, check=False,
                )
            except FileNotFoundError as e:
                raise ThumbnailGenerationError(
                    f"FFmpeg is not installed or not found ({self.ffmpeg_binary})"
                ) from e
            except subprocess.TimeoutExpired as e:
                raise ThumbnailGenerationError("FFmpeg frame extraction timed out") from e

            if proc.returncode != 0 or not frame_path.exists() or frame_path.stat().st_size == 0:
                stderr = proc.stderr.decode(errors="ignore").strip()
                raise ThumbnailGenerationError(
                    f"Failed to extract video frame: ffmpeg returned {proc.returncode}: {stderr[:500]}"
                )

            with Image.open(frame_path) as frame:
                return frame.convert("RGB")

    def _probe_duration(self, video_path: Path) -> Optional[float]:
        ffprobe = self.ffmpeg_binary.replace("ffmpeg", "ffprobe")
        cmd = [
            ffprobe, "-v", "error", "-show_entries", "format=duration",
            "-of", "json", str(video_path),
        ]
        try:
            proc = subprocess.run(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                timeout=30, check=False,
            )
            if proc.returncode != 0:
                return None
            duration = float(json.loads(proc.stdout or b"{}").get("format", {}).get("duration", 0))
        except (OSError, ValueError, subprocess.TimeoutExpired):
            logger.debug("ffprobe unavailable; using fixed poster frame offset")
            return None
        return duration if duration > 0 else None

    # =========================================================================
    # Output
    # =========================================================================

    @staticmethod
    def _flatten(image: Image.Image) -> Image.Image:
        """Composite transparency onto white and return an RGB image."""
        if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        return image.convert("RGB")

    def _resize_to_jpeg(self, image: Image.Image, max_edge: int) -> RenderedImage:
        thumb = image.copy()
        thumb.thumbnail((max_edge, max_edge), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        thumb.save(buffer, format="JPEG", quality=self.jpeg_quality, optimize=True)
        width, height = thumb.size
        thumb.close()
        return RenderedImage(data=buffer.getvalue(), width=width, height=height)
