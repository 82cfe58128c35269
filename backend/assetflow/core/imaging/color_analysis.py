"""
Dominant colour analysis.

Deterministic clustering of a thumbnail's pixels in CIE Lab space:

    1. downsample to at most 200px on the longest edge
    2. drop pixels with alpha < 0.95
    3. k-means (k=6) seeded from lightness-sorted pixels, no randomness
    4. drop clusters under 5% coverage, merge clusters closer than dE 10
    5. keep the top 3 clusters with at least 10% coverage

The bucket ("L50_A10_B20") quantises the primary cluster's Lab value in
steps of 10 and is used for similarity filtering.
"""

import io
import logging
from typing import Dict, List

import numpy as np
from PIL import Image

from assetflow.core.pipeline.interfaces import ColorAnalysis
from assetflow.core.pipeline.models import ColorAnalysisError

logger = logging.getLogger("assetflow.imaging.colors")

MAX_SIZE = 200
ALPHA_THRESHOLD = 0.95
K = 6
MAX_ITERATIONS = 50
COVERAGE_MIN = 0.05
DELTA_E_MERGE = 10.0
DOMINANT_COVERAGE_MIN = 0.10
DOMINANT_MAX = 3
BUCKET_STEP = 10

# D65 reference white
_WHITE = np.array([0.95047, 1.0, 1.08883])
_RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])
_XYZ_TO_RGB = np.array([
    [3.2404542, -1.5371385, -0.4985314],
    [-0.9692660, 1.8760108, 0.0415560],
    [0.0556434, -0.2040259, 1.0572252],
])


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """sRGB 0-255 (N x 3) -> Lab (N x 3)."""
    c = rgb.astype(np.float64) / 255.0
    c = np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)
    xyz = (c @ _RGB_TO_XYZ.T) / _WHITE
    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16 / 116)
    return np.stack([
        116.0 * f[:, 1] - 16.0,
        500.0 * (f[:, 0] - f[:, 1]),
        200.0 * (f[:, 1] - f[:, 2]),
    ], axis=1)


def lab_to_rgb(lab: np.ndarray) -> List[int]:
    """Single Lab triple -> sRGB 0-255 ints."""
    L, a, b = (float(v) for v in lab)
    fy = (L + 16) / 116
    f = np.array([a / 500 + fy, fy, fy - b / 200])
    xyz = np.where(f > 0.206897, f ** 3, (f - 16 / 116) / 7.787) * _WHITE
    c = _XYZ_TO_RGB @ xyz
    c = np.where(c > 0.0031308, 1.055 * np.abs(c) ** (1 / 2.4) - 0.055, 12.92 * c)
    return [int(round(max(0.0, min(255.0, v * 255)))) for v in c]


def rgb_to_hex(rgb: List[int]) -> str:
    return "#{:02X}{:02X}{:02X}".format(*rgb)


def color_bucket(lab: np.ndarray) -> str:
    L, a, b = (int(round(float(v) / BUCKET_STEP)) * BUCKET_STEP for v in lab)
    return f"L{L}_A{a}_B{b}"


def _sample_pixels(image_bytes: bytes) -> np.ndarray:
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = img.convert("RGBA")
            img.thumbnail((MAX_SIZE, MAX_SIZE), Image.Resampling.BILINEAR)
            pixels = np.asarray(img, dtype=np.uint8).reshape(-1, 4)
    except (OSError, ValueError) as e:
        raise ColorAnalysisError(f"Cannot decode thumbnail: {e}") from e

    opaque = pixels[:, 3] >= int(round(ALPHA_THRESHOLD * 255))
    return pixels[opaque, :3]


def _kmeans(lab: np.ndarray, k: int) -> List[Dict]:
    n = len(lab)
    k = min(k, n)
    ordered = lab[np.argsort(lab[:, 0], kind="stable")]
    step = max(1, n // k)
    centroids = np.array([ordered[min(i * step, n - 1)] for i in range(k)])

    for _ in range(MAX_ITERATIONS):
        distances = np.linalg.norm(lab[:, None, :] - centroids[None, :, :], axis=2)
        assignments = np.argmin(distances, axis=1)
        moved = False
        for c in range(k):
            members = lab[assignments == c]
            if len(members) == 0:
                continue
            updated = members.mean(axis=0)
            if np.linalg.norm(updated - centroids[c]) > 0.001:
                moved = True
            centroids[c] = updated
        if not moved:
            break

    counts = np.bincount(assignments, minlength=k)
    clusters = [
        {"lab": centroids[c].copy(), "count": int(counts[c]), "coverage": counts[c] / n}
        for c in range(k)
        if counts[c] > 0
    ]
    clusters.sort(key=lambda c: -c["coverage"])
    return clusters


def _merge_close(clusters: List[Dict]) -> List[Dict]:
    """Merge pairs closer than DELTA_E_MERGE into count-weighted centroids."""
    merged = list(clusters)
    for _ in range(10):
        changed = False
        result = []
        used = [False] * len(merged)
        for i, ci in enumerate(merged):
            if used[i]:
                continue
            for j in range(i + 1, len(merged)):
                cj = merged[j]
                if used[j] or np.linalg.norm(ci["lab"] - cj["lab"]) >= DELTA_E_MERGE:
                    continue
                total = ci["count"] + cj["count"]
                result.append({
                    "lab": (ci["lab"] * ci["count"] + cj["lab"] * cj["count"]) / total,
                    "count": total,
                    "coverage": ci["coverage"] + cj["coverage"],
                })
                used[i] = used[j] = True
                changed = True
                break
            if not used[i]:
                result.append(ci)
        if not changed:
            break
        result.sort(key=lambda c: -c["coverage"])
        merged = result
    return merged


class DominantColorAnalyzer:
    def analyze(self, image: bytes) -> ColorAnalysis:
        rgb = _sample_pixels(image)
        if len(rgb) == 0:
            logger.debug("No opaque pixels to analyze")
            return ColorAnalysis(dominant_colors=[], bucket=None)

        clusters = _kmeans(rgb_to_lab(rgb), K)
        clusters = [c for c in clusters if c["coverage"] >= COVERAGE_MIN]
        clusters = _merge_close(clusters)

        dominant = [c for c in clusters if c["coverage"] >= DOMINANT_COVERAGE_MIN][:DOMINANT_MAX]
        colors = []
        for cluster in dominant:
            rgb_value = lab_to_rgb(cluster["lab"])
            colors.append({
                "hex": rgb_to_hex(rgb_value),
                "rgb": rgb_value,
                "coverage": round(float(cluster["coverage"]), 4),
            })

        bucket = color_bucket(dominant[0]["lab"]) if dominant else None
        return ColorAnalysis(dominant_colors=colors, bucket=bucket)
