"""Image preprocessing: bound the size of acquired images and encode them.

Bounding the longer side keeps the inference payload and latency predictable.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from smilesim.capture.models import EncodedImage, RawImage

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION: int = 1024
DEFAULT_JPEG_QUALITY: int = 90


def bounded_size(width: int, height: int, max_dim: int = DEFAULT_MAX_DIMENSION) -> tuple[int, int]:
    """Return (width, height) scaled so the longer side is at most max_dim.

    Sizes already within the bound are returned unchanged.
    """
    longer = max(width, height)
    if longer <= max_dim:
        return width, height
    scale = max_dim / longer
    return max(1, round(width * scale)), max(1, round(height * scale))


class ImagePreprocessor:
    """Normalizes RawImages into JPEG-encoded, size-bounded EncodedImages."""

    def __init__(self, max_dim: int = DEFAULT_MAX_DIMENSION, quality: int = DEFAULT_JPEG_QUALITY) -> None:
        self.max_dim = max_dim
        self.quality = quality

    def resize(self, raw: RawImage, max_dim: int | None = None) -> EncodedImage:
        """Scale the image down if needed, preserving aspect ratio, and encode it.

        Args:
            raw: Image from the camera or a decoded file.
            max_dim: Bound for the longer side; defaults to the configured bound.

        Returns:
            JPEG EncodedImage with both dimensions <= max_dim.
        """
        limit = self.max_dim if max_dim is None else max_dim
        target = bounded_size(raw.width, raw.height, limit)

        img = Image.fromarray(raw.pixels)
        if target != (raw.width, raw.height):
            img = img.resize(target, Image.Resampling.LANCZOS)
            logger.info("Resized %dx%d -> %dx%d", raw.width, raw.height, *target)

        return self.encode(img)

    def encode(self, img: Image.Image) -> EncodedImage:
        buf = io.BytesIO()
        img.convert("RGB").save(buf, format="JPEG", quality=self.quality)
        return EncodedImage(data=buf.getvalue(), mime_type="image/jpeg", width=img.width, height=img.height)
