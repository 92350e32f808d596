"""Thumbnail generator service.

Provides a small OOP wrapper around Pillow to create PNG thumbnails of
generated images stored in session history as base64 `data:` URLs. The
resulting thumbnail fits within 160x160 pixels.

Public class: `ThumbnailGenerator`

Example:
    tg = ThumbnailGenerator(max_size=(160, 160))
    png_bytes = tg.create_thumbnail_from_data_url(image.image_url)
"""
from __future__ import annotations

import base64
import binascii
import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError


class ThumbnailGenerator:
    """Generate thumbnails from inline image data.

    Args:
        max_size: Maximum width and height for the thumbnail. Defaults to (160, 160).
        background: Optional background color used when flattening images with alpha.
            If None, images with alpha are flattened against white.
    """

    def __init__(self, max_size: Tuple[int, int] = (160, 160), background: Tuple[int, int, int] | None = None):
        self.max_size = max_size
        self.background = background or (255, 255, 255)

    def create_thumbnail_from_data_url(self, image_url: str) -> bytes:
        """Create a PNG thumbnail from a `data:image/...;base64,` URL.

        Raises:
            ValueError: If the URL is not an inline base64 image or cannot be decoded.
        """
        header, sep, encoded = image_url.partition(",")
        if not sep or not header.startswith("data:image/") or not header.endswith(";base64"):
            raise ValueError("Thumbnails are only available for inline base64 images")
        return self.create_thumbnail(encoded)

    def create_thumbnail(self, data: str | bytes) -> bytes:
        """Create a PNG thumbnail from base64-encoded image data."""
        data_bytes = data.encode("utf-8") if isinstance(data, str) else data

        try:
            raw = base64.b64decode(data_bytes, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Invalid base64 data provided") from exc

        try:
            src = Image.open(io.BytesIO(raw))
            src = src.convert("RGBA")
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError("Decoded bytes are not a supported image format") from exc

        src.thumbnail(self.max_size, Image.LANCZOS)

        # Flatten alpha against the background color
        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="PNG", optimize=True)
        return out_io.getvalue()
