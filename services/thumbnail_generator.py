"""Thumbnail generator service.

Small wrapper around Pillow that turns raw image bytes into a PNG
thumbnail fitting within 160x160 pixels, returned as a data URI so it can
be stored next to the analysis fields.

Example:
    tg = ThumbnailGenerator(max_size=(160, 160))
    thumb_uri = tg.create_thumbnail_data_uri(raw_bytes)
"""
from __future__ import annotations

import io
from typing import Tuple

from PIL import Image

from utils.media_validation import to_data_uri


class ThumbnailGenerator:
    """Generate thumbnails from raw image bytes.

    Args:
        max_size: Maximum width and height for the thumbnail. Defaults to (160, 160).
        background: Color used when flattening images with alpha to RGB.
            Defaults to white.
    """

    def __init__(self, max_size: Tuple[int, int] = (160, 160), background: Tuple[int, int, int] | None = None):
        self.max_size = max_size
        self.background = background or (255, 255, 255)

    def create_thumbnail(self, data: bytes) -> bytes:
        """Return PNG thumbnail bytes for `data`.

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except Exception as exc:
            raise ValueError("Image bytes are not a supported image format") from exc

        src = src.convert("RGBA")
        src.thumbnail(self.max_size, Image.LANCZOS)

        # Flatten alpha against the background color
        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="PNG", optimize=True)
        return out_io.getvalue()

    def create_thumbnail_data_uri(self, data: bytes) -> str:
        """Return the thumbnail as a `data:image/png;base64,...` URI."""
        return to_data_uri(self.create_thumbnail(data), "image/png")
