"""
Normalize synthesized image bytes to the canonical frame.

Synthesizers return whatever size and format their model produces; before a
visual reaches assembly it is decoded, converted to RGB and cover-cropped
(resize to fill, centre crop) to exactly the canonical width x height.  The
assembly graph still scales and pads, but only as a geometry guarantee; all
content-aware cropping happens here.
"""
from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


class ImageDecodeError(ValueError):
    """Synthesizer returned bytes that are not a decodable image."""


def normalize_image_bytes(data: bytes, width: int, height: int, output_path: Path) -> Path:
    """
    Decode *data*, cover-crop it to *width* x *height* and write a PNG.

    Raises:
        ImageDecodeError: if *data* is empty or not a decodable image.
    """
    if not data:
        raise ImageDecodeError("empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = ImageOps.exif_transpose(src).convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"cannot decode image payload: {exc}") from exc

    if img.size != (width, height):
        img = ImageOps.fit(
            img,
            (width, height),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )

    output_path = Path(output_path)
    img.save(str(output_path), format="PNG", compress_level=6)
    logger.debug("Normalized visual → %s (%dx%d)", output_path.name, width, height)
    return output_path
