"""
Locally rendered stand-ins for failed synthesis.

  generate_placeholder()         flat-colour frame with a faint square pattern
                                 and a centred label; used for failed visuals
                                 and for locally rendered title cards
  generate_fallback_thumbnail()  diagonal two-colour gradient with the
                                 wrapped thumbnail caption

Identical arguments give a bit-identical PNG on a given Pillow version.
Pillow only, no ffmpeg dependency.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

Font = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

_FALLBACK_BACKGROUND = (26, 26, 46)
_TILE = 40
_TILE_ALPHA = 26
_INK = (235, 235, 235)
_SHADOW = (0, 0, 0)
_SHADOW_OFFSET = 2


def generate_placeholder(
    label: str,
    width: int,
    height: int,
    output_path: Path,
    color: str = "#1a1a2e",
    font_path: Optional[str] = None,
    font_size: int = 48,
    pattern: bool = True,
) -> Path:
    """Write a *width* x *height* placeholder PNG to *output_path* and return it."""
    target = Path(output_path)
    frame = Image.new("RGB", (width, height), _rgb(color))
    if pattern:
        frame = _with_tiles(frame)
    _centred_caption(frame, label, _font(font_path, font_size), max_width=int(width * 0.85))
    _save_png(frame, target)
    logger.debug("placeholder %s (%dx%d) -> %s", label[:40], width, height, target)
    return target


def generate_fallback_thumbnail(
    caption: str,
    width: int,
    height: int,
    output_path: Path,
    gradient: tuple[str, str] = ("#667eea", "#764ba2"),
    font_path: Optional[str] = None,
    font_size: int = 72,
) -> Path:
    """Gradient thumbnail with *caption* centred on it."""
    frame = _diagonal_gradient(width, height, _rgb(gradient[0]), _rgb(gradient[1]))
    _centred_caption(frame, caption or " ", _font(font_path, font_size), max_width=width - 100)
    target = Path(output_path)
    _save_png(frame, target)
    logger.debug("fallback thumbnail (%dx%d) -> %s", width, height, target)
    return target


def _rgb(color: str) -> tuple[int, int, int]:
    """``#rrggbb`` to an RGB triple; anything else logs and yields the fallback."""
    digits = color[1:] if color.startswith("#") else color
    if len(digits) == 6:
        try:
            red, green, blue = bytes.fromhex(digits)
            return red, green, blue
        except ValueError:
            pass
    logger.warning("Unusable colour %r, falling back to #1a1a2e", color)
    return _FALLBACK_BACKGROUND


def _with_tiles(frame: Image.Image) -> Image.Image:
    """Checkerboard of small translucent white squares, one per other cell."""
    layer = Image.new("RGBA", frame.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    side = _TILE // 2
    for cx, x in enumerate(range(0, frame.width, _TILE)):
        for cy, y in enumerate(range(0, frame.height, _TILE)):
            if (cx + cy) % 2 == 0:
                draw.rectangle([x, y, x + side - 1, y + side - 1], fill=(255, 255, 255, _TILE_ALPHA))
    return Image.alpha_composite(frame.convert("RGBA"), layer).convert("RGB")


def _diagonal_gradient(
    width: int, height: int, start: tuple[int, int, int], end: tuple[int, int, int],
) -> Image.Image:
    # Colour depends on x + y only: every row is the same ramp shifted by y.
    length = width + height - 1
    last = max(length - 1, 1)
    ramp = Image.new("RGB", (length, 1))
    ramp.putdata([
        tuple(round(a + (b - a) * i / last) for a, b in zip(start, end))
        for i in range(length)
    ])
    frame = Image.new("RGB", (width, height))
    for y in range(height):
        frame.paste(ramp.crop((y, 0, y + width, 1)), (0, y))
    return frame


def _wrap(draw: ImageDraw.ImageDraw, text: str, font: Font, max_width: int) -> str:
    """Greedy word wrap; keeps explicit newlines."""
    out: list[str] = []
    for paragraph in text.split("\n"):
        line = ""
        for word in paragraph.split():
            trial = word if not line else f"{line} {word}"
            if line and draw.textlength(trial, font=font) > max_width:
                out.append(line)
                line = word
            else:
                line = trial
        out.append(line)
    return "\n".join(out)


def _centred_caption(frame: Image.Image, text: str, font: Font, max_width: int) -> None:
    draw = ImageDraw.Draw(frame)
    body = _wrap(draw, text, font, max_width)
    left, top, right, bottom = draw.multiline_textbbox((0, 0), body, font=font, align="center")
    x = (frame.width - (right - left)) // 2
    y = (frame.height - (bottom - top)) // 2
    shadow_at = (x + _SHADOW_OFFSET, y + _SHADOW_OFFSET)
    draw.multiline_text(shadow_at, body, fill=_SHADOW, font=font, align="center")
    draw.multiline_text((x, y), body, fill=_INK, font=font, align="center")


def _font(font_path: Optional[str], size: int) -> Font:
    """TrueType at *font_path* when it loads, otherwise Pillow's scalable default."""
    if font_path:
        try:
            return ImageFont.truetype(font_path, size=size)
        except OSError as exc:
            logger.debug("Font %r unusable (%s); using the built-in font", font_path, exc)
    return ImageFont.load_default(size=size)


def _save_png(frame: Image.Image, target: Path) -> None:
    # Fixed compression settings keep the bytes stable across calls.
    frame.save(str(target), format="PNG", compress_level=9, optimize=False)
