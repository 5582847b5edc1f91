"""
Image compositing capability used by the slide renderer.

Placement follows gravity + offset semantics: an offset is measured inward
from the edge (or centre) the gravity names, so "southeast" +50+50 puts an
image 50px from the right and bottom edges.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .errors import RenderError


Size = Tuple[int, int]
Offset = Tuple[int, int]

LINE_SPACING = 12

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

# Pillow text anchors per gravity; multiline text rejects "t"/"b" vertical anchors
_TEXT_ANCHORS = {
    "west": "lm",
    "west_bottom": "ld",
    "north": "ma",
    "center": "mm",
    "southwest": "ld",
}


class ImageCompositor(ABC):
    """Background, text and image overlays on a fixed-size canvas."""

    @abstractmethod
    def escape(self, text: Optional[str]) -> str:
        ...

    @abstractmethod
    def render_background(self, background_path: str, size: Size):
        ...

    @abstractmethod
    def open(self, path: str):
        ...

    @abstractmethod
    def overlay_text(self, canvas, text: str, gravity: str, offset: Offset, font_size: int) -> None:
        ...

    @abstractmethod
    def text_bbox(self, canvas, text: str, gravity: str, offset: Offset, font_size: int) -> Tuple[int, int, int, int]:
        """Box (left, top, right, bottom) that overlay_text would cover."""

    @abstractmethod
    def overlay_image(self, canvas, image_path: str, size: Size, gravity: str, offset: Offset) -> None:
        ...

    @abstractmethod
    def save(self, canvas, path: str) -> str:
        ...


def text_position(gravity: str, offset: Offset, canvas: Size) -> Tuple[int, int]:
    dx, dy = offset
    w, h = canvas
    if gravity in ("west", "west_bottom"):
        return dx, h // 2 + dy
    if gravity == "north":
        return w // 2 + dx, dy
    if gravity == "center":
        return w // 2 + dx, h // 2 + dy
    if gravity == "southwest":
        return dx, h - dy
    raise ValueError(f"Unsupported text gravity: {gravity}")


def image_position(gravity: str, offset: Offset, canvas: Size, size: Size) -> Tuple[int, int]:
    dx, dy = offset
    w, h = canvas
    iw, ih = size
    if gravity == "northwest":
        return dx, dy
    if gravity == "center":
        return (w - iw) // 2 + dx, (h - ih) // 2 + dy
    if gravity == "southeast":
        return w - iw - dx, h - ih - dy
    raise ValueError(f"Unsupported image gravity: {gravity}")


class PillowCompositor(ImageCompositor):
    def __init__(self, font_path: Optional[str] = None, fill: str = "white"):
        self.font_path = font_path
        self.fill = fill
        self._fonts: Dict[int, ImageFont.ImageFont] = {}

    def escape(self, text: Optional[str]) -> str:
        """
        Text is drawn in process and never reaches a shell, so escaping only
        normalises line endings and strips NUL/control characters.
        """
        if not text:
            return ""
        text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
        return _CONTROL_CHARS.sub("", text).strip()

    def _font(self, size: int):
        font = self._fonts.get(size)
        if font is None:
            try:
                if self.font_path:
                    font = ImageFont.truetype(self.font_path, size)
                else:
                    font = ImageFont.load_default(size=size)
            except OSError as e:
                raise RenderError(f"Could not load font {self.font_path or 'default'}: {e}") from e
            self._fonts[size] = font
        return font

    def render_background(self, background_path: str, size: Size) -> Image.Image:
        return self.open(background_path).resize(size)

    def open(self, path: str) -> Image.Image:
        try:
            with Image.open(path) as im:
                return im.convert("RGB")
        except (OSError, UnidentifiedImageError) as e:
            raise RenderError(f"Could not read image {path}: {e}") from e

    def _text_args(self, canvas: Image.Image, text: str, gravity: str, offset: Offset, font_size: int):
        kwargs = {"font": self._font(font_size), "anchor": _TEXT_ANCHORS[gravity]}
        if "\n" in text:
            kwargs["spacing"] = LINE_SPACING
        return text_position(gravity, offset, canvas.size), kwargs

    def overlay_text(self, canvas: Image.Image, text: str, gravity: str, offset: Offset, font_size: int) -> None:
        if not text:
            return
        draw = ImageDraw.Draw(canvas)
        xy, kwargs = self._text_args(canvas, text, gravity, offset, font_size)
        if "\n" in text:
            draw.multiline_text(xy, text, fill=self.fill, **kwargs)
        else:
            draw.text(xy, text, fill=self.fill, **kwargs)

    def text_bbox(self, canvas: Image.Image, text: str, gravity: str, offset: Offset,
                  font_size: int) -> Tuple[int, int, int, int]:
        xy, kwargs = self._text_args(canvas, text, gravity, offset, font_size)
        if not text:
            return (xy[0], xy[1], xy[0], xy[1])
        draw = ImageDraw.Draw(canvas)
        if "\n" in text:
            box = draw.multiline_textbbox(xy, text, **kwargs)
        else:
            box = draw.textbbox(xy, text, **kwargs)
        return tuple(int(round(v)) for v in box)

    def overlay_image(self, canvas: Image.Image, image_path: str, size: Size, gravity: str, offset: Offset) -> None:
        # exact resize, aspect ratio is not preserved
        overlay = self.open(image_path).resize(size)
        canvas.paste(overlay, image_position(gravity, offset, canvas.size, size))

    def save(self, canvas: Image.Image, path: str) -> str:
        try:
            canvas.save(path, format="PNG")
        except OSError as e:
            raise RenderError(f"Could not write slide {path}: {e}") from e
        return path
