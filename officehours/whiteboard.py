"""Raster whiteboard shared between the learner and the session.

Strokes are painted onto a Pillow image. The session only ever reads the
pixels, through :meth:`Whiteboard.snapshot`, to attach a JPEG of the board to
a conversation turn.
"""

from __future__ import annotations

import base64
import io
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, ImageColor, ImageDraw

from .config import Config

logger = logging.getLogger(__name__)

CANVAS_SIZE: Tuple[int, int] = (1200, 800)
BACKGROUND = (255, 255, 255)

COLORS = {
    "Black": "hsl(0, 0%, 5%)",
    "Red": "hsl(0, 80%, 50%)",
    "Blue": "hsl(220, 80%, 50%)",
    "Orange": "hsl(25, 90%, 52%)",
    "Green": "hsl(140, 60%, 40%)",
}

BRUSH_WIDTH = 3
ERASER_WIDTH = 24


class Tool(str, Enum):
    BRUSH = "brush"
    ERASER = "eraser"


class Whiteboard:
    """Pointer-to-stroke drawing surface with brush, eraser and clear."""

    def __init__(self, size: Tuple[int, int] = CANVAS_SIZE) -> None:
        self.size = size
        self.image = Image.new("RGB", size, BACKGROUND)
        self._draw = ImageDraw.Draw(self.image)
        self.color = COLORS["Black"]
        self.tool = Tool.BRUSH
        self._last_point: Optional[Tuple[float, float]] = None

    @property
    def drawing(self) -> bool:
        return self._last_point is not None

    @property
    def stroke_fill(self) -> Tuple[int, int, int]:
        if self.tool is Tool.ERASER:
            return BACKGROUND
        return ImageColor.getrgb(self.color)[:3]

    @property
    def stroke_width(self) -> int:
        return ERASER_WIDTH if self.tool is Tool.ERASER else BRUSH_WIDTH

    def select_color(self, name: str) -> None:
        """Pick a palette colour; this also switches back to the brush."""
        try:
            self.color = COLORS[name]
        except KeyError:
            raise ValueError(f"Unknown colour {name!r}; choose one of {', '.join(COLORS)}") from None
        self.tool = Tool.BRUSH

    def select_tool(self, tool: Union[Tool, str]) -> None:
        self.tool = Tool(tool)

    def map_pointer(self, x: float, y: float, display_size: Tuple[float, float]) -> Tuple[float, float]:
        """Scale a pointer position on the displayed board to canvas pixels."""
        display_width, display_height = display_size
        if display_width <= 0 or display_height <= 0:
            return 0.0, 0.0
        return x * self.size[0] / display_width, y * self.size[1] / display_height

    def begin_stroke(self, x: float, y: float) -> None:
        self._last_point = (x, y)

    def draw_to(self, x: float, y: float) -> None:
        """Extend the current stroke to ``(x, y)``; ignored when no stroke is active."""
        if self._last_point is None:
            return
        start = self._last_point
        width = self.stroke_width
        fill = self.stroke_fill
        self._draw.line([start, (x, y)], fill=fill, width=width, joint="curve")
        # Round caps at both ends.
        radius = width / 2
        for px, py in (start, (x, y)):
            self._draw.ellipse([px - radius, py - radius, px + radius, py + radius], fill=fill)
        self._last_point = (x, y)

    def end_stroke(self) -> None:
        self._last_point = None

    def clear(self) -> None:
        self._draw.rectangle([(0, 0), self.size], fill=BACKGROUND)
        self._last_point = None

    def load_image(self, path: Union[str, Path]) -> None:
        """Paste an image file onto the board, scaled to fit and flattened against white."""
        with Image.open(path) as source:
            picture = source.convert("RGBA")
            picture.thumbnail(self.size, Image.LANCZOS)
        self.clear()
        offset = ((self.size[0] - picture.width) // 2, (self.size[1] - picture.height) // 2)
        self.image.paste(picture, offset, mask=picture.split()[3])
        logger.info("Loaded %s onto the whiteboard", path)

    def snapshot(self, quality: float = Config.SNAPSHOT_QUALITY) -> str:
        """Return the current pixels as a ``data:image/jpeg;base64,...`` URL.

        ``quality`` follows the canvas convention of 0..1.
        """
        buffer = io.BytesIO()
        self.image.save(buffer, format="JPEG", quality=max(1, min(100, round(quality * 100))))
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"
