"""Offscreen raster surface backed by Pillow.

A surface starts as opaque white RGBA, the same as a freshly cleared canvas,
so transparent regions of painted images read as white.
"""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

from pdfscribe.pdf.backend import PdfPage

WHITE = (255, 255, 255, 255)


class RasterSurface:
    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self._image = Image.new("RGBA", (width, height), WHITE)

    def paint_image(self, image: Image.Image, x: int = 0, y: int = 0) -> None:
        """Alpha-composite ``image`` at (x, y), clipped to the surface."""
        source = image if image.mode == "RGBA" else image.convert("RGBA")
        visible_w = min(source.width, self.width - x)
        visible_h = min(source.height, self.height - y)
        if visible_w <= 0 or visible_h <= 0:
            return
        if (visible_w, visible_h) != source.size:
            source = source.crop((0, 0, visible_w, visible_h))
        self._image.alpha_composite(source, (x, y))

    def put_pixels(self, pixels: np.ndarray) -> None:
        """Replace surface pixels with an (h, w, 4) uint8 array, no blending."""
        h = min(pixels.shape[0], self.height)
        w = min(pixels.shape[1], self.width)
        block = Image.fromarray(np.ascontiguousarray(pixels[:h, :w]))
        self._image.paste(block, (0, 0))

    def read_pixels(self) -> np.ndarray:
        """Return an (h, w, 4) uint8 copy of the surface."""
        return np.asarray(self._image, dtype=np.uint8).copy()

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self._image.save(buffer, format="PNG", optimize=False)
        return buffer.getvalue()


def render_page_to_surface(page: PdfPage, scale: float) -> RasterSurface:
    """Rasterize a page at ``scale`` onto a new white surface.

    Blocking; callers run it on the converter thread.
    """
    rendered = page.render(scale)
    surface = RasterSurface(rendered.width, rendered.height)
    surface.paint_image(rendered)
    return surface
