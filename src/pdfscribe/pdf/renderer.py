"""Image rendering: embedded image objects and full-page scans.

Embedded mode paints an image object onto a white surface, trying each
representation the backend may have supplied until one works:

1. bitmap handle (decoded PIL image)
2. raw pixel buffer (bytes, bytearray, memoryview, numpy array or list of
   ints in RGBA, RGB or grayscale layout)
3. pull-based accessor (``get_image_data()``, sync or async)
4. generic drawable (encoded image bytes or a PIL image)

Full-page mode rasterizes the page at 2.0x for scanned pages and 1.5x
otherwise. Both modes then reject renders that are effectively blank,
except forced scans which are always kept.
"""

from __future__ import annotations

import inspect
import io
from typing import Any

import numpy as np
from loguru import logger
from PIL import Image, UnidentifiedImageError

from pdfscribe.constants import (
    DEFAULT_PAGE_RENDER_SCALE,
    MIN_ALPHA,
    MIN_EMBEDDED_IMAGE_SIZE,
    MIN_NON_WHITE_FRACTION,
    SCANNED_PAGE_RENDER_SCALE,
    SMALL_IMAGE_EDGE,
    SMALL_IMAGE_MIN_NON_WHITE,
    WHITE_CHANNEL_THRESHOLD,
)
from pdfscribe.exceptions import ImageExtractionError
from pdfscribe.pdf.backend import PdfPage
from pdfscribe.pdf.raster import RasterSurface, render_page_to_surface
from pdfscribe.types import ExtractedImage, Position
from pdfscribe.utils.executor import run_in_converter_thread

_CHANNELS_TO_MODE = {4: "RGBA", 3: "RGB", 1: "L"}


def count_non_white_pixels(pixels: np.ndarray) -> int:
    """Count visible pixels with any RGB channel below the white threshold."""
    rgb = pixels[..., :3]
    alpha = pixels[..., 3]
    non_white = (rgb < WHITE_CHANNEL_THRESHOLD).any(axis=-1) & (alpha > MIN_ALPHA)
    return int(np.count_nonzero(non_white))


def has_visible_content(surface: RasterSurface) -> bool:
    """Blankness check.

    More than 0.2% of the pixels must be non-white. Surfaces smaller than
    30x30 only need more than 5 non-white pixels.
    """
    non_white = count_non_white_pixels(surface.read_pixels())
    if non_white > surface.width * surface.height * MIN_NON_WHITE_FRACTION:
        return True
    if surface.width < SMALL_IMAGE_EDGE and surface.height < SMALL_IMAGE_EDGE:
        return non_white > SMALL_IMAGE_MIN_NON_WHITE
    return False


def pixels_from_buffer(
    data: Any, width: int, height: int, mode: str | None = None
) -> np.ndarray:
    """Convert a raw pixel buffer to an (h, w, 4) RGBA array.

    The element layout comes from ``mode`` or, when absent, from the buffer
    length. A short RGBA buffer leaves the remaining pixels transparent and
    a long one is truncated.
    """
    if isinstance(data, np.ndarray):
        flat = data.astype(np.uint8, copy=False).reshape(-1)
    elif isinstance(data, bytes | bytearray | memoryview):
        flat = np.frombuffer(bytes(data), dtype=np.uint8)
    elif isinstance(data, list | tuple):
        flat = np.asarray(data, dtype=np.uint8)
    else:
        raise TypeError(f"Unsupported pixel buffer type: {type(data).__name__}")

    pixel_count = width * height
    if mode is None:
        channels = flat.size // pixel_count if pixel_count else 4
        mode = _CHANNELS_TO_MODE.get(channels, "RGBA")

    if mode == "RGBA":
        rgba = np.zeros(pixel_count * 4, dtype=np.uint8)
        n = min(flat.size, rgba.size)
        rgba[:n] = flat[:n]
        return rgba.reshape(height, width, 4)

    channels = 3 if mode == "RGB" else 1
    if flat.size < pixel_count * channels:
        raise ValueError(
            f"{mode} buffer too short: {flat.size} < {pixel_count * channels}"
        )
    pixels = flat[: pixel_count * channels].reshape(height, width, channels)
    if channels == 1:
        pixels = np.repeat(pixels, 3, axis=2)
    alpha = np.full((height, width, 1), 255, dtype=np.uint8)
    return np.concatenate([pixels, alpha], axis=2)


def _paint_bitmap(surface: RasterSurface, obj: Any) -> bool:
    bitmap = getattr(obj, "bitmap", None)
    if bitmap is None:
        return False
    surface.paint_image(bitmap)
    return True


def _paint_buffer(surface: RasterSurface, obj: Any) -> bool:
    data = getattr(obj, "data", None)
    if data is None:
        return False
    pixels = pixels_from_buffer(
        data, surface.width, surface.height, getattr(obj, "mode", None)
    )
    surface.put_pixels(pixels)
    return True


async def _paint_accessor(surface: RasterSurface, obj: Any) -> bool:
    accessor = getattr(obj, "get_image_data", None)
    if not callable(accessor):
        return False
    result = accessor()
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, Image.Image):
        surface.paint_image(result)
        return True
    # ImageData-like: an object with its own data and dimensions
    data = getattr(result, "data", result)
    width = getattr(result, "width", surface.width)
    height = getattr(result, "height", surface.height)
    pixels = pixels_from_buffer(data, width, height, getattr(result, "mode", None))
    surface.put_pixels(pixels)
    return True


def _paint_drawable(surface: RasterSurface, obj: Any) -> bool:
    drawable = getattr(obj, "image", None)
    if drawable is None:
        return False
    if isinstance(drawable, Image.Image):
        surface.paint_image(drawable)
        return True
    with Image.open(io.BytesIO(bytes(drawable))) as decoded:
        decoded.load()
        surface.paint_image(decoded)
    return True


class ImageRenderer:
    """Render embedded images and full pages to PNG-backed ExtractedImages."""

    async def render_embedded(
        self,
        image_object: Any,
        page_number: int,
        image_id: str,
        position: Position | None = None,
    ) -> ExtractedImage | None:
        """Paint an embedded image object.

        Returns:
            ExtractedImage, or None if the object is too small, no strategy
            could paint it, or the result is blank.
        """
        width = int(getattr(image_object, "width", 0) or 0)
        height = int(getattr(image_object, "height", 0) or 0)
        if width < MIN_EMBEDDED_IMAGE_SIZE or height < MIN_EMBEDDED_IMAGE_SIZE:
            logger.debug(f"[Render] {image_id}: {width}x{height} below minimum size")
            return None

        surface = RasterSurface(width, height)
        try:
            await self._paint(surface, image_object, image_id)
        except ImageExtractionError as e:
            logger.debug(f"[Render] {e}")
            return None

        if not has_visible_content(surface):
            logger.debug(f"[Render] {image_id}: blank image rejected")
            return None

        return ExtractedImage(
            id=image_id,
            page_number=page_number,
            width=width,
            height=height,
            raster_data=surface.to_png(),
            position=position or Position(),
        )

    async def _paint(self, surface: RasterSurface, obj: Any, image_id: str) -> None:
        """Try each strategy in order; raise ImageExtractionError if none works."""
        strategies = (
            ("bitmap", _paint_bitmap),
            ("buffer", _paint_buffer),
            ("accessor", _paint_accessor),
            ("drawable", _paint_drawable),
        )
        for name, strategy in strategies:
            try:
                painted = strategy(surface, obj)
                if inspect.isawaitable(painted):
                    painted = await painted
            except (
                OSError,
                OverflowError,
                TypeError,
                ValueError,
                UnidentifiedImageError,
            ) as e:
                logger.debug(f"[Render] {image_id}: {name} strategy failed: {e}")
                continue
            if painted:
                return
        raise ImageExtractionError(
            f"{image_id}: no extraction strategy succeeded", object_name=image_id
        )

    async def render_page(
        self,
        page: PdfPage,
        image_id: str,
        is_scanned: bool = False,
        is_forced_scan: bool = False,
    ) -> ExtractedImage | None:
        """Rasterize a whole page.

        Forced scans skip the blankness check.
        """
        scale = SCANNED_PAGE_RENDER_SCALE if is_scanned else DEFAULT_PAGE_RENDER_SCALE
        surface = await run_in_converter_thread(render_page_to_surface, page, scale)

        if not is_forced_scan and not has_visible_content(surface):
            logger.debug(f"[Render] {image_id}: blank page render rejected")
            return None

        return ExtractedImage(
            id=image_id,
            page_number=page.page_number,
            width=surface.width,
            height=surface.height,
            raster_data=surface.to_png(),
            is_full_page=True,
            is_scanned=is_scanned,
            is_forced_scan=is_forced_scan,
            position=Position(0.0, 0.0),
        )
