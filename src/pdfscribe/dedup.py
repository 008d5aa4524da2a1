"""Image deduplication.

Visually identical images on the same page (logos repeated in a layout,
images painted twice, a page scan that equals its one embedded image) are
merged so each is analyzed once. Forced page scans are never merged: with
"scan all pages" on, every page keeps exactly one scan.
"""

from __future__ import annotations

import io
from collections.abc import Sequence
from dataclasses import replace

import numpy as np
from loguru import logger
from PIL import Image, UnidentifiedImageError

from pdfscribe.constants import (
    COMBINED_ID_SEPARATOR,
    DEFAULT_SIMILARITY_THRESHOLD,
    FULL_SAMPLING_MAX_PIXELS,
    LARGE_IMAGE_PIXEL_STEP,
    MAX_SIZE_RATIO,
    PIXEL_CHANNEL_TOLERANCE,
)
from pdfscribe.types import ExtractedImage


def _decode_rgba(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGBA"), dtype=np.int16)


def compare_images(first: bytes, second: bytes) -> float:
    """Similarity score between two encoded images, from 0.0 to 1.0.

    Identical bytes score 1.0 and differing dimensions score 0.0. Otherwise
    every pixel (or every 4th, above 100,000 pixels) is sampled and a pixel
    counts as identical when all four channels differ by at most 3.

    Raises:
        OSError: If either image cannot be decoded.
    """
    if first == second:
        return 1.0

    a = _decode_rgba(first)
    b = _decode_rgba(second)
    if a.shape != b.shape:
        return 0.0

    pixels_a = a.reshape(-1, 4)
    pixels_b = b.reshape(-1, 4)
    step = LARGE_IMAGE_PIXEL_STEP if len(pixels_a) > FULL_SAMPLING_MAX_PIXELS else 1
    sampled_a = pixels_a[::step]
    sampled_b = pixels_b[::step]
    if len(sampled_a) == 0:
        return 0.0

    close = (np.abs(sampled_a - sampled_b) <= PIXEL_CHANNEL_TOLERANCE).all(axis=1)
    return float(np.count_nonzero(close)) / len(sampled_a)


def sizes_comparable(a: ExtractedImage, b: ExtractedImage) -> bool:
    """True when area and both dimensions are within the size ratio."""
    pairs = ((a.area, b.area), (a.width, b.width), (a.height, b.height))
    for x, y in pairs:
        if min(x, y) <= 0 or max(x, y) / min(x, y) > MAX_SIZE_RATIO:
            return False
    return True


def _merge(group: list[ExtractedImage]) -> ExtractedImage:
    if len(group) == 1:
        return group[0]
    base = group[0]
    return replace(
        base,
        id=COMBINED_ID_SEPARATOR.join(img.id for img in group),
        original_id=base.id,
        combined_images=len(group),
        components=[(img.id, img.page_number) for img in group],
    )


def group_similar_images(
    images: Sequence[ExtractedImage],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[ExtractedImage]:
    """Merge visually identical images into representative entries.

    Args:
        images: Every extracted image, page scans included
        threshold: Minimum similarity for two images to merge

    Returns:
        Forced scans (unchanged) followed by one entry per group of regular
        images. A merged entry's id joins its members' ids with ``_AND_``.
    """
    if len(images) <= 1:
        return list(images)

    forced = [img for img in images if img.is_forced_scan]
    regular = [img for img in images if not img.is_forced_scan]

    groups: list[list[ExtractedImage]] = []
    processed: set[str] = set()

    for i, first in enumerate(regular):
        if first.id in processed:
            continue
        group = [first]
        processed.add(first.id)

        for second in regular[i + 1 :]:
            if second.id in processed:
                continue
            if first.page_number != second.page_number:
                continue
            if not sizes_comparable(first, second):
                continue
            try:
                similarity = compare_images(first.raster_data, second.raster_data)
            except (OSError, UnidentifiedImageError, ValueError) as e:
                logger.warning(f"[Dedup] Error comparing {first.id} and {second.id}: {e}")
                continue
            if similarity >= threshold:
                group.append(second)
                processed.add(second.id)

        groups.append(group)

    result = [*forced, *(_merge(group) for group in groups)]
    logger.debug(
        f"[Dedup] {len(regular)} regular images grouped into {len(groups)} groups, "
        f"{len(forced)} forced scans kept separate, {len(result)} total"
    )
    return result


def build_id_mapping(images: Sequence[ExtractedImage]) -> dict[str, tuple[str, int]]:
    """Map every original image id to (representative id, index in ``images``)."""
    mapping: dict[str, tuple[str, int]] = {}
    for index, image in enumerate(images):
        if image.original_id is not None and image.components:
            for component_id, _page in image.components:
                mapping[component_id] = (image.id, index)
        else:
            mapping[image.id] = (image.id, index)
    return mapping
