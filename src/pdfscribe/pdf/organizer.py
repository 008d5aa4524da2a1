"""Content organization: merge positioned text and image markers into lines.

Produces two views of a page:

- ``raw_text``: text only, in vertical order
- ``formatted_text``: lines of text with image placeholders interleaved at
  their reading position

Input text items use PDF coordinates (y up from the bottom edge). Image items
and the page-scan marker are already in top-down coordinates.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from functools import cmp_to_key

from pdfscribe.constants import (
    IMAGE_ANCHOR_Y_PROXIMITY,
    IMAGE_LOOKAHEAD_LINES,
    IMAGE_TEXT_X_PROXIMITY,
    LINE_Y_TOLERANCE,
)
from pdfscribe.pdf.backend import TextItem
from pdfscribe.types import ItemType, PageContent
from pdfscribe.utils.text import escape_placeholders


@dataclass
class ContentItem:
    type: ItemType
    text: str = ""
    id: str | None = None
    x: float = 0.0
    y: float = 0.0
    placeholder: str = ""

    @property
    def is_image(self) -> bool:
        return self.type == "image"


def image_item(image_id: str, placeholder: str, x: float = 0.0, y: float = 0.0) -> ContentItem:
    return ContentItem(type="image", id=image_id, placeholder=placeholder, x=x, y=y)


def _reading_order(a: ContentItem, b: ContentItem) -> float:
    # Items within the tolerance band count as the same line
    if abs(a.y - b.y) > LINE_Y_TOLERANCE:
        return a.y - b.y
    return a.x - b.x


def _round_to_band(y: float) -> float:
    # Half-up rounding onto the tolerance grid
    return math.floor(y / LINE_Y_TOLERANCE + 0.5) * LINE_Y_TOLERANCE


def _group_lines(items: list[ContentItem]) -> list[list[ContentItem]]:
    lines: list[list[ContentItem]] = []
    current: list[ContentItem] = []
    current_y: float | None = None

    for item in items:
        rounded_y = _round_to_band(item.y)
        if current_y is None:
            current_y = rounded_y
        elif abs(rounded_y - current_y) > LINE_Y_TOLERANCE:
            if current:
                lines.append(current)
            current = []
            current_y = rounded_y
        current.append(item)

    if current:
        lines.append(current)
    return lines


def _pull_up_nearby_images(lines: list[list[ContentItem]]) -> None:
    """Move images from the next lines into an image-bearing anchor line.

    Corrects multi-column layouts where an image's anchor lags its reading
    position. An image moves when no text in its own line is horizontally
    close to it, or when it sits vertically close to the anchor line.
    """
    for i, anchor in enumerate(lines):
        if not anchor or not any(item.is_image for item in anchor):
            continue
        for j in range(i + 1, min(i + 1 + IMAGE_LOOKAHEAD_LINES, len(lines))):
            line = lines[j]
            for image in [item for item in line if item.is_image]:
                text_nearby = any(
                    not item.is_image and abs(item.x - image.x) < IMAGE_TEXT_X_PROXIMITY
                    for item in line
                )
                if not text_nearby or abs(image.y - anchor[0].y) < IMAGE_ANCHOR_Y_PROXIMITY:
                    line.remove(image)
                    anchor.append(image)
                    anchor.sort(key=lambda item: item.x)


def _build_raw_text(text_items: list[ContentItem]) -> str:
    ordered = sorted(text_items, key=lambda item: item.y)
    parts: list[str] = []
    for index, item in enumerate(ordered):
        parts.append(item.text)
        if index < len(ordered) - 1:
            same_line = abs(item.y - ordered[index + 1].y) <= LINE_Y_TOLERANCE
            parts.append(" " if same_line else "\n")
    return "".join(parts).strip()


def _build_formatted_text(lines: list[list[ContentItem]]) -> str:
    rendered = []
    for line in lines:
        pieces = []
        for item in line:
            if item.is_image:
                if item.placeholder:
                    pieces.append(f" {item.placeholder} ")
            else:
                pieces.append(f"{escape_placeholders(item.text)} ")
        rendered.append("".join(pieces).strip())
    return "\n".join(rendered).strip()


def organize_content(
    text_items: Sequence[TextItem],
    page_height: float,
    image_items: Sequence[ContentItem] = (),
    page_scan: ContentItem | None = None,
) -> PageContent:
    """Organize a page's text and images into raw and formatted text.

    Args:
        text_items: Text runs with PDF (bottom-up) baselines
        page_height: Page height used to flip text to top-down coordinates
        image_items: Embedded image markers in top-down coordinates
        page_scan: Full-page scan marker, placed at the top of the page

    Returns:
        PageContent with raw and formatted text
    """
    if not text_items and not image_items:
        if page_scan is None:
            return PageContent()
        return PageContent(raw_text="", formatted_text=page_scan.placeholder)

    texts = [
        ContentItem(type="text", text=item.text, x=item.x, y=page_height - item.y)
        for item in text_items
    ]
    # Copies, since the line pass moves items between lines
    images = [
        image_item(item.id or "", item.placeholder, item.x, item.y) for item in image_items
    ]

    all_items: list[ContentItem] = [*texts, *images]
    if page_scan is not None:
        all_items.insert(0, image_item(page_scan.id or "", page_scan.placeholder))

    all_items.sort(key=cmp_to_key(_reading_order))

    lines = _group_lines(all_items)
    _pull_up_nearby_images(lines)
    for line in lines:
        line.sort(key=lambda item: item.x)
    lines = [line for line in lines if line]

    return PageContent(
        raw_text=_build_raw_text(texts),
        formatted_text=_build_formatted_text(lines),
    )
