"""Page classification: decide whether a page is a scan.

The rules are OR-ed heuristics, not a score. A false positive only costs an
extra page render and model call, while a false negative loses the page's
content, so every borderline case resolves toward "scanned".
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from pdfscribe.constants import (
    SCANNED_EMPTY_PAGE_MIN_OPS,
    SCANNED_FEW_TEXT_ELEMENTS,
    SCANNED_HEAVY_PAGE_MIN_OPS,
    SCANNED_NON_TEXT_FRACTION,
    SCANNED_SINGLE_IMAGE_MAX_TEXT_OPS,
    SCANNED_SINGLE_IMAGE_MIN_OPS,
)
from pdfscribe.pdf.backend import OpKind, PdfOperation, TextItem


@dataclass
class PageAnalysis:
    is_scanned: bool = False
    has_images: bool = False
    image_count: int = 0
    text_element_count: int = 0
    is_empty: bool = True
    image_op_count: int = 0
    graphics_op_count: int = 0
    text_op_count: int = 0
    total_ops: int = 0
    image_names: list[str] = field(default_factory=list)

    @property
    def non_text_fraction(self) -> float:
        return (self.image_op_count + self.graphics_op_count) / max(1, self.total_ops)


def classify_page(
    operations: Sequence[PdfOperation], text_items: Sequence[TextItem]
) -> PageAnalysis:
    """Classify a page from its operation list and text items.

    Args:
        operations: Drawing operations in content-stream order
        text_items: Text runs extracted from the page

    Returns:
        PageAnalysis; never raises
    """
    analysis = PageAnalysis(
        text_element_count=len(text_items),
        is_empty=len(text_items) == 0,
        total_ops=len(operations),
    )

    names: dict[str, None] = {}
    for op in operations:
        if op.kind is OpKind.IMAGE:
            analysis.image_op_count += 1
            if op.args and op.args[0]:
                names[str(op.args[0])] = None
        elif op.kind is OpKind.PATH:
            analysis.graphics_op_count += 1
        elif op.kind is OpKind.TEXT:
            analysis.text_op_count += 1

    analysis.image_names = list(names)
    analysis.has_images = analysis.image_op_count > 0
    analysis.image_count = len(names) if names else analysis.image_op_count

    total = analysis.total_ops
    analysis.is_scanned = (
        # Structurally empty but busy
        (analysis.is_empty and total > SCANNED_EMPTY_PAGE_MIN_OPS)
        # Very few text elements with images or many operations
        or (
            analysis.text_element_count < SCANNED_FEW_TEXT_ELEMENTS
            and (analysis.has_images or total > SCANNED_HEAVY_PAGE_MIN_OPS)
        )
        or analysis.non_text_fraction > SCANNED_NON_TEXT_FRACTION
        # Single large image with minimal text
        or (
            analysis.image_op_count == 1
            and analysis.text_op_count < SCANNED_SINGLE_IMAGE_MAX_TEXT_OPS
            and total > SCANNED_SINGLE_IMAGE_MIN_OPS
        )
    )
    return analysis
