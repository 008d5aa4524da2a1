"""Text replacement: substitute analysis text into page placeholders.

Pure functions over the extracted document and the analysis results. The
document is never mutated; every page becomes a new ``ReplacedPage``.

Templates come from ``ReplacementConfig``. Each one may contain the
``{pageNumber}`` token (replaced everywhere) and literal ``\\n`` escape
sequences (expanded to newlines), so templates typed on a command line or in
a JSON file behave the same as ones written in code.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from pdfscribe.config import ReplacementConfig
from pdfscribe.constants import PAGE_NUMBER_TOKEN
from pdfscribe.types import AnalysisResult, Document, ImageReference, ReplacedPage
from pdfscribe.utils.text import unescape_placeholders


@dataclass
class ReplacementResult:
    """Replaced pages in document order."""

    success: bool
    pages: list[ReplacedPage] = field(default_factory=list)
    error: str | None = None
    replaced_count: int = 0
    removed_count: int = 0

    @property
    def total_pages(self) -> int:
        return len(self.pages)


def expand_escapes(text: str) -> str:
    """Turn literal ``\\n`` sequences into newlines."""
    return text.replace("\\n", "\n")


def render_template(template: str, page_number: int) -> str:
    """Expand escapes and substitute every ``{pageNumber}`` token."""
    return expand_escapes(template).replace(PAGE_NUMBER_TOKEN, str(page_number))


def format_replacement(
    ref: ImageReference, text: str, page_number: int, config: ReplacementConfig
) -> str:
    """Wrap analysis text in the template pair for its reference kind."""
    if ref.is_full_page:
        prefix, suffix = config.page_scan_prefix, config.page_scan_suffix
    else:
        prefix, suffix = config.image_prefix, config.image_suffix
    return (
        render_template(prefix, page_number)
        + text
        + render_template(suffix, page_number)
    )


def create_text_replacement(
    document: Document | None,
    results: Sequence[AnalysisResult] | None,
    config: ReplacementConfig | None = None,
) -> ReplacementResult:
    """Replace every page's placeholders with analysis text.

    A placeholder whose result is missing, failed, refused or empty is
    removed. Only the first occurrence of each placeholder is touched.

    Returns:
        ReplacementResult, with ``success=False`` when inputs are missing
    """
    if document is None or results is None:
        return ReplacementResult(
            success=False, error="Missing required data for text replacement"
        )
    config = config or ReplacementConfig()

    by_id = {result.image_id: result for result in results}
    pages: list[ReplacedPage] = []
    replaced = removed = 0

    for page in document.pages:
        content = page.content.formatted_text
        for ref in page.image_references:
            if not ref.placeholder:
                continue
            result = by_id.get(ref.id)
            if result is None or not result.usable:
                content = content.replace(ref.placeholder, "", 1)
                removed += 1
                continue
            content = content.replace(
                ref.placeholder,
                format_replacement(ref, result.text, page.page_number, config),
                1,
            )
            replaced += 1
        pages.append(
            ReplacedPage(
                page_number=page.page_number, content=unescape_placeholders(content)
            )
        )

    logger.debug(
        f"[Replace] {len(pages)} pages, {replaced} placeholders replaced, "
        f"{removed} removed"
    )
    return ReplacementResult(
        success=True, pages=pages, replaced_count=replaced, removed_count=removed
    )


def generate_formatted_text(
    replacement: ReplacementResult, config: ReplacementConfig | None = None
) -> str:
    """Join replaced pages into one text, with optional page headings."""
    if not replacement.success or not replacement.pages:
        return "No content available"
    config = config or ReplacementConfig()

    parts = []
    for page in replacement.pages:
        heading = ""
        if config.include_page_headings:
            heading = render_template(config.page_heading_format, page.page_number)
        parts.append(heading + page.content)
    return config.page_separator.join(parts)


def normalize_output_text(text: str) -> str:
    """Trim leading and trailing whitespace for file output."""
    return text.strip()
