"""PDF content extraction.

Walks the document page by page, renders embedded images and page scans,
deduplicates the images, then builds each page's placeholder-annotated text.
Pages are processed strictly in order since they share one document handle.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from pdfscribe.config import PipelineConfig
from pdfscribe.constants import (
    IMAGE_ID_FORMAT,
    IMAGE_PLACEHOLDER_FORMAT,
    NATURAL_SCAN_MAX_TEXT_ELEMENTS,
    OBJECT_RESOLVE_BASE_DELAY,
    OBJECT_RESOLVE_MAX_RETRIES,
    PAGE_IMAGE_ID_FORMAT,
    PAGE_PLACEHOLDER_FORMAT,
    TRANSFORM_SEARCH_WINDOW,
)
from pdfscribe.dedup import build_id_mapping, group_similar_images
from pdfscribe.exceptions import DocumentLoadError, ObjectNotResolvedError
from pdfscribe.pdf.backend import (
    ImageObject,
    OpKind,
    PdfBackend,
    PdfOperation,
    PdfPage,
    TextItem,
    open_document,
)
from pdfscribe.pdf.classifier import PageAnalysis, classify_page
from pdfscribe.pdf.organizer import ContentItem, image_item, organize_content
from pdfscribe.pdf.renderer import ImageRenderer
from pdfscribe.types import (
    Document,
    ExtractedImage,
    ExtractionResult,
    ImageReference,
    Page,
    Position,
    ProgressEvent,
    ProgressStage,
    SkippedObject,
)
from pdfscribe.utils.executor import run_in_converter_thread
from pdfscribe.utils.text import format_error_message

REASON_NOT_RESOLVED = "Object not resolved"
REASON_EXTRACTION_FAILED = "Extraction failed or blank image"

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class _PendingReference:
    """An image placed on a page, before deduplication remaps its id."""

    original_id: str
    placeholder: str
    is_full_page: bool = False


@dataclass
class _PageState:
    page: Page
    height: float
    text_items: list[TextItem]
    forced_scan: bool = False
    references: list[_PendingReference] = field(default_factory=list)


def find_transform(
    operations: list[PdfOperation], index: int
) -> tuple[float, ...] | None:
    """Most recent transform before ``index``, searching back a bounded window."""
    stop = max(-1, index - TRANSFORM_SEARCH_WINDOW - 1)
    for j in range(index - 1, stop, -1):
        if operations[j].kind is OpKind.TRANSFORM:
            return tuple(operations[j].args)
    return None


def needs_natural_scan(analysis: PageAnalysis) -> bool:
    return analysis.is_scanned or (
        analysis.text_element_count < NATURAL_SCAN_MAX_TEXT_ELEMENTS
        and analysis.image_count > 0
    )


def enforce_placeholder_integrity(page: Page) -> None:
    """Make every referenced placeholder appear exactly once in the page text.

    References whose placeholder never made it into the text are dropped,
    and repeated occurrences beyond the first are removed.
    """
    text = page.content.formatted_text
    kept: list[ImageReference] = []
    for ref in page.image_references:
        count = text.count(ref.placeholder)
        if count == 0:
            logger.debug(
                f"[Extract] Page {page.page_number}: dropping reference "
                f"{ref.placeholder} absent from page text"
            )
            continue
        if count > 1:
            first = text.index(ref.placeholder) + len(ref.placeholder)
            text = text[:first] + text[first:].replace(ref.placeholder, "")
        kept.append(ref)
    page.content.formatted_text = text
    page.image_references = kept


class PdfExtractor:
    """Extract a Document from PDF bytes or a path.

    Args:
        config: Pipeline settings (``scan_all_pages``, similarity threshold)
        renderer: Image renderer; a default one is created when omitted
        on_progress: Receives a ProgressEvent per page and around deduplication
        opener: Backend factory, ``open_document`` by default
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        renderer: ImageRenderer | None = None,
        on_progress: ProgressCallback | None = None,
        opener: Callable[[Any], PdfBackend] = open_document,
    ) -> None:
        self.config = config or PipelineConfig()
        self.renderer = renderer or ImageRenderer()
        self.on_progress = on_progress
        self._opener = opener

    def _emit(
        self, current: int, total: int, message: str, stage: ProgressStage = "extract"
    ) -> None:
        if self.on_progress:
            self.on_progress(ProgressEvent(stage, current, total, message))

    async def extract(self, source: bytes | str | Path) -> ExtractionResult:
        """Extract text and images from a PDF.

        Only a document-level failure produces ``success=False``; problems
        with individual images are recorded in ``skipped_objects``.
        """
        start = time.perf_counter()
        logger.debug("[Extract] Loading PDF document")
        try:
            backend = await run_in_converter_thread(self._opener, source)
        except DocumentLoadError as e:
            logger.error(f"[Extract] {e}")
            return ExtractionResult(success=False, error=str(e))

        try:
            document = await self._extract_document(backend)
        except Exception as e:
            logger.error(f"[Extract] Error processing PDF: {format_error_message(e)}")
            return ExtractionResult(success=False, error=str(e) or "Unknown error")
        finally:
            await run_in_converter_thread(backend.close)

        document.processing_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Extracted {len(document.images)} unique images across "
            f"{document.total_pages} pages in {document.processing_time_ms:.0f}ms"
        )
        return ExtractionResult(success=True, document=document)

    async def _extract_document(self, backend: PdfBackend) -> Document:
        total = backend.page_count
        document = Document(total_pages=total)
        logger.debug(f"[Extract] PDF loaded, pages: {total}")

        all_images: list[ExtractedImage] = []
        states: list[_PageState] = []
        counter = 0

        for page_number in range(1, total + 1):
            self._emit(page_number, total, f"Processing page {page_number}/{total}")
            page = await run_in_converter_thread(backend.page, page_number)
            state, counter = await self._extract_page(
                page, page_number, counter, all_images, document.skipped_objects
            )
            states.append(state)
            document.pages.append(state.page)

        document.original_image_count = len(all_images)
        logger.debug(f"[Extract] {len(all_images)} images before deduplication")
        self._emit(0, 1, "Deduplicating images", stage="dedup")

        document.images = await run_in_converter_thread(
            group_similar_images, all_images, self.config.similarity_threshold
        )
        removed = document.original_image_count - len(document.images)
        if removed > 0:
            logger.debug(f"[Extract] Removed {removed} duplicate images")
        self._emit(1, 1, f"{len(document.images)} unique images", stage="dedup")

        id_mapping = build_id_mapping(document.images)
        for state in states:
            self._build_page_content(state, document.images, id_mapping)

        return document

    async def _extract_page(
        self,
        page: PdfPage,
        page_number: int,
        counter: int,
        all_images: list[ExtractedImage],
        skipped: list[SkippedObject],
    ) -> tuple[_PageState, int]:
        operations = await run_in_converter_thread(page.operations)
        text_items = await run_in_converter_thread(page.text_items)
        analysis = classify_page(operations, text_items)

        state = _PageState(
            page=Page(page_number=page_number, is_scanned=analysis.is_scanned),
            height=page.height,
            text_items=text_items,
        )
        logger.debug(
            f"[Extract] Page {page_number}: {analysis.image_count} images, "
            f"{analysis.text_element_count} text elements, "
            f"scanned={analysis.is_scanned}"
        )

        # Embedded images, once per image name on this page
        seen_names: set[str] = set()
        for index, op in enumerate(operations):
            if op.kind is not OpKind.IMAGE or not op.args or not op.args[0]:
                continue
            name = str(op.args[0])
            if name in seen_names:
                continue
            seen_names.add(name)
            counter += 1

            image = await self._extract_embedded(
                page, name, operations, index, counter, skipped
            )
            if image is not None:
                all_images.append(image)
                state.references.append(
                    _PendingReference(
                        original_id=image.id,
                        placeholder=IMAGE_PLACEHOLDER_FORMAT.format(index=counter),
                    )
                )

        # Full-page scan
        forced = self.config.scan_all_pages
        if forced or needs_natural_scan(analysis):
            scan_id = PAGE_IMAGE_ID_FORMAT.format(page=page_number)
            try:
                scan = await self.renderer.render_page(
                    page,
                    scan_id,
                    is_scanned=analysis.is_scanned,
                    is_forced_scan=forced,
                )
            except (RuntimeError, ValueError, OSError) as e:
                logger.warning(
                    f"[Extract] Error creating full page image for page "
                    f"{page_number}: {format_error_message(e)}"
                )
                scan = None
            if scan is not None:
                all_images.append(scan)
                state.forced_scan = forced
                state.references.append(
                    _PendingReference(
                        original_id=scan_id,
                        placeholder=PAGE_PLACEHOLDER_FORMAT.format(page=page_number),
                        is_full_page=True,
                    )
                )

        return state, counter

    async def _extract_embedded(
        self,
        page: PdfPage,
        name: str,
        operations: list[PdfOperation],
        index: int,
        counter: int,
        skipped: list[SkippedObject],
    ) -> ExtractedImage | None:
        page_number = page.page_number
        image_object = await self._resolve_object(page, name)
        if image_object is None:
            skipped.append(SkippedObject(page_number, name, REASON_NOT_RESOLVED))
            return None

        x = y = 0.0
        transform = find_transform(operations, index)
        if transform is not None and len(transform) >= 6:
            # PDF space is bottom-up; flip to top-down
            x = float(transform[4])
            y = page.height - float(transform[5])

        image_id = IMAGE_ID_FORMAT.format(page=page_number, index=counter)
        try:
            image = await self.renderer.render_embedded(
                image_object, page_number, image_id, Position(x, y)
            )
        except (RuntimeError, ValueError, OSError) as e:
            logger.debug(f"[Extract] Error rendering {name}: {format_error_message(e)}")
            image = None

        if image is None:
            skipped.append(SkippedObject(page_number, name, REASON_EXTRACTION_FAILED))
            return None

        logger.debug(
            f"[Extract] Found image {counter} on page {page_number} at "
            f"({round(x)}, {round(y)}) size {image.width}x{image.height}"
        )
        return image

    async def _resolve_object(self, page: PdfPage, name: str) -> ImageObject | None:
        """Resolve an image object, waiting a little longer after each miss."""
        for attempt in range(OBJECT_RESOLVE_MAX_RETRIES + 1):
            try:
                return await run_in_converter_thread(page.get_object, name)
            except ObjectNotResolvedError:
                if attempt < OBJECT_RESOLVE_MAX_RETRIES:
                    await asyncio.sleep(OBJECT_RESOLVE_BASE_DELAY * (attempt + 1))
                    continue
                logger.debug(
                    f"[Extract] Object not resolved after {attempt} retries: {name}"
                )
            except (RuntimeError, ValueError, KeyError) as e:
                logger.warning(f"[Extract] Could not retrieve object {name}: {e}")
                break
        return None

    def _build_page_content(
        self,
        state: _PageState,
        images: list[ExtractedImage],
        id_mapping: dict[str, tuple[str, int]],
    ) -> None:
        page = state.page
        added: set[str] = set()
        image_items: list[ContentItem] = []
        scan_marker: ContentItem | None = None

        for pending in state.references:
            mapped = id_mapping.get(pending.original_id)
            if mapped is None:
                continue
            new_id, index = mapped
            # A page never lists the same representative twice
            if new_id in added:
                continue
            added.add(new_id)

            page.image_references.append(
                ImageReference(
                    id=new_id,
                    placeholder=pending.placeholder,
                    is_full_page=pending.is_full_page,
                    index=index,
                )
            )
            if pending.is_full_page:
                scan_marker = image_item(new_id, pending.placeholder)
            else:
                position = images[index].position
                image_items.append(
                    image_item(new_id, pending.placeholder, position.x, position.y)
                )

        show_scan = page.is_scanned or state.forced_scan
        page.content = organize_content(
            state.text_items,
            state.height,
            image_items,
            scan_marker if show_scan else None,
        )
        # A page with only a scan and no text is represented by the scan alone
        if page.content.raw_text == "" and scan_marker is not None and not image_items:
            page.content.formatted_text = scan_marker.placeholder

        enforce_placeholder_integrity(page)


def generate_text_representation(document: Document) -> str:
    """Placeholder view of the document, one ``--- PAGE n ---`` block per page."""
    if not document.pages:
        return "Failed to process PDF or PDF contains no pages."
    return "".join(
        f"--- PAGE {page.page_number} ---\n\n{page.content.formatted_text}\n\n"
        for page in document.pages
    )
