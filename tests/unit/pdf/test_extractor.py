"""Tests for PDF extraction over an in-memory backend."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pdfscribe.config import PipelineConfig
from pdfscribe.exceptions import DocumentLoadError
from pdfscribe.pdf.backend import OpKind, PdfOperation
from pdfscribe.pdf.extractor import (
    PdfExtractor,
    enforce_placeholder_integrity,
    find_transform,
    generate_text_representation,
)
from pdfscribe.types import (
    Document,
    ImageReference,
    Page,
    PageContent,
    SkippedObject,
)


def _extractor(backend, config: PipelineConfig | None = None, **kwargs) -> PdfExtractor:
    return PdfExtractor(config, opener=lambda source: backend, **kwargs)


class TestFindTransform:
    """Tests for find_transform function."""

    def test_most_recent(self):
        """Test the closest preceding transform wins."""
        ops = [
            PdfOperation(OpKind.TRANSFORM, (1, 0, 0, 1, 5, 5)),
            PdfOperation(OpKind.TRANSFORM, (1, 0, 0, 1, 7, 8)),
            PdfOperation(OpKind.IMAGE, ("Im1",)),
        ]
        assert find_transform(ops, 2) == (1, 0, 0, 1, 7, 8)

    def test_outside_window(self):
        """Test transforms further back than the search window are ignored."""
        ops = [PdfOperation(OpKind.TRANSFORM, (1, 0, 0, 1, 5, 5))]
        ops += [PdfOperation(OpKind.PATH) for _ in range(20)]
        ops.append(PdfOperation(OpKind.IMAGE, ("Im1",)))
        assert find_transform(ops, len(ops) - 1) is None


class TestEnforcePlaceholderIntegrity:
    """Tests for enforce_placeholder_integrity function."""

    def test_drops_missing_and_duplicates(self):
        """Test absent references are dropped and repeats removed."""
        page = Page(
            page_number=1,
            content=PageContent("x", "[IMAGE_1] x [IMAGE_1]"),
            image_references=[
                ImageReference("img_1_1", "[IMAGE_1]"),
                ImageReference("img_1_2", "[IMAGE_2]"),
            ],
        )

        enforce_placeholder_integrity(page)

        assert page.content.formatted_text == "[IMAGE_1] x "
        assert [ref.id for ref in page.image_references] == ["img_1_1"]


class TestPdfExtractor:
    """Tests for PdfExtractor.extract."""

    @pytest.mark.asyncio
    async def test_text_only_page(self, page_factory, backend_factory):
        """Test a text page produces text and no images."""
        backend = backend_factory([page_factory(lines=12)])

        result = await _extractor(backend).extract(b"%PDF")

        assert result.success
        document = result.document
        assert document.total_pages == 1
        assert document.images == []
        assert document.pages[0].content.raw_text.startswith("line 0\nline 1")
        assert document.pages[0].image_references == []
        assert backend.closed

    @pytest.mark.asyncio
    async def test_forced_scan(self, page_factory, backend_factory):
        """Test scan-all-pages adds a scan placeholder above the text."""
        page = page_factory(lines=0)
        page.add_text("Hello", 10, 290)
        config = PipelineConfig(scan_all_pages=True)

        result = await _extractor(backend_factory([page]), config).extract(b"%PDF")

        document = result.document
        assert document.pages[0].content.formatted_text == "[PAGE_IMAGE_1]\nHello"
        assert document.pages[0].content.raw_text == "Hello"
        assert len(document.images) == 1
        scan = document.images[0]
        assert scan.id == "page_1"
        assert scan.is_forced_scan and scan.is_full_page
        ref = document.pages[0].image_references[0]
        assert (ref.id, ref.placeholder, ref.is_full_page) == ("page_1", "[PAGE_IMAGE_1]", True)

    @pytest.mark.asyncio
    async def test_forced_scan_on_empty_page(self, page_factory, backend_factory):
        """Test a textless page is represented by its scan alone."""
        config = PipelineConfig(scan_all_pages=True)
        backend = backend_factory([page_factory(lines=0)])

        result = await _extractor(backend, config).extract(b"%PDF")

        assert result.document.pages[0].content.formatted_text == "[PAGE_IMAGE_1]"

    @pytest.mark.asyncio
    async def test_embedded_image(self, page_factory, bitmap_factory, backend_factory):
        """Test an embedded image gets an id, a position and a placeholder."""
        page = page_factory(lines=12)
        page.add_image("Im1", bitmap_factory(), x=50, y=150)

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        document = result.document
        assert [img.id for img in document.images] == ["img_1_1"]
        image = document.images[0]
        assert (image.position.x, image.position.y) == (50.0, 150.0)
        assert not image.is_full_page
        text = document.pages[0].content.formatted_text
        assert text.count("[IMAGE_1]") == 1
        assert document.pages[0].image_references == [
            ImageReference("img_1_1", "[IMAGE_1]", is_full_page=False, index=0)
        ]

    @pytest.mark.asyncio
    async def test_identical_images_merged(
        self, page_factory, bitmap_factory, backend_factory
    ):
        """Test duplicate images on a page collapse into one reference."""
        page = page_factory(lines=12)
        page.add_image("Im1", bitmap_factory(), x=50, y=150)
        page.add_image("Im2", bitmap_factory(), x=50, y=100)

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        document = result.document
        assert document.original_image_count == 2
        assert [img.id for img in document.images] == ["img_1_1_AND_img_1_2"]
        assert document.images[0].combined_images == 2
        refs = document.pages[0].image_references
        assert [ref.id for ref in refs] == ["img_1_1_AND_img_1_2"]
        text = document.pages[0].content.formatted_text
        assert "[IMAGE_1]" in text
        assert "[IMAGE_2]" not in text

    @pytest.mark.asyncio
    async def test_counter_spans_pages(self, page_factory, bitmap_factory, backend_factory):
        """Test image numbering continues across pages and pages never merge."""
        first = page_factory(page_number=1)
        first.add_image("Im1", bitmap_factory())
        second = page_factory(page_number=2)
        second.add_image("Im1", bitmap_factory())

        result = await _extractor(backend_factory([first, second])).extract(b"%PDF")

        document = result.document
        assert [img.id for img in document.images] == ["img_1_1", "img_2_2"]
        assert "[IMAGE_2]" in document.pages[1].content.formatted_text

    @pytest.mark.asyncio
    async def test_natural_scan(self, page_factory, bitmap_factory, backend_factory):
        """Test a sparse page with an image also gets a page scan."""
        page = page_factory(lines=1, fill="black")
        page.add_image("Im1", bitmap_factory())

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        extracted_page = result.document.pages[0]
        assert extracted_page.is_scanned
        assert {ref.id for ref in extracted_page.image_references} == {"img_1_1", "page_1"}
        scan = next(img for img in result.document.images if img.id == "page_1")
        assert scan.is_scanned and not scan.is_forced_scan
        assert (scan.width, scan.height) == (400, 600)
        text = extracted_page.content.formatted_text
        assert text.count("[PAGE_IMAGE_1]") == 1
        assert text.count("[IMAGE_1]") == 1

    @pytest.mark.asyncio
    async def test_blank_natural_scan_dropped(
        self, page_factory, bitmap_factory, backend_factory
    ):
        """Test a blank render is not kept as a page scan."""
        page = page_factory(lines=1)
        page.add_image("Im1", bitmap_factory())

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        assert [img.id for img in result.document.images] == ["img_1_1"]
        assert "[PAGE_IMAGE_1]" not in result.document.pages[0].content.formatted_text

    @pytest.mark.asyncio
    async def test_textless_scan_keeps_embedded_images(
        self, page_factory, bitmap_factory, backend_factory
    ):
        """Test a scanned page without text still places its embedded images."""
        page = page_factory(lines=0, fill="black")
        page.add_image("Im1", bitmap_factory(), x=20, y=250)
        page.add_image("Im2", bitmap_factory(40, 60, color=(255, 0, 0)), x=20, y=100)

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        extracted_page = result.document.pages[0]
        assert sorted(img.id for img in result.document.images) == [
            "img_1_1",
            "img_1_2",
            "page_1",
        ]
        assert {ref.id for ref in extracted_page.image_references} == {
            "img_1_1",
            "img_1_2",
            "page_1",
        }
        text = extracted_page.content.formatted_text
        for placeholder in ("[PAGE_IMAGE_1]", "[IMAGE_1]", "[IMAGE_2]"):
            assert text.count(placeholder) == 1

    @pytest.mark.asyncio
    async def test_placeholder_in_source_text(
        self, page_factory, bitmap_factory, backend_factory
    ):
        """Test page text that looks like a placeholder does not take its slot."""
        page = page_factory(lines=12)
        page.add_text("See [IMAGE_1] below", 10, 20)
        page.add_image("Im1", bitmap_factory(), x=50, y=150)

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        extracted_page = result.document.pages[0]
        assert [ref.id for ref in extracted_page.image_references] == ["img_1_1"]
        text = extracted_page.content.formatted_text
        assert text.count("[IMAGE_1]") == 1
        assert "See [\u2060IMAGE_1] below" in text
        assert "See [IMAGE_1] below" in extracted_page.content.raw_text

    @pytest.mark.asyncio
    async def test_unresolved_object_skipped(self, page_factory, backend_factory, no_sleep):
        """Test an unresolvable object is retried, then recorded as skipped."""
        page = page_factory(lines=12)
        page.add_image("Im9", None)

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        assert result.success
        assert result.document.images == []
        assert result.document.skipped_objects == [
            SkippedObject(1, "Im9", "Object not resolved")
        ]
        assert no_sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_blank_image_skipped(self, page_factory, bitmap_factory, backend_factory):
        """Test a blank embedded image is recorded as skipped."""
        page = page_factory(lines=12)
        page.add_image("Im1", bitmap_factory(color=(255, 255, 255)))

        result = await _extractor(backend_factory([page])).extract(b"%PDF")

        assert result.document.skipped_objects == [
            SkippedObject(1, "Im1", "Extraction failed or blank image")
        ]
        assert "[IMAGE_1]" not in result.document.pages[0].content.formatted_text

    @pytest.mark.asyncio
    async def test_progress_per_page(self, page_factory, backend_factory):
        """Test one extract event per page, then the dedup stage."""
        events = []
        backend = backend_factory([page_factory(page_number=1), page_factory(page_number=2)])

        await _extractor(backend, on_progress=events.append).extract(b"%PDF")

        assert [(e.stage, e.current, e.total) for e in events] == [
            ("extract", 1, 2),
            ("extract", 2, 2),
            ("dedup", 0, 1),
            ("dedup", 1, 1),
        ]

    @pytest.mark.asyncio
    async def test_load_failure(self):
        """Test a document load error yields success=False."""

        def opener(source):
            raise DocumentLoadError("Error loading PDF: not a PDF")

        result = await PdfExtractor(opener=opener).extract(b"garbage")

        assert not result.success
        assert result.error == "Error loading PDF: not a PDF"
        assert result.document.pages == []

    @pytest.mark.asyncio
    async def test_processing_failure_closes_backend(self):
        """Test an unexpected error fails the extraction and closes the document."""
        backend = MagicMock()
        backend.page_count = 1
        backend.page.side_effect = RuntimeError("boom")

        result = await _extractor(backend).extract(b"%PDF")

        assert not result.success
        assert result.error == "boom"
        backend.close.assert_called_once()


class TestGenerateTextRepresentation:
    """Tests for generate_text_representation function."""

    def test_no_pages(self):
        """Test the message for an empty document."""
        assert (
            generate_text_representation(Document())
            == "Failed to process PDF or PDF contains no pages."
        )

    def test_page_blocks(self):
        """Test each page renders as a PAGE block."""
        document = Document(
            total_pages=2,
            pages=[
                Page(1, content=PageContent("Hello", "Hello")),
                Page(2, content=PageContent("", "[PAGE_IMAGE_2]")),
            ],
        )
        assert generate_text_representation(document) == (
            "--- PAGE 1 ---\n\nHello\n\n--- PAGE 2 ---\n\n[PAGE_IMAGE_2]\n\n"
        )
