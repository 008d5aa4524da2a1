"""Tests for document model types."""

from __future__ import annotations

import base64

from pdfscribe.types import (
    AnalysisResult,
    BatchStatus,
    Document,
    ImageReference,
    Page,
    PageContent,
    ProgressEvent,
    SkippedObject,
)


class TestExtractedImage:
    """Tests for ExtractedImage helpers."""

    def test_data_uri(self, image_factory):
        """Test the data URI wraps the PNG bytes in base64."""
        image = image_factory("img_1_1")
        prefix = "data:image/png;base64,"
        assert image.data_uri.startswith(prefix)
        assert base64.b64decode(image.data_uri[len(prefix):]) == image.raster_data

    def test_to_dict_plain(self, image_factory):
        """Test unmerged images omit merge fields and data by default."""
        data = image_factory("img_1_1", page_number=2).to_dict()
        assert data["id"] == "img_1_1"
        assert data["pageNumber"] == 2
        assert "originalId" not in data
        assert "dataURL" not in data

    def test_to_dict_merged(self, image_factory):
        """Test merged images expose their components."""
        image = image_factory(
            "a_AND_b",
            original_id="a",
            combined_images=2,
            components=[("a", 1), ("b", 1)],
        )
        data = image.to_dict(include_data=True)
        assert data["combinedImages"] == 2
        assert data["components"] == [
            {"id": "a", "pageNumber": 1},
            {"id": "b", "pageNumber": 1},
        ]
        assert data["dataURL"].startswith("data:image/png")


class TestDocument:
    """Tests for Document serialization."""

    def test_to_dict(self, image_factory):
        """Test the JSON shape uses camelCase keys."""
        document = Document(
            total_pages=1,
            pages=[
                Page(
                    page_number=1,
                    content=PageContent("Hello", "Hello [IMAGE_1]"),
                    image_references=[ImageReference("img_1_1", "[IMAGE_1]", index=0)],
                )
            ],
            images=[image_factory("img_1_1")],
            skipped_objects=[SkippedObject(1, "xref9", "Object not resolved")],
            original_image_count=2,
        )

        data = document.to_dict()

        assert data["totalPages"] == 1
        assert data["originalImageCount"] == 2
        assert data["imageCount"] == 1
        assert data["pages"][0]["content"]["formattedText"] == "Hello [IMAGE_1]"
        assert data["pages"][0]["imageReferences"][0]["placeholder"] == "[IMAGE_1]"
        assert data["skippedObjects"] == [
            {"page": 1, "objectName": "xref9", "reason": "Object not resolved"}
        ]


class TestAnalysisResult:
    """Tests for AnalysisResult."""

    def test_usable(self):
        """Test only successful, unrefused, non-empty results are usable."""
        assert AnalysisResult("a", True, text="x").usable
        assert not AnalysisResult("a", True, text="").usable
        assert not AnalysisResult("a", True, text="x", refusal_detected=True).usable
        assert not AnalysisResult("a", False, text="x").usable

    def test_to_dict_error_only_when_set(self):
        """Test the error key appears only for failures."""
        assert "error" not in AnalysisResult("a", True, text="x").to_dict()
        assert AnalysisResult("a", False, error="boom").to_dict()["error"] == "boom"


class TestBatchStatus:
    """Tests for BatchStatus counters."""

    def test_progress(self):
        """Test percentage and completion."""
        status = BatchStatus(processed_count=1, total_images=4, error_count=0)
        assert status.progress_percentage == 25.0
        assert not status.is_complete
        assert BatchStatus(4, 4, 1).is_complete

    def test_empty_batch(self):
        """Test an empty batch reports 0% and complete."""
        status = BatchStatus(0, 0, 0)
        assert status.progress_percentage == 0.0
        assert status.is_complete


class TestProgressEvent:
    """Tests for ProgressEvent."""

    def test_fraction(self):
        """Test the completed fraction."""
        assert ProgressEvent("extract", 1, 4).fraction == 0.25
        assert ProgressEvent("replace", 0, 0).fraction == 1.0
