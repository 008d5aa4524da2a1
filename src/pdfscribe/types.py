"""Type definitions for the pdfscribe pipeline.

The document model is built by the extractor, reduced by the deduplicator,
read by the batch analyzer and the replacement engine. ``to_dict`` methods
produce the JSON shape consumed by external tools (camelCase keys).
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Literal

ItemType = Literal["text", "image"]
ProgressStage = Literal["extract", "dedup", "analyze", "replace"]


@dataclass
class Position:
    """Top-down page coordinates of an item anchor."""

    x: float = 0.0
    y: float = 0.0


@dataclass
class PageContent:
    """Text of a page with and without image placeholders."""

    raw_text: str = ""
    formatted_text: str = ""


@dataclass
class ImageReference:
    """Page-local pointer into ``Document.images``."""

    id: str
    placeholder: str
    is_full_page: bool = False
    index: int = -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "placeholder": self.placeholder,
            "isFullPage": self.is_full_page,
            "index": self.index,
        }


@dataclass
class ExtractedImage:
    """A rendered image or page scan ready for analysis.

    Attributes:
        raster_data: PNG-encoded pixels
        original_id: First component id when several images were merged
        combined_images: Number of images merged into this entry
        components: (id, page_number) of every merged image
    """

    id: str
    page_number: int
    width: int
    height: int
    raster_data: bytes
    is_full_page: bool = False
    is_scanned: bool = False
    is_forced_scan: bool = False
    position: Position = field(default_factory=Position)
    original_id: str | None = None
    combined_images: int = 1
    components: list[tuple[str, int]] = field(default_factory=list)

    @property
    def data_uri(self) -> str:
        """PNG data URI suitable for vision model requests."""
        encoded = base64.b64encode(self.raster_data).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_dict(self, include_data: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "pageNumber": self.page_number,
            "width": self.width,
            "height": self.height,
            "isFullPage": self.is_full_page,
            "isScanned": self.is_scanned,
            "isForcedScan": self.is_forced_scan,
            "position": {"x": self.position.x, "y": self.position.y},
        }
        if self.original_id is not None:
            data["originalId"] = self.original_id
            data["combinedImages"] = self.combined_images
            data["components"] = [
                {"id": cid, "pageNumber": page} for cid, page in self.components
            ]
        if include_data:
            data["dataURL"] = self.data_uri
        return data


@dataclass
class SkippedObject:
    """An image object that could not be extracted."""

    page: int
    object_name: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"page": self.page, "objectName": self.object_name, "reason": self.reason}


@dataclass
class Page:
    """A document page after extraction."""

    page_number: int
    is_scanned: bool = False
    content: PageContent = field(default_factory=PageContent)
    image_references: list[ImageReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageNumber": self.page_number,
            "isScanned": self.is_scanned,
            "content": {
                "rawText": self.content.raw_text,
                "formattedText": self.content.formatted_text,
            },
            "imageReferences": [ref.to_dict() for ref in self.image_references],
        }


@dataclass
class Document:
    """Extracted document, immutable once the pipeline completes."""

    total_pages: int = 0
    pages: list[Page] = field(default_factory=list)
    images: list[ExtractedImage] = field(default_factory=list)
    skipped_objects: list[SkippedObject] = field(default_factory=list)
    original_image_count: int = 0
    processing_time_ms: float = 0.0

    def to_dict(self, include_image_data: bool = False) -> dict[str, Any]:
        return {
            "totalPages": self.total_pages,
            "pages": [page.to_dict() for page in self.pages],
            "images": [img.to_dict(include_image_data) for img in self.images],
            "skippedObjects": [obj.to_dict() for obj in self.skipped_objects],
            "originalImageCount": self.original_image_count,
            "imageCount": len(self.images),
            "processingTimeMs": round(self.processing_time_ms, 2),
        }


@dataclass
class ExtractionResult:
    """Outcome of PDF extraction.

    ``success`` is False only for document-level failures, in which case
    ``document`` is empty and ``error`` holds the message.
    """

    success: bool
    document: Document = field(default_factory=Document)
    error: str | None = None


@dataclass(frozen=True)
class AnalysisResult:
    """Terminal outcome of analyzing one unique image."""

    image_id: str
    success: bool
    text: str = ""
    refusal_detected: bool = False
    refusal_retries: int = 0
    retries: int = 0
    page_number: int = 0
    is_forced_scan: bool = False
    error: str | None = None

    @property
    def usable(self) -> bool:
        """Whether the result carries text that belongs in the output."""
        return self.success and not self.refusal_detected and bool(self.text)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "imageId": self.image_id,
            "success": self.success,
            "text": self.text,
            "refusalDetected": self.refusal_detected,
            "refusalRetries": self.refusal_retries,
            "retries": self.retries,
            "pageNumber": self.page_number,
            "isForcedScan": self.is_forced_scan,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchStatus:
    """Aggregate progress counters for a batch analysis run."""

    processed_count: int
    total_images: int
    error_count: int

    @property
    def progress_percentage(self) -> float:
        if self.total_images <= 0:
            return 0.0
        return self.processed_count / self.total_images * 100

    @property
    def is_complete(self) -> bool:
        return self.processed_count >= self.total_images


@dataclass
class ReplacedPage:
    """Final per-page text after placeholder substitution."""

    page_number: int
    content: str


@dataclass
class ProgressEvent:
    """Structured progress notification emitted by pipeline stages."""

    stage: ProgressStage
    current: int
    total: int
    message: str = ""

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total else 1.0
