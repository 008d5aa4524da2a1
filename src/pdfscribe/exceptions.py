"""Structured error classes for the pdfscribe pipeline.

Each error type marks which failure boundary it belongs to. Only
document-level errors stop the pipeline; everything else is recorded on
the object or image that failed and processing continues.

Error Hierarchy:
    PdfscribeError (base)
    ├── ConfigError (invalid configuration, fatal before the run starts)
    ├── DocumentLoadError (malformed or unreadable PDF, pipeline-fatal)
    ├── ObjectNotResolvedError (image object not available yet, retried)
    ├── ImageExtractionError (every extraction strategy failed, skipped)
    ├── AnalysisError (vision model call failed for one image)
    └── RefusalDetectionError (refusal classifier call failed)

Usage:
    try:
        result = await extractor.extract(data)
    except DocumentLoadError as e:
        print(f"Cannot open {e.source}: {e}")
"""

from __future__ import annotations


class PdfscribeError(Exception):
    """Base exception for all pdfscribe errors.

    Attributes:
        retryable: Whether the failed operation may be attempted again
    """

    __slots__ = ("retryable",)

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigError(PdfscribeError):
    """Raised when configuration cannot be loaded or validated."""

    __slots__ = ("key",)

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message, retryable=False)
        self.key = key


class DocumentLoadError(PdfscribeError):
    """Raised when the input PDF cannot be opened.

    This is the only pipeline-fatal error.

    Attributes:
        source: Path or label of the input document
    """

    __slots__ = ("source",)

    def __init__(self, message: str, *, source: str = "<bytes>") -> None:
        super().__init__(message, retryable=False)
        self.source = source


class ObjectNotResolvedError(PdfscribeError):
    """Raised by a PDF backend when an image object is not resolved yet.

    The extractor retries these with a short linear wait before giving up
    and recording the object as skipped.
    """

    __slots__ = ("object_name",)

    def __init__(self, object_name: str) -> None:
        super().__init__(
            f"Object {object_name} isn't resolved yet", retryable=True
        )
        self.object_name = object_name


class ImageExtractionError(PdfscribeError):
    """Raised when no extraction strategy could paint an image object."""

    __slots__ = ("object_name",)

    def __init__(self, message: str, *, object_name: str) -> None:
        super().__init__(message, retryable=False)
        self.object_name = object_name


class AnalysisError(PdfscribeError):
    """Raised when the vision model call for an image fails.

    Attributes:
        image_id: Identifier of the image being analyzed
    """

    __slots__ = ("image_id",)

    def __init__(
        self, message: str, *, image_id: str, retryable: bool = True
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.image_id = image_id


class RefusalDetectionError(PdfscribeError):
    """Raised when the refusal classifier returns an unusable answer."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


__all__ = [
    "PdfscribeError",
    "ConfigError",
    "DocumentLoadError",
    "ObjectNotResolvedError",
    "ImageExtractionError",
    "AnalysisError",
    "RefusalDetectionError",
]
