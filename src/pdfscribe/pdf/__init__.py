"""PDF parsing: classification, rendering, organization and extraction."""

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
from pdfscribe.pdf.extractor import PdfExtractor, generate_text_representation
from pdfscribe.pdf.organizer import ContentItem, organize_content
from pdfscribe.pdf.renderer import ImageRenderer

__all__ = [
    "ContentItem",
    "ImageObject",
    "ImageRenderer",
    "OpKind",
    "PageAnalysis",
    "PdfBackend",
    "PdfExtractor",
    "PdfOperation",
    "PdfPage",
    "TextItem",
    "classify_page",
    "generate_text_representation",
    "open_document",
    "organize_content",
]
