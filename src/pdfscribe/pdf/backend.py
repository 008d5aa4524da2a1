"""PDF backend adapter.

The extractor never talks to a PDF library directly. It sees a document as
a sequence of pages, each exposing a drawing-operation list, positioned text
items, resolvable image objects and a full-page rasterizer. This module
defines that shape and implements it on top of PyMuPDF.

Coordinates follow PDF user space: ``TextItem.y`` and the ``f`` component of
a transform are measured upward from the bottom edge of the page.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import pymupdf
from loguru import logger
from PIL import Image

from pdfscribe.exceptions import DocumentLoadError, ObjectNotResolvedError


class OpKind(str, Enum):
    """Category of a drawing operation, as seen by the page classifier."""

    IMAGE = "image"  # Paints an image object; args[0] is its name
    PATH = "path"  # Path construction, fill or stroke
    TEXT = "text"  # Shows a run of text
    TRANSFORM = "transform"  # Sets the CTM; args are (a, b, c, d, e, f)
    OTHER = "other"


@dataclass(frozen=True)
class PdfOperation:
    kind: OpKind
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class TextItem:
    """A run of text anchored at its baseline origin."""

    text: str
    x: float
    y: float


@dataclass
class ImageObject:
    """A resolved image object.

    Backends fill whichever representation they have; the renderer tries
    them in order ``bitmap``, ``data``, ``get_image_data``, ``image``.

    Attributes:
        bitmap: Decoded PIL image
        data: Raw pixel buffer (RGBA unless ``mode`` says otherwise)
        mode: Pixel layout of ``data`` ("RGBA", "RGB" or "L"), inferred from
              the buffer length when None
        get_image_data: Callable (sync or async) returning pixels on demand
        image: Encoded image bytes (PNG, JPEG, ...)
    """

    width: int
    height: int
    bitmap: Image.Image | None = None
    data: Any = None
    mode: str | None = None
    get_image_data: Callable[[], Any] | None = None
    image: bytes | None = None
    info: dict[str, Any] = field(default_factory=dict)


class PdfPage(Protocol):
    page_number: int
    width: float
    height: float

    def operations(self) -> list[PdfOperation]: ...

    def text_items(self) -> list[TextItem]: ...

    def get_object(self, name: str) -> ImageObject:
        """Resolve an image object, raising ObjectNotResolvedError if unavailable."""
        ...

    def render(self, scale: float) -> Image.Image:
        """Rasterize the whole page on a white background."""
        ...


class PdfBackend(Protocol):
    page_count: int

    def page(self, page_number: int) -> PdfPage: ...

    def close(self) -> None: ...


# =============================================================================
# PyMuPDF implementation
# =============================================================================


def _image_name(xref: int, index: int) -> str:
    # Inline images have no xref; name them by position on the page
    return f"xref{xref}" if xref else f"inline{index}"


class PymupdfPage:
    """PdfPage backed by a ``pymupdf.Page``."""

    def __init__(self, doc: pymupdf.Document, page: pymupdf.Page, page_number: int):
        self._doc = doc
        self._page = page
        self.page_number = page_number
        self.width = float(page.rect.width)
        self.height = float(page.rect.height)
        self._image_info: list[dict[str, Any]] | None = None

    def _images(self) -> list[dict[str, Any]]:
        if self._image_info is None:
            self._image_info = self._page.get_image_info(xrefs=True)
        return self._image_info

    def operations(self) -> list[PdfOperation]:
        """Synthesize an operation list.

        PyMuPDF does not expose the raw content stream in parsed form, so the
        list is built from drawings, image placements and text spans, in that
        order. Each image paint is preceded by its placement transform.
        """
        ops: list[PdfOperation] = []

        for drawing in self._page.get_drawings():
            for item in drawing.get("items", []):
                ops.append(PdfOperation(OpKind.PATH, (item[0],)))
            # The fill/stroke operator that closes the path
            ops.append(PdfOperation(OpKind.PATH, (drawing.get("type", ""),)))

        for index, info in enumerate(self._images()):
            x0, y0, x1, y1 = info["bbox"]
            a, b, c, d = info.get("transform", (x1 - x0, 0, 0, y1 - y0, 0, 0))[:4]
            # Bottom-left corner of the placement, in PDF (bottom-up) space
            ops.append(
                PdfOperation(OpKind.TRANSFORM, (a, b, c, d, x0, self.height - y1))
            )
            ops.append(
                PdfOperation(OpKind.IMAGE, (_image_name(info.get("xref", 0), index),))
            )

        for span in self._spans():
            ops.append(PdfOperation(OpKind.TEXT, (span["text"],)))

        return ops

    def _spans(self) -> list[dict[str, Any]]:
        spans = []
        text_dict = self._page.get_text("dict")
        for block in text_dict.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    if span.get("text", "").strip():
                        spans.append(span)
        return spans

    def text_items(self) -> list[TextItem]:
        items = []
        for span in self._spans():
            x, y = span["origin"]
            items.append(TextItem(text=span["text"], x=float(x), y=self.height - y))
        return items

    def get_object(self, name: str) -> ImageObject:
        if name.startswith("xref"):
            return self._resolve_xref(name, int(name[4:]))
        if name.startswith("inline"):
            return self._resolve_inline(name, int(name[6:]))
        raise ObjectNotResolvedError(name)

    def _resolve_xref(self, name: str, xref: int) -> ImageObject:
        try:
            pix = pymupdf.Pixmap(self._doc, xref)
            # CMYK and other colorspaces are converted before handing to Pillow
            if pix.colorspace and pix.colorspace.n > 3:
                pix = pymupdf.Pixmap(pymupdf.csRGB, pix)
            mode = {1: "L", 3: "RGB", 4: "RGBA"}.get(pix.n)
            if mode is None:
                raise ValueError(f"unsupported pixmap layout n={pix.n}")
            bitmap = Image.frombytes(mode, (pix.width, pix.height), pix.samples)
            return ImageObject(width=pix.width, height=pix.height, bitmap=bitmap)
        except (RuntimeError, ValueError) as e:
            logger.debug(f"Pixmap decode failed for {name}: {e}, trying raw stream")

        try:
            base_image = self._doc.extract_image(xref)
        except RuntimeError as e:
            logger.debug(f"extract_image failed for {name}: {e}")
            base_image = None
        if not base_image:
            raise ObjectNotResolvedError(name)
        return ImageObject(
            width=base_image.get("width", 0),
            height=base_image.get("height", 0),
            image=base_image["image"],
            info={"ext": base_image.get("ext")},
        )

    def _resolve_inline(self, name: str, index: int) -> ImageObject:
        images = self._images()
        if index >= len(images):
            raise ObjectNotResolvedError(name)
        info = images[index]
        width, height = int(info.get("width", 0)), int(info.get("height", 0))
        clip = pymupdf.Rect(info["bbox"])
        if clip.is_empty or width <= 0 or height <= 0:
            raise ObjectNotResolvedError(name)
        # Render the placement area at the image's native resolution
        matrix = pymupdf.Matrix(width / clip.width, height / clip.height)
        pix = self._page.get_pixmap(matrix=matrix, clip=clip, alpha=False)
        bitmap = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        return ImageObject(width=pix.width, height=pix.height, bitmap=bitmap)

    def render(self, scale: float) -> Image.Image:
        pix = self._page.get_pixmap(matrix=pymupdf.Matrix(scale, scale), alpha=False)
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


class PymupdfBackend:
    """PdfBackend over one open ``pymupdf.Document``."""

    def __init__(self, doc: pymupdf.Document):
        self._doc = doc
        self.page_count = doc.page_count

    def page(self, page_number: int) -> PymupdfPage:
        return PymupdfPage(self._doc, self._doc[page_number - 1], page_number)

    def close(self) -> None:
        self._doc.close()


def open_document(source: bytes | bytearray | str | Path) -> PymupdfBackend:
    """Open a PDF from bytes or a path.

    Raises:
        DocumentLoadError: If the input is not a readable PDF.
    """
    label = "<bytes>" if isinstance(source, bytes | bytearray) else str(source)
    try:
        if isinstance(source, bytes | bytearray):
            doc = pymupdf.open(stream=bytes(source), filetype="pdf")
        else:
            doc = pymupdf.open(Path(source), filetype="pdf")
    except (RuntimeError, ValueError, OSError) as e:
        raise DocumentLoadError(f"Error loading PDF: {e}", source=label) from e

    if doc.needs_pass:
        doc.close()
        raise DocumentLoadError("Error loading PDF: document is encrypted", source=label)
    if doc.page_count == 0:
        doc.close()
        raise DocumentLoadError("Error loading PDF: document has no pages", source=label)
    return PymupdfBackend(doc)
