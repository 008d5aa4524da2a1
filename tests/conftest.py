"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
from collections.abc import Callable
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from pdfscribe.config import PipelineConfig
from pdfscribe.exceptions import ObjectNotResolvedError
from pdfscribe.pdf.backend import ImageObject, OpKind, PdfOperation, TextItem
from pdfscribe.types import ExtractedImage

# =============================================================================
# Image helpers
# =============================================================================


def make_png(
    width: int = 20,
    height: int = 20,
    color: tuple[int, int, int, int] = (0, 0, 0, 255),
) -> bytes:
    """Encode a solid-color RGBA PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_image(
    image_id: str,
    page_number: int = 1,
    width: int = 20,
    height: int = 20,
    color: tuple[int, int, int, int] = (0, 0, 0, 255),
    **kwargs,
) -> ExtractedImage:
    """Build an ExtractedImage with solid-color PNG data."""
    return ExtractedImage(
        id=image_id,
        page_number=page_number,
        width=width,
        height=height,
        raster_data=make_png(width, height, color),
        **kwargs,
    )


@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    """Return the solid-color PNG factory."""
    return make_png


@pytest.fixture
def image_factory() -> Callable[..., ExtractedImage]:
    """Return the ExtractedImage factory."""
    return make_image


# =============================================================================
# Fake PDF backend
# =============================================================================


@dataclass
class FakePage:
    """In-memory PdfPage.

    ``objects`` maps image names to ImageObjects; names listed in
    ``unresolved`` raise ObjectNotResolvedError on every lookup.
    """

    page_number: int = 1
    width: float = 200.0
    height: float = 300.0
    ops: list[PdfOperation] = field(default_factory=list)
    texts: list[TextItem] = field(default_factory=list)
    objects: dict[str, ImageObject] = field(default_factory=dict)
    unresolved: set[str] = field(default_factory=set)
    fill: str = "white"

    def operations(self) -> list[PdfOperation]:
        return list(self.ops)

    def text_items(self) -> list[TextItem]:
        return list(self.texts)

    def get_object(self, name: str) -> ImageObject:
        if name in self.unresolved or name not in self.objects:
            raise ObjectNotResolvedError(name)
        return self.objects[name]

    def render(self, scale: float) -> Image.Image:
        size = (int(self.width * scale), int(self.height * scale))
        return Image.new("RGB", size, self.fill)

    def add_text(self, text: str, x: float, y: float) -> None:
        """Add a text run at PDF (bottom-up) coordinates."""
        self.texts.append(TextItem(text=text, x=x, y=y))
        self.ops.append(PdfOperation(OpKind.TEXT, (text,)))

    def add_image(
        self,
        name: str,
        obj: ImageObject | None,
        x: float = 50.0,
        y: float = 150.0,
    ) -> None:
        """Place an image; ``y`` is the PDF (bottom-up) placement origin."""
        self.ops.append(
            PdfOperation(OpKind.TRANSFORM, (obj.width if obj else 1, 0, 0, 1, x, y))
        )
        self.ops.append(PdfOperation(OpKind.IMAGE, (name,)))
        if obj is not None:
            self.objects[name] = obj


class FakeBackend:
    """In-memory PdfBackend over a list of FakePages."""

    def __init__(self, pages: list[FakePage]):
        self._pages = pages
        self.page_count = len(pages)
        self.closed = False

    def page(self, page_number: int) -> FakePage:
        return self._pages[page_number - 1]

    def close(self) -> None:
        self.closed = True


def bitmap_object(
    width: int = 20,
    height: int = 20,
    color: tuple[int, int, int] = (0, 0, 0),
) -> ImageObject:
    """ImageObject carrying a decoded solid-color bitmap."""
    return ImageObject(
        width=width, height=height, bitmap=Image.new("RGB", (width, height), color)
    )


def text_page(page_number: int = 1, lines: int = 12, **kwargs) -> FakePage:
    """FakePage with ``lines`` text runs, enough to not look scanned."""
    page = FakePage(page_number=page_number, **kwargs)
    for i in range(lines):
        page.add_text(f"line {i}", 10.0, page.height - 10.0 - 20.0 * i)
    return page


@pytest.fixture
def page_factory() -> Callable[..., FakePage]:
    """Return a factory for FakePages pre-filled with text runs."""
    return text_page


@pytest.fixture
def bitmap_factory() -> Callable[..., ImageObject]:
    """Return a factory for bitmap-backed ImageObjects."""
    return bitmap_object


@pytest.fixture
def backend_factory() -> type[FakeBackend]:
    """Return the FakeBackend class."""
    return FakeBackend


# =============================================================================
# Config fixtures
# =============================================================================


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """PipelineConfig with zero transient backoff."""
    return PipelineConfig(
        max_concurrent_requests=2,
        max_refusal_retries=2,
        retry_count=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def no_sleep():
    """Make every asyncio.sleep return immediately; yields the mock."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
