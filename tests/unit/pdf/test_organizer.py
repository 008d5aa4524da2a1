"""Tests for content organization."""

from __future__ import annotations

from pdfscribe.pdf.backend import TextItem
from pdfscribe.pdf.organizer import image_item, organize_content
from pdfscribe.types import PageContent

PAGE_HEIGHT = 300.0


def _text(text: str, x: float, top: float) -> TextItem:
    """Text run placed ``top`` points below the top edge."""
    return TextItem(text=text, x=x, y=PAGE_HEIGHT - top)


class TestOrganizeContent:
    """Tests for organize_content function."""

    def test_empty_page(self):
        """Test a page with nothing on it yields empty content."""
        assert organize_content([], PAGE_HEIGHT) == PageContent()

    def test_scan_only(self):
        """Test a textless page is represented by its scan placeholder."""
        scan = image_item("page_1", "[PAGE_IMAGE_1]")
        content = organize_content([], PAGE_HEIGHT, page_scan=scan)
        assert content == PageContent(raw_text="", formatted_text="[PAGE_IMAGE_1]")

    def test_single_run(self):
        """Test a single run of text."""
        content = organize_content([_text("Hello", 10, 10)], PAGE_HEIGHT)
        assert content.raw_text == "Hello"
        assert content.formatted_text == "Hello"

    def test_same_line_joined_by_space(self):
        """Test runs within the line tolerance share a line in x order."""
        items = [_text("World", 60, 12), _text("Hello", 10, 10)]
        content = organize_content(items, PAGE_HEIGHT)
        assert content.formatted_text == "Hello World"

    def test_lines_in_vertical_order(self):
        """Test runs on different lines are emitted top to bottom."""
        items = [_text("second", 10, 40), _text("first", 10, 10)]
        content = organize_content(items, PAGE_HEIGHT)
        assert content.raw_text == "first\nsecond"
        assert content.formatted_text == "first\nsecond"

    def test_image_between_lines(self):
        """Test an image placeholder lands at its reading position."""
        items = [_text("above", 10, 10), _text("below", 10, 200)]
        images = [image_item("img_1_1", "[IMAGE_1]", x=10, y=100)]

        content = organize_content(items, PAGE_HEIGHT, images)

        assert content.formatted_text == "above\n[IMAGE_1]\nbelow"
        assert content.raw_text == "above\nbelow"

    def test_placeholder_like_text_escaped(self):
        """Test source text shaped like a placeholder cannot match a real one."""
        items = [_text("See [IMAGE_1] here", 10, 10)]
        images = [image_item("img_1_1", "[IMAGE_1]", x=10, y=100)]

        content = organize_content(items, PAGE_HEIGHT, images)

        assert content.formatted_text == "See [\u2060IMAGE_1] here\n[IMAGE_1]"
        assert content.raw_text == "See [IMAGE_1] here"

    def test_scan_placed_first(self):
        """Test the page scan placeholder precedes the page text."""
        scan = image_item("page_1", "[PAGE_IMAGE_1]")
        content = organize_content([_text("Hello", 10, 10)], PAGE_HEIGHT, page_scan=scan)
        assert content.formatted_text == "[PAGE_IMAGE_1]\nHello"

    def test_image_pulled_up_to_anchor_line(self):
        """Test a lagging image joins the preceding image line."""
        items = [_text("caption", 10, 60)]
        images = [
            image_item("img_1_1", "[IMAGE_1]", x=10, y=50),
            image_item("img_1_2", "[IMAGE_2]", x=300, y=60),
        ]

        content = organize_content(items, PAGE_HEIGHT, images)

        first_line, second_line = content.formatted_text.split("\n")
        assert "[IMAGE_1]" in first_line and "[IMAGE_2]" in first_line
        assert second_line == "caption"

    def test_image_near_text_stays(self):
        """Test an image beside nearby text keeps its own line."""
        items = [_text("caption", 10, 60)]
        images = [
            image_item("img_1_1", "[IMAGE_1]", x=10, y=30),
            image_item("img_1_2", "[IMAGE_2]", x=40, y=60),
        ]

        content = organize_content(items, PAGE_HEIGHT, images)

        assert content.formatted_text.split("\n") == ["[IMAGE_1]", "caption  [IMAGE_2]"]

    def test_inputs_not_mutated(self):
        """Test the caller's image items are copied, not moved."""
        images = [
            image_item("img_1_1", "[IMAGE_1]", x=10, y=50),
            image_item("img_1_2", "[IMAGE_2]", x=300, y=60),
        ]
        organize_content([_text("caption", 10, 60)], PAGE_HEIGHT, images)
        assert [img.id for img in images] == ["img_1_1", "img_1_2"]
        assert images[1].y == 60
