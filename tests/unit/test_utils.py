"""Tests for the utils package."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from pdfscribe.utils import (
    atomic_write_json,
    atomic_write_text,
    escape_placeholders,
    format_error_message,
    get_converter_executor,
    run_in_converter_thread,
    shutdown_converter_executor,
    stem_for_output,
    unescape_placeholders,
)


class TestFormatErrorMessage:
    """Tests for format_error_message function."""

    def test_type_and_message(self):
        """Test errors render as Type: message."""
        assert format_error_message(ValueError("bad value")) == "ValueError: bad value"

    def test_empty_message(self):
        """Test an empty message renders as the type name."""
        assert format_error_message(RuntimeError()) == "RuntimeError"

    def test_multiline_collapsed(self):
        """Test only the first line of long messages is kept."""
        error = RuntimeError("first line\n{\"body\": \"...\"}")
        assert format_error_message(error) == "RuntimeError: first line"


class TestStemForOutput:
    """Tests for stem_for_output function."""

    def test_plain_path(self):
        """Test the file stem is used."""
        assert stem_for_output("reports/annual.pdf") == "annual"

    def test_path_object(self):
        """Test Path inputs work too."""
        assert stem_for_output(Path("/tmp/scan 01.pdf")) == "scan 01"


class TestPlaceholderEscaping:
    """Tests for escape_placeholders and unescape_placeholders."""

    def test_escapes_only_placeholder_shapes(self):
        """Test image and page placeholders are escaped, other brackets are not."""
        text = "[IMAGE_3] [PAGE_IMAGE_2] [IMAGE_x] [1]"
        assert escape_placeholders(text) == (
            "[\u2060IMAGE_3] [\u2060PAGE_IMAGE_2] [IMAGE_x] [1]"
        )

    def test_unescape_restores_text(self):
        """Test unescaping gives back the original text."""
        text = "See [IMAGE_1] and [PAGE_IMAGE_4]."
        assert unescape_placeholders(escape_placeholders(text)) == text


class TestAtomicWrite:
    """Tests for atomic file writes."""

    def test_write_text_creates_parents(self, tmp_path: Path):
        """Test parent directories are created and content written."""
        target = tmp_path / "a" / "b" / "out.txt"
        atomic_write_text(target, "hello")
        assert target.read_text(encoding="utf-8") == "hello"

    def test_overwrite_leaves_no_temp_files(self, tmp_path: Path):
        """Test overwriting keeps a single file."""
        target = tmp_path / "out.txt"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text(encoding="utf-8") == "two"
        assert [p.name for p in tmp_path.iterdir()] == ["out.txt"]

    def test_write_json(self, tmp_path: Path):
        """Test JSON is written with non-ASCII preserved."""
        target = tmp_path / "out.json"
        atomic_write_json(target, {"text": "café"})
        raw = target.read_text(encoding="utf-8")
        assert "café" in raw
        assert json.loads(raw) == {"text": "café"}


class TestConverterExecutor:
    """Tests for the shared converter executor."""

    def teardown_method(self):
        """Clean up executor after each test."""
        shutdown_converter_executor()

    def test_same_instance(self):
        """Test the executor is shared."""
        assert get_converter_executor() is get_converter_executor()

    @pytest.mark.asyncio
    async def test_runs_off_loop_thread(self):
        """Test functions run in a worker thread with their arguments."""
        main_thread = threading.current_thread().ident

        def work(x: int, y: int = 0) -> tuple[int, int | None]:
            return x + y, threading.current_thread().ident

        total, thread_id = await run_in_converter_thread(work, 2, y=3)

        assert total == 5
        assert thread_id != main_thread

    @pytest.mark.asyncio
    async def test_recreated_after_shutdown(self):
        """Test a new executor is created after shutdown."""
        first = get_converter_executor()
        shutdown_converter_executor()
        assert await run_in_converter_thread(lambda: "ok") == "ok"
        assert get_converter_executor() is not first
