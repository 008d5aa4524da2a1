"""Text helpers shared by the pipeline and the CLI."""

from __future__ import annotations

import re
from pathlib import Path

from pdfscribe.constants import PLACEHOLDER_ESCAPE

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_PLACEHOLDER_LIKE = re.compile(r"\[(?=(?:PAGE_)?IMAGE_\d+\])")


def format_error_message(error: BaseException) -> str:
    """Format an exception as ``Type: message`` for logs and results.

    Multi-line messages (LiteLLM often returns whole response bodies) are
    collapsed to their first line.
    """
    message = str(error).strip()
    if not message:
        return type(error).__name__
    first_line = message.splitlines()[0].strip()
    return f"{type(error).__name__}: {first_line}"


def stem_for_output(source: str | Path) -> str:
    """Derive the output file stem from an input path.

    Example: ``reports/Q3 results.pdf`` -> ``Q3 results``
    """
    stem = Path(source).stem or "document"
    return _UNSAFE_FILENAME_CHARS.sub("_", stem)


def escape_placeholders(text: str) -> str:
    """Break up ``[IMAGE_n]``-like tokens that occur in a PDF's own text.

    Page text can legitimately contain ``[IMAGE_1]``; escaping it keeps
    placeholder lookups from matching the source text instead of the real
    image slot.
    """
    return _PLACEHOLDER_LIKE.sub("[" + PLACEHOLDER_ESCAPE, text)


def unescape_placeholders(text: str) -> str:
    """Undo ``escape_placeholders`` once placeholders have been substituted."""
    return text.replace("[" + PLACEHOLDER_ESCAPE, "[")
