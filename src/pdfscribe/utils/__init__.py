"""pdfscribe utilities."""

from pdfscribe.utils.executor import (
    get_converter_executor,
    run_in_converter_thread,
    shutdown_converter_executor,
)
from pdfscribe.utils.files import atomic_write_json, atomic_write_text
from pdfscribe.utils.text import (
    escape_placeholders,
    format_error_message,
    stem_for_output,
    unescape_placeholders,
)

__all__ = [
    # Executor
    "get_converter_executor",
    "run_in_converter_thread",
    "shutdown_converter_executor",
    # Files
    "atomic_write_json",
    "atomic_write_text",
    # Text
    "escape_placeholders",
    "format_error_message",
    "stem_for_output",
    "unescape_placeholders",
]
