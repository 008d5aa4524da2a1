"""pdfscribe: PDF to text conversion with vision-LLM image understanding."""

from __future__ import annotations

__version__ = "0.3.0"
