"""End-to-end conversion: extract, analyze, replace.

This module provides the single flow shared by the CLI and library callers:

1. ``PdfExtractor`` turns the PDF into a placeholder-annotated Document
   (deduplication included);
2. ``BatchAnalyzer`` describes every unique image with the vision model;
3. the replacement engine substitutes the descriptions into the pages.

Only a document load failure stops the pipeline. Per-image failures end up
in the analysis results and their placeholders are dropped from the text.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from pdfscribe.config import PdfscribeConfig
from pdfscribe.llm.batch import BatchAnalysisResult, BatchAnalyzer, summarize_results
from pdfscribe.pdf.extractor import PdfExtractor
from pdfscribe.prompts import PromptManager
from pdfscribe.replacement import (
    ReplacementResult,
    create_text_replacement,
    generate_formatted_text,
    normalize_output_text,
)
from pdfscribe.types import BatchStatus, ExtractionResult, ProgressEvent
from pdfscribe.utils.files import atomic_write_json, atomic_write_text
from pdfscribe.utils.text import stem_for_output

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class PipelineResult:
    """Everything produced for one PDF."""

    success: bool
    source: str
    extraction: ExtractionResult
    analysis: BatchAnalysisResult | None = None
    replacement: ReplacementResult | None = None
    text: str = ""
    error: str | None = None
    usage: dict[str, dict[str, float]] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def cost_usd(self) -> float:
        return sum(stats.get("cost_usd", 0.0) for stats in self.usage.values())

    def to_dict(self) -> dict[str, Any]:
        """JSON export: document structure, per-image results and summary."""
        results = self.analysis.results if self.analysis else []
        summary = summarize_results(results, self.extraction.document)
        return {
            "source": self.source,
            "success": self.success,
            "error": self.error,
            "document": self.extraction.document.to_dict(),
            "analysisResults": [r.to_dict() for r in results],
            "summary": {
                "totalImages": summary.total_images,
                "successfulImages": summary.successful_images,
                "failedImages": summary.failed_images,
                "refusalCount": summary.refusal_count,
                "forcedScans": summary.forced_scans,
            },
            "pages": [
                {"pageNumber": p.page_number, "content": p.content}
                for p in (self.replacement.pages if self.replacement else [])
            ],
            "usage": self.usage,
            "durationSeconds": round(self.duration, 3),
        }


class Pipeline:
    """Convert PDFs to text with vision model image descriptions.

    Args:
        config: Full configuration; only ``pipeline`` and ``prompts`` are used
        on_progress: Receives ProgressEvents from every stage
        extractor: Override the extractor (tests, custom backends)
        analyzer: Override the batch analyzer
    """

    def __init__(
        self,
        config: PdfscribeConfig | None = None,
        on_progress: ProgressCallback | None = None,
        extractor: PdfExtractor | None = None,
        analyzer: BatchAnalyzer | None = None,
    ) -> None:
        self.config = config or PdfscribeConfig()
        self.on_progress = on_progress
        self.prompt_manager = PromptManager(self.config.prompts)
        self.extractor = extractor or PdfExtractor(
            self.config.pipeline, on_progress=on_progress
        )
        self.analyzer = analyzer or BatchAnalyzer(
            self.config.pipeline, prompt_manager=self.prompt_manager
        )

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress:
            self.on_progress(event)

    def _on_batch_progress(self, status: BatchStatus) -> None:
        self._emit(
            ProgressEvent(
                "analyze",
                status.processed_count,
                status.total_images,
                f"Analyzed {status.processed_count}/{status.total_images} images",
            )
        )

    async def run(self, source: bytes | str | Path) -> PipelineResult:
        """Run every stage on one PDF."""
        start = time.perf_counter()
        label = str(source) if isinstance(source, str | Path) else "<bytes>"

        extraction = await self.extractor.extract(source)
        if not extraction.success:
            return PipelineResult(
                success=False,
                source=label,
                extraction=extraction,
                error=extraction.error,
                duration=time.perf_counter() - start,
            )

        document = extraction.document
        logger.debug(f"[Pipeline] Analyzing {len(document.images)} images")
        analysis = await self.analyzer.analyze(
            document.images, on_progress=self._on_batch_progress
        )

        replacement_config = self.config.pipeline.replacement
        self._emit(ProgressEvent("replace", 0, document.total_pages, "Replacing placeholders"))
        replacement = create_text_replacement(document, analysis.results, replacement_config)
        text = normalize_output_text(generate_formatted_text(replacement, replacement_config))
        self._emit(
            ProgressEvent(
                "replace", document.total_pages, document.total_pages, "Text assembled"
            )
        )

        duration = time.perf_counter() - start
        logger.info(
            f"[Pipeline] Complete: {document.total_pages} pages, "
            f"{len(document.images)} images, {analysis.status.error_count} errors "
            f"in {duration:.1f}s"
        )
        return PipelineResult(
            success=True,
            source=label,
            extraction=extraction,
            analysis=analysis,
            replacement=replacement,
            text=text,
            usage=self.analyzer.vision.get_usage(),
            duration=duration,
        )


def write_outputs(
    result: PipelineResult,
    output_dir: Path,
    stem: str | None = None,
    json_export: bool = False,
) -> list[Path]:
    """Write ``<stem>.txt`` and, optionally, ``<stem>.json``.

    Returns:
        Paths written, text file first
    """
    stem = stem or stem_for_output(result.source)
    text_path = output_dir / f"{stem}.txt"
    atomic_write_text(text_path, result.text)
    logger.info(f"Written {text_path}")
    written = [text_path]

    if json_export:
        json_path = output_dir / f"{stem}.json"
        atomic_write_json(json_path, result.to_dict())
        logger.info(f"Written {json_path}")
        written.append(json_path)
    return written
