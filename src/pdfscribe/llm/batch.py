"""Batch analysis of extracted images.

Images are analyzed in windows of ``max_concurrent_requests``: every image in
a window runs concurrently and the next window starts once the whole window
has settled. Each image goes through two retry layers:

- transient model errors (rate limits, timeouts, connection drops) are
  retried with exponential backoff around the vision call;
- responses classified as refusals are discarded and the whole analysis is
  repeated, up to ``max_refusal_retries`` times.

A failure never escapes a single image: it becomes a ``success=False``
result and the rest of the batch carries on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from pdfscribe.config import PipelineConfig
from pdfscribe.llm.refusal import RefusalDetector
from pdfscribe.llm.vision import RETRYABLE_ERRORS, VisionClient
from pdfscribe.prompts import PromptManager
from pdfscribe.retry import Failure, RetryPolicy, with_retry
from pdfscribe.types import AnalysisResult, BatchStatus, Document, ExtractedImage
from pdfscribe.utils.text import format_error_message

# Refusal backoff: min(2**n * 1s, 8s)
REFUSAL_BASE_DELAY = 1.0
REFUSAL_MAX_DELAY = 8.0

PromptSelector = Callable[[ExtractedImage], str]
ProgressCallback = Callable[[BatchStatus], None]
ResultCallback = Callable[[AnalysisResult, list[AnalysisResult], BatchStatus], None]


@dataclass
class BatchAnalysisResult:
    """Results in the same order as the input images, plus final counters."""

    results: list[AnalysisResult]
    status: BatchStatus


@dataclass
class _Attempt:
    """One pass through vision call and refusal check."""

    text: str = ""
    is_refusal: bool = False
    retries: int = 0
    failure: Failure | None = None


@dataclass
class ResultsSummary:
    """Extracted text grouped by page with outcome counts."""

    extracted_text: str
    total_images: int
    successful_images: int
    failed_images: int
    refusal_count: int
    forced_scans: int
    page_numbers: list[int] = field(default_factory=list)


class BatchAnalyzer:
    """Run vision analysis over a list of images.

    Args:
        config: Pipeline settings
        vision: Vision client, built from ``config`` when omitted
        refusal_detector: Refusal classifier; when omitted one is built
                          unless ``config.refusal.enabled`` is False
        prompt_manager: Source of the vision prompts
    """

    def __init__(
        self,
        config: PipelineConfig,
        vision: VisionClient | None = None,
        refusal_detector: RefusalDetector | None = None,
        prompt_manager: PromptManager | None = None,
    ) -> None:
        self.config = config
        self.prompt_manager = prompt_manager or PromptManager()
        self.vision = vision or VisionClient(config)
        if refusal_detector is None and config.refusal.enabled:
            refusal_detector = RefusalDetector(config, self.prompt_manager)
        self.refusal_detector = refusal_detector

    def default_prompt_selector(self, image: ExtractedImage) -> str:
        """Page scans get the page description prompt, other images the general one."""
        if self.config.analysis_type == "page_description":
            return self.prompt_manager.get_prompt("page_scan")
        if image.is_full_page or image.is_forced_scan:
            return self.prompt_manager.get_prompt("page_scan")
        return self.prompt_manager.get_prompt("image_general")

    @property
    def transient_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.config.retry_count,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            retry_on_exception=RETRYABLE_ERRORS,
        )

    @property
    def refusal_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.config.max_refusal_retries,
            base_delay=REFUSAL_BASE_DELAY,
            max_delay=REFUSAL_MAX_DELAY,
            retry_on_result=lambda attempt: attempt.is_refusal,
            # Nothing escapes _attempt except programming errors
            retry_on_exception=(),
        )

    async def _attempt(self, image: ExtractedImage, prompt: str) -> _Attempt:
        async def call(attempt: int) -> str:
            call_id = image.id if attempt == 0 else f"{image.id}#{attempt}"
            response = await self.vision.describe(image, prompt, call_id=call_id)
            return response.content

        outcome = await with_retry(call, self.transient_policy, label=f"LLM:{image.id}")
        if isinstance(outcome, Failure):
            return _Attempt(retries=outcome.retries, failure=outcome)

        text = outcome.value
        if not text or self.refusal_detector is None:
            return _Attempt(text=text, retries=outcome.retries)

        check = await self.refusal_detector.detect(text)
        if not check.success:
            logger.warning(
                f"[Refusal] Detection failed for {image.id}, keeping response: {check.error}"
            )
            return _Attempt(text=text, retries=outcome.retries)
        return _Attempt(text=text, is_refusal=check.is_refusal, retries=outcome.retries)

    async def analyze_image(self, image: ExtractedImage, prompt: str) -> AnalysisResult:
        """Analyze one image under both retry layers."""
        transient_retries = 0

        async def attempt(index: int) -> _Attempt:
            nonlocal transient_retries
            result = await self._attempt(image, prompt)
            transient_retries += result.retries
            if result.is_refusal:
                logger.warning(f"[Refusal] {image.id}: refusal on attempt {index + 1}")
            return result

        outcome = await with_retry(attempt, self.refusal_policy, label=f"Refusal:{image.id}")

        base = {
            "image_id": image.id,
            "page_number": image.page_number,
            "is_forced_scan": image.is_forced_scan,
            "retries": transient_retries,
        }
        if isinstance(outcome, Failure):
            return AnalysisResult(success=False, error=outcome.details, **base)

        final = outcome.value
        if final.failure is not None:
            return AnalysisResult(
                success=False,
                error=final.failure.details,
                refusal_retries=outcome.retries,
                **base,
            )
        if outcome.retries_exhausted:
            logger.warning(
                f"[Refusal] {image.id}: still refusing after {outcome.retries} retries"
            )
            return AnalysisResult(
                success=True,
                text="",
                refusal_detected=True,
                refusal_retries=outcome.retries,
                **base,
            )
        return AnalysisResult(
            success=True, text=final.text, refusal_retries=outcome.retries, **base
        )

    async def analyze(
        self,
        images: Sequence[ExtractedImage],
        prompt_selector: PromptSelector | None = None,
        on_progress: ProgressCallback | None = None,
        on_image_processed: ResultCallback | None = None,
        on_error: ResultCallback | None = None,
    ) -> BatchAnalysisResult:
        """Analyze every image, window by window.

        Callbacks fire after each image with the results completed so far
        (in input order) and the current counters. ``on_error`` replaces
        ``on_image_processed`` for failed images.
        """
        total = len(images)
        slots: list[AnalysisResult | None] = [None] * total
        status = BatchStatus(processed_count=0, total_images=total, error_count=0)
        if not images:
            return BatchAnalysisResult(results=[], status=status)

        select = prompt_selector or self.default_prompt_selector
        window = self.config.max_concurrent_requests or total

        async def run_one(index: int, image: ExtractedImage) -> None:
            try:
                result = await self.analyze_image(image, select(image))
            except Exception as e:
                logger.error(f"[Batch] {image.id}: {format_error_message(e)}")
                result = AnalysisResult(
                    image_id=image.id,
                    success=False,
                    page_number=image.page_number,
                    is_forced_scan=image.is_forced_scan,
                    error=format_error_message(e),
                )

            slots[index] = result
            status.processed_count += 1
            if not result.success:
                status.error_count += 1

            snapshot = BatchStatus(
                status.processed_count, status.total_images, status.error_count
            )
            completed = [r for r in slots if r is not None]
            if on_progress:
                on_progress(snapshot)
            if result.success:
                if on_image_processed:
                    on_image_processed(result, completed, snapshot)
            elif on_error:
                on_error(result, completed, snapshot)

        for start in range(0, total, window):
            chunk = images[start : start + window]
            logger.debug(
                f"[Batch] Window {start // window + 1}: images {start + 1}-{start + len(chunk)} of {total}"
            )
            await asyncio.gather(
                *(run_one(start + offset, image) for offset, image in enumerate(chunk))
            )

        results = [r for r in slots if r is not None]
        logger.info(
            f"[Batch] Complete: {status.processed_count}/{total} images, "
            f"{status.error_count} errors"
        )
        return BatchAnalysisResult(results=results, status=status)


def summarize_results(
    results: Sequence[AnalysisResult], document: Document | None = None
) -> ResultsSummary:
    """Group result text by page and count outcomes.

    Each page section starts with ``--- PAGE n ---``; page scans are labeled
    ``[Page Scan n]`` and embedded images ``[Image id]``. When ``document``
    is given, pages without any usable result are listed too (empty).
    """
    refusal_count = sum(1 for r in results if r.success and r.refusal_detected)
    successful = sum(1 for r in results if r.success and not r.refusal_detected)
    forced_scans = sum(1 for r in results if r.is_forced_scan)

    by_page: dict[int, list[str]] = {}
    if document is not None:
        for page in document.pages:
            by_page.setdefault(page.page_number, [])
    for result in results:
        if not result.usable:
            continue
        if result.is_forced_scan:
            entry = f"[Page Scan {result.page_number}]: {result.text}"
        else:
            entry = f"[Image {result.image_id}]: {result.text}"
        by_page.setdefault(result.page_number, []).append(entry)

    sections = []
    for page_number in sorted(by_page):
        body = "\n\n".join(by_page[page_number])
        sections.append(f"\n--- PAGE {page_number} ---\n\n{body}\n")

    return ResultsSummary(
        extracted_text="".join(sections).strip(),
        total_images=len(results),
        successful_images=successful,
        failed_images=len(results) - successful - refusal_count,
        refusal_count=refusal_count,
        forced_scans=forced_scans,
        page_numbers=sorted(by_page),
    )
