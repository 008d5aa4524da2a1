"""Vision model access: image description, refusal detection and batching."""

from pdfscribe.llm.batch import (
    BatchAnalysisResult,
    BatchAnalyzer,
    ResultsSummary,
    summarize_results,
)
from pdfscribe.llm.refusal import RefusalCheck, RefusalDetector, RefusalVerdict
from pdfscribe.llm.vision import (
    RETRYABLE_ERRORS,
    LLMResponse,
    VisionClient,
    get_response_cost,
)

__all__ = [
    "RETRYABLE_ERRORS",
    "BatchAnalysisResult",
    "BatchAnalyzer",
    "LLMResponse",
    "RefusalCheck",
    "RefusalDetector",
    "RefusalVerdict",
    "ResultsSummary",
    "VisionClient",
    "get_response_cost",
    "summarize_results",
]
