"""Vision model client.

One request per image: the prompt text and the PNG data URI in a single user
message, sent through LiteLLM so any vision-capable provider works.
"""

from __future__ import annotations

import time
import warnings
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, cast

# Suppress LiteLLM's async logging warnings (coroutine never awaited)
warnings.filterwarnings(
    "ignore",
    message="coroutine 'Logging.async_success_handler' was never awaited",
    category=RuntimeWarning,
)

import litellm
from litellm import completion_cost
from litellm.exceptions import (
    APIConnectionError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from litellm.types.utils import Choices
from loguru import logger

from pdfscribe.config import PipelineConfig
from pdfscribe.exceptions import AnalysisError
from pdfscribe.types import ExtractedImage
from pdfscribe.utils.text import format_error_message

litellm.suppress_debug_info = True

# Errors worth retrying with backoff
RETRYABLE_ERRORS = (
    RateLimitError,
    APIConnectionError,
    Timeout,
    ServiceUnavailableError,
)

# Wrapped by LiteLLM as retryable errors but not recoverable without user action
NON_RETRYABLE_PATTERNS = (
    "quota",
    "billing",
    "payment",
    "subscription",
    "402",
    "insufficient_quota",
    "exceeded your current quota",
)

Completion = Callable[..., Awaitable[Any]]


@dataclass
class LLMResponse:
    """Response from LLM call."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float


def get_response_cost(response: Any) -> float:
    """Get cost from a LiteLLM ModelResponse, or 0.0 if unavailable."""
    try:
        return completion_cost(completion_response=response) or 0.0
    except Exception:
        return 0.0


def build_vision_messages(prompt: str, data_uri: str) -> list[dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": data_uri}},
            ],
        }
    ]


class VisionClient:
    """Send images to a vision model and track token usage.

    Args:
        config: Model, sampling and credential settings
        completion: Async completion function, ``litellm.acompletion`` by default
    """

    def __init__(
        self, config: PipelineConfig, completion: Completion | None = None
    ) -> None:
        self.config = config
        self._completion = completion or litellm.acompletion
        self._usage: dict[str, dict[str, float]] = defaultdict(
            lambda: {"requests": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0.0}
        )

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        api_key = self.config.get_resolved_api_key(strict=False)
        if api_key:
            kwargs["api_key"] = api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        if self.config.timeout is not None:
            kwargs["timeout"] = self.config.timeout
        return kwargs

    async def describe(
        self, image: ExtractedImage, prompt: str, call_id: str | None = None
    ) -> LLMResponse:
        """Ask the model to describe one image.

        Raises:
            AnalysisError: On quota or billing errors (not retryable)
            RateLimitError, APIConnectionError, Timeout, ServiceUnavailableError:
                Transient failures, left to the caller's retry policy
        """
        call_id = call_id or image.id
        kwargs = self._request_kwargs()
        messages = build_vision_messages(prompt, image.data_uri)

        start_time = time.perf_counter()
        logger.debug(f"[LLM:{call_id}] Request to {kwargs['model']}")
        try:
            response = await self._completion(messages=messages, **kwargs)
        except RETRYABLE_ERRORS as e:
            error_msg_lower = str(e).lower()
            if any(pattern in error_msg_lower for pattern in NON_RETRYABLE_PATTERNS):
                status_code = getattr(e, "status_code", "N/A")
                logger.error(
                    f"[LLM:{call_id}] Quota/billing error (not retrying): "
                    f"status={status_code} {format_error_message(e)}"
                )
                raise AnalysisError(
                    format_error_message(e), image_id=image.id, retryable=False
                ) from e
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        # litellm returns Choices (not StreamingChoices) for non-streaming
        choice = cast(Choices, response.choices[0])
        content = choice.message.content or ""
        actual_model = getattr(response, "model", None) or kwargs["model"]

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        cost = get_response_cost(response)
        self._track_usage(actual_model, input_tokens, output_tokens, cost)

        logger.info(
            f"[LLM:{call_id}] {actual_model} "
            f"tokens={input_tokens}+{output_tokens} "
            f"time={elapsed_ms:.0f}ms cost=${cost:.6f}"
        )
        return LLMResponse(
            content=content,
            model=actual_model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
        )

    def _track_usage(
        self, model: str, input_tokens: int, output_tokens: int, cost: float
    ) -> None:
        # Single event loop, no lock needed
        stats = self._usage[model]
        stats["requests"] += 1
        stats["input_tokens"] += input_tokens
        stats["output_tokens"] += output_tokens
        stats["cost_usd"] += cost

    def get_usage(self) -> dict[str, dict[str, float]]:
        """Usage statistics per model."""
        return {model: dict(stats) for model, stats in self._usage.items()}
