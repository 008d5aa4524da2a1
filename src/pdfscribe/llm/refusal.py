"""Refusal detection.

A second, cheap model call classifies a vision response as a refusal or a
noninformational answer ("I'm sorry, I can't help with that", "there is
nothing I can see in the image"). Structured output goes through instructor;
when the model does not return usable JSON the raw reply is searched for
"true" instead.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, cast

import instructor
import litellm
from litellm.types.utils import Choices
from loguru import logger
from pydantic import BaseModel, Field

from pdfscribe.config import PipelineConfig, RefusalConfig
from pdfscribe.constants import REFUSAL_TEXT_LIMIT
from pdfscribe.exceptions import RefusalDetectionError
from pdfscribe.llm.vision import RETRYABLE_ERRORS
from pdfscribe.prompts import PromptManager
from pdfscribe.retry import RetryPolicy, Success, with_retry
from pdfscribe.utils.text import format_error_message


class RefusalVerdict(BaseModel):
    """Structured classifier output."""

    is_refusal: bool = Field(
        description=(
            "Set to true if a refusal or noninformational response is detected, "
            "false otherwise."
        )
    )


@dataclass(frozen=True)
class RefusalCheck:
    """Outcome of one refusal classification.

    ``success`` is False when the classifier itself failed; callers keep the
    original response in that case.
    """

    success: bool
    is_refusal: bool = False
    retries: int = 0
    error: str | None = None


def truncate_candidate(text: str, limit: int = REFUSAL_TEXT_LIMIT) -> str:
    """Cut text to ``limit`` characters, marking the cut with ``...``."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class RefusalDetector:
    """Classify vision responses as refusals.

    Args:
        config: Pipeline settings; the ``refusal`` section picks the model,
                credentials are shared with the vision client
        prompt_manager: Source of the classifier prompts
        completion: Async completion function, ``litellm.acompletion`` by default
    """

    def __init__(
        self,
        config: PipelineConfig,
        prompt_manager: PromptManager | None = None,
        completion: Callable[..., Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config
        self.prompt_manager = prompt_manager or PromptManager()
        self._completion = completion or litellm.acompletion

    @property
    def settings(self) -> RefusalConfig:
        return self.config.refusal

    def build_messages(self, text: str) -> list[dict[str, str]]:
        candidate = truncate_candidate(text)
        return [
            {
                "role": "system",
                "content": self.prompt_manager.get_prompt("refusal_system"),
            },
            {
                "role": "user",
                "content": self.prompt_manager.get_prompt("refusal_user", text=candidate),
            },
        ]

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        api_key = self.config.get_resolved_api_key(strict=False)
        if api_key:
            kwargs["api_key"] = api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        return kwargs

    async def detect(self, text: str) -> RefusalCheck:
        """Classify ``text``, retrying classifier errors with backoff.

        Raises:
            ValueError: If text is empty or not a string
        """
        if not isinstance(text, str) or not text:
            raise ValueError("Response text is required and must be a string")

        messages = self.build_messages(text)
        policy = RetryPolicy(max_retries=self.settings.max_retries)

        async def classify(attempt: int) -> bool:
            return await self._classify(messages)

        outcome = await with_retry(classify, policy, label="Refusal")
        if isinstance(outcome, Success):
            if outcome.value:
                logger.debug(f"[Refusal] Refusal detected: {text[:80]!r}")
            return RefusalCheck(
                success=True, is_refusal=outcome.value, retries=outcome.retries
            )
        return RefusalCheck(
            success=False, retries=outcome.retries, error=outcome.details
        )

    async def _classify(self, messages: list[dict[str, str]]) -> bool:
        try:
            return await self._structured_verdict(messages)
        except RETRYABLE_ERRORS:
            raise
        except Exception as e:
            logger.debug(
                f"[Refusal] Structured output failed ({format_error_message(e)}), "
                "falling back to text reply"
            )
        return await self._text_verdict(messages)

    async def _structured_verdict(self, messages: list[dict[str, str]]) -> bool:
        client = instructor.from_litellm(self._completion, mode=instructor.Mode.MD_JSON)
        verdict = await client.chat.completions.create(
            response_model=RefusalVerdict,
            messages=cast(Any, messages),
            max_retries=1,
            **self._request_kwargs(),
        )
        return verdict.is_refusal

    async def _text_verdict(self, messages: list[dict[str, str]]) -> bool:
        response = await self._completion(messages=messages, **self._request_kwargs())
        if not getattr(response, "choices", None):
            raise RefusalDetectionError("Refusal classifier returned no choices")
        choice = cast(Choices, response.choices[0])
        content = choice.message.content or ""
        return "true" in content.lower()
