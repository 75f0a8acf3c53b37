from __future__ import annotations

import logging
from typing import Protocol

import openai
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a professional Korean political communications aide. Return only the JSON array requested."""

TRANSIENT_MARKERS = ("429", "502", "503", "try again later", "temporarily unavailable", "timeout")


class UpstreamError(RuntimeError):
    """Raised by a text generator when the model call fails.

    ``transient`` tells the invoker whether a retry may succeed.
    """

    def __init__(self, message: str, *, transient: bool, status_code: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class TextGenerator(Protocol):
    model_name: str

    async def generate(self, prompt: str) -> str:
        ...


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamError):
        return exc.transient
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def _translate_openai_error(exc: openai.OpenAIError) -> UpstreamError:
    if isinstance(exc, openai.RateLimitError):
        # insufficient_quota arrives as a 429 but never clears on retry
        if getattr(exc, "code", None) == "insufficient_quota":
            return UpstreamError("OpenAI quota exhausted.", transient=False, status_code=429)
        return UpstreamError("OpenAI rate limit reached.", transient=True, status_code=429)
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamError("OpenAI request timeout.", transient=True)
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamError("OpenAI connection failed.", transient=True)
    if isinstance(exc, openai.InternalServerError):
        return UpstreamError("OpenAI temporarily unavailable.", transient=True, status_code=exc.status_code)
    if isinstance(exc, openai.APIStatusError):
        return UpstreamError(
            f"OpenAI request rejected with status {exc.status_code}.",
            transient=False,
            status_code=exc.status_code,
        )
    return UpstreamError("OpenAI request failed.", transient=False)


class OpenAITextGenerator:
    """Generate raw draft text with the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.6,
        max_output_tokens: int = 8192,
    ) -> None:
        # retries belong to ResilientInvoker
        self._client = AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model_name = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
                top_p=0.8,
                max_tokens=self._max_output_tokens,
                n=1,
            )
        except openai.OpenAIError as exc:
            raise _translate_openai_error(exc) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise UpstreamError("OpenAI returned empty response.", transient=True)

        logger.debug("OpenAI response received (%s chars)", len(content))
        return content
