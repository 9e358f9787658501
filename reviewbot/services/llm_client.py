"""
LLM client for review generation.

Wraps an OpenAI-compatible chat completions endpoint (GitHub Models by
default) and translates SDK failures into errors the review processor
acts on:

- PayloadTooLargeError: the prompt exceeds what the model accepts
- LLMRateLimitError: the provider throttled us
- LLMTimeoutError: the call did not finish in time
- LLMServiceError: network failure or 5xx
- LLMRequestError: any other rejected request
"""

import time
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from reviewbot.utils.logging import get_logger, log_api_call
from reviewbot.utils.resilience import PermanentError, TransientError

logger = get_logger(__name__)

# Error codes some providers return instead of HTTP 413
_PAYLOAD_TOO_LARGE_CODES = {"context_length_exceeded", "tokens_limit_reached", "string_above_max_length"}


class LLMError(Exception):
    """Base exception for LLM failures."""
    pass


class PayloadTooLargeError(LLMError):
    """The request is too large for the model."""
    pass


class LLMRateLimitError(LLMError, TransientError):
    """The provider rate limited the request."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError, TransientError):
    """The request timed out."""
    pass


class LLMServiceError(LLMError, TransientError):
    """Network failure or provider-side error."""
    pass


class LLMRequestError(LLMError, PermanentError):
    """The provider rejected the request."""
    pass


class LLMResponse(BaseModel):
    """Completion text with usage information."""

    content: str
    tokens_used: int
    model: str


def _retry_after(error: openai.APIStatusError) -> Optional[float]:
    value = error.response.headers.get("retry-after") if error.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _error_code(error: openai.APIStatusError) -> Optional[str]:
    code = getattr(error, "code", None)
    if code:
        return code
    body = error.body if isinstance(error.body, dict) else {}
    inner = body.get("error", body)
    return inner.get("code") if isinstance(inner, dict) else None


class LLMClient:
    """Wrapper for the OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize LLM client, falling back to settings for anything omitted.

        Args:
            api_key: Provider API key
            base_url: Endpoint base URL
            model: Default model name
            timeout: Request timeout in seconds
            client: Preconfigured SDK client (mainly for tests)
        """
        from reviewbot.config import settings

        self.model = model or settings.llm_model
        # Retries are owned by the review queue, not the SDK
        self.client = client or AsyncOpenAI(
            api_key=api_key or settings.llm_api_key,
            base_url=base_url or settings.llm_base_url,
            timeout=timeout or settings.llm_timeout_seconds,
            max_retries=0,
        )

    async def generate(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 2000,
        model: Optional[str] = None,
    ) -> LLMResponse:
        """
        Run one chat completion.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            temperature: Sampling temperature
            max_tokens: Completion token budget
            model: Model override for this call

        Returns:
            LLMResponse

        Raises:
            PayloadTooLargeError: Prompt exceeds the model limit
            LLMRateLimitError: Provider throttled the call
            LLMTimeoutError: Call timed out
            LLMServiceError: Network failure or 5xx
            LLMRequestError: Other rejected request
        """
        model_name = model or self.model
        start = time.monotonic()

        try:
            response = await self.client.chat.completions.create(
                model=model_name,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as e:
            self._log_failure(model_name, start, e)
            raise LLMTimeoutError(f"LLM request timed out: {e}") from e
        except openai.APIConnectionError as e:
            self._log_failure(model_name, start, e)
            raise LLMServiceError(f"LLM connection failed: {e}") from e
        except openai.RateLimitError as e:
            self._log_failure(model_name, start, e)
            raise LLMRateLimitError(f"LLM rate limited: {e}", retry_after=_retry_after(e)) from e
        except openai.APIStatusError as e:
            self._log_failure(model_name, start, e)
            if e.status_code == 413 or _error_code(e) in _PAYLOAD_TOO_LARGE_CODES:
                raise PayloadTooLargeError(f"LLM payload too large: {e}") from e
            if e.status_code >= 500:
                raise LLMServiceError(f"LLM service error ({e.status_code}): {e}") from e
            raise LLMRequestError(f"LLM request rejected ({e.status_code}): {e}") from e

        log_api_call(
            logger, "llm", "chat.completions", "POST",
            status_code=200, duration_ms=(time.monotonic() - start) * 1000
        )

        content = (response.choices[0].message.content or "") if response.choices else ""
        tokens_used = response.usage.total_tokens if response.usage else 0

        return LLMResponse(content=content, tokens_used=tokens_used, model=response.model or model_name)

    def _log_failure(self, model_name: str, start: float, error: Exception) -> None:
        log_api_call(
            logger, "llm", "chat.completions", "POST",
            status_code=getattr(error, "status_code", None),
            duration_ms=(time.monotonic() - start) * 1000,
            error=f"{model_name}: {error}",
        )
