"""
OpenAI-compatible provider.
Works with api.openai.com and any endpoint that speaks the same API via base_url.
"""

import time
from typing import Callable, Dict, Iterator, List, Optional, TypeVar

from loguru import logger
from openai import (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from devify.core.errors import ProviderError
from devify.core.usage import UsageData
from devify.llm.base_client import Completion, ModelProvider, ModelStream, StreamChunk

T = TypeVar("T")


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Retry a function with exponential backoff on network errors.

    Args:
        func: Function to retry
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay between retries
        backoff_factor: Multiplier for delay after each retry
        sleep: Sleep function (defaults to time.sleep)

    Returns:
        Result of the function

    Raises:
        Last exception if all retries fail
    """
    sleep = sleep or time.sleep
    delay = initial_delay
    last_exception: Optional[BaseException] = None

    for attempt in range(max_retries + 1):
        try:
            return func()
        except (APIConnectionError, APITimeoutError, ConnectionError, TimeoutError, InternalServerError) as e:
            last_exception = e
            if attempt == max_retries:
                logger.error(f"All {max_retries} retries failed: {e}")
                raise

            error_type = "Server error (500)" if isinstance(e, InternalServerError) else "Network error"
            logger.warning(f"{error_type} (attempt {attempt + 1}/{max_retries + 1}): {e}")
            logger.info(f"Retrying in {delay:.1f}s...")
            sleep(delay)
            delay = min(delay * backoff_factor, max_delay)
        except RateLimitError as e:
            last_exception = e
            if attempt == max_retries:
                logger.error(f"Rate limit exceeded after {max_retries} retries")
                raise

            # Rate limits usually need longer waits
            wait_time = min(delay * 2, 60.0)
            logger.warning(f"Rate limited (attempt {attempt + 1}/{max_retries + 1})")
            logger.info(f"Waiting {wait_time:.1f}s before retry...")
            sleep(wait_time)
            delay = min(delay * backoff_factor, max_delay)

    raise last_exception


def _usage_from(raw) -> Optional[UsageData]:
    if raw is None:
        return None
    details = getattr(raw, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", 0) if details else 0
    return UsageData(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
        cache_read_tokens=cached or 0,
    )


class OpenAIProvider(ModelProvider):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: API key (local endpoints accept any placeholder)
            model: Model name
            base_url: Alternate OpenAI-compatible endpoint
            temperature: Sampling temperature
            max_tokens: Max tokens per call
            timeout: Request timeout in seconds
        """
        super().__init__(model, temperature, max_tokens)
        self.client = OpenAI(api_key=api_key or "not-needed", base_url=base_url, timeout=timeout)
        logger.info(f"OpenAI provider initialized: {model}{f' via {base_url}' if base_url else ''}")

    def stream_chat(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> ModelStream:
        payload = self.build_messages(messages, system_prompt)

        def make_request():
            return self.client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )

        try:
            stream = retry_with_backoff(make_request, max_retries=3)
        except (OpenAIError, ConnectionError, TimeoutError) as e:
            logger.error(f"OpenAI streaming error: {e}")
            raise ProviderError(f"Model request failed: {e}", e) from e

        def chunks() -> Iterator[StreamChunk]:
            try:
                for chunk in stream:
                    usage = _usage_from(getattr(chunk, "usage", None))
                    text = ""
                    if chunk.choices:
                        text = chunk.choices[0].delta.content or ""
                    if text or usage:
                        yield StreamChunk(text=text, usage=usage)
            except (OpenAIError, ConnectionError, TimeoutError) as e:
                logger.error(f"OpenAI stream interrupted: {e}")
                raise ProviderError(f"Model stream failed: {e}", e) from e

        return ModelStream(chunks(), on_close=stream.close)

    def complete(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> Completion:
        payload = self.build_messages(messages, system_prompt)
        try:
            response = retry_with_backoff(
                lambda: self.client.chat.completions.create(
                    model=self.model,
                    messages=payload,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                max_retries=3,
            )
        except (OpenAIError, ConnectionError, TimeoutError) as e:
            logger.error(f"OpenAI API error: {e}")
            raise ProviderError(f"Model request failed: {e}", e) from e

        text = (response.choices[0].message.content or "") if response.choices else ""
        usage = _usage_from(response.usage) or UsageData()
        logger.debug(f"OpenAI response: {usage.total_tokens} tokens")
        return Completion(text=text, usage=usage, model=self.model)
