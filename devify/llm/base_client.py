"""
Base model provider interface.
All providers stream chat completions as text chunks plus token usage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from devify.core.usage import UsageData


@dataclass
class StreamChunk:
    """One increment of a streamed response. The final chunk may carry only usage."""
    text: str = ""
    usage: Optional[UsageData] = None


@dataclass
class Completion:
    """Result of a non-streamed call."""
    text: str
    usage: UsageData
    model: str


class ModelStream:
    """
    Iterator over StreamChunks that can be hard-cancelled.

    close() stops iteration and releases the underlying network stream.
    abort() may be called from another thread: it releases the network
    stream and iteration stops at the next chunk boundary.
    """

    def __init__(self, chunks: Iterator[StreamChunk], on_close: Optional[Callable[[], None]] = None):
        self._chunks = chunks
        self._on_close = on_close
        self._released = False
        self.aborted = False
        self.closed = False

    def __iter__(self) -> "ModelStream":
        return self

    def __next__(self) -> StreamChunk:
        if self.closed or self.aborted:
            raise StopIteration
        return next(self._chunks)

    def _release(self):
        if self._released:
            return
        self._released = True
        if self._on_close:
            self._on_close()

    def abort(self):
        self.aborted = True
        self._release()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._release()
        close = getattr(self._chunks, "close", None)
        if close:
            close()

    def __enter__(self) -> "ModelStream":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ModelProvider(ABC):
    """Abstract base class for model providers."""

    def __init__(self, model: str, temperature: float = 0.7, max_tokens: int = 4096):
        """
        Initialize the provider.

        Args:
            model: Model identifier
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate per call
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @staticmethod
    def build_messages(messages: List[Dict[str, str]], system_prompt: Optional[str]) -> List[Dict[str, str]]:
        """Prepend the system prompt as a system message."""
        if not system_prompt:
            return list(messages)
        return [{"role": "system", "content": system_prompt}] + list(messages)

    @abstractmethod
    def stream_chat(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> ModelStream:
        """
        Stream a chat completion.

        Args:
            messages: Conversation as dicts with 'role' and 'content'
            system_prompt: System prompt for this call

        Returns:
            ModelStream of StreamChunks

        Raises:
            ProviderError: When the request fails after retries
        """

    @abstractmethod
    def complete(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> Completion:
        """
        Non-streamed chat completion, used when a stream produced no text.

        Raises:
            ProviderError: When the request fails after retries
        """

    def __repr__(self) -> str:
        """String representation."""
        return f"{self.__class__.__name__}(model={self.model})"
