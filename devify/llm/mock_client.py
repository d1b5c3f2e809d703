"""
Scripted model provider used for offline/demo mode and tests.
Replays canned responses so the agent loop can run without network access.
"""

from typing import Dict, Iterator, List, Optional, Union

from loguru import logger

from devify.core.errors import ProviderError
from devify.core.usage import UsageData
from devify.llm.base_client import Completion, ModelProvider, ModelStream, StreamChunk

ScriptItem = Union[str, Exception]

DONE_TEXT = "Done."


class ScriptedProvider(ModelProvider):
    """
    Provider that streams a fixed list of responses, one per call.

    An Exception in the script is raised as a ProviderError for that call.
    When the script runs out every further call answers DONE_TEXT.
    """

    def __init__(
        self,
        responses: Optional[List[ScriptItem]] = None,
        fallback_responses: Optional[List[ScriptItem]] = None,
        chunk_size: int = 16,
        usage: Optional[UsageData] = None,
        model: str = "mock-llm",
    ):
        """
        Args:
            responses: One item per stream_chat call
            fallback_responses: One item per complete call
            chunk_size: Characters per streamed chunk
            usage: Usage reported at the end of each call
            model: Model name reported in usage records
        """
        super().__init__(model=model, temperature=0.0, max_tokens=0)
        self.responses = list(responses or [])
        self.fallback_responses = list(fallback_responses or [])
        self.chunk_size = max(1, chunk_size)
        self.usage = usage or UsageData(input_tokens=10, output_tokens=20)
        self.calls: List[List[Dict[str, str]]] = []
        self.system_prompts: List[Optional[str]] = []
        self.fallback_calls = 0
        self.closed_streams = 0

    def _next(self, queue: List[ScriptItem]) -> str:
        item = queue.pop(0) if queue else DONE_TEXT
        if isinstance(item, Exception):
            raise ProviderError(f"Model request failed: {item}", item)
        return item

    def stream_chat(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> ModelStream:
        self.calls.append([dict(m) for m in messages])
        self.system_prompts.append(system_prompt)
        text = self._next(self.responses)
        logger.debug(f"Scripted stream #{len(self.calls)}: {len(text)} chars")

        def chunks() -> Iterator[StreamChunk]:
            for start in range(0, len(text), self.chunk_size):
                yield StreamChunk(text=text[start:start + self.chunk_size])
            yield StreamChunk(usage=self.usage)

        return ModelStream(chunks(), on_close=self._on_close)

    def _on_close(self):
        self.closed_streams += 1

    def complete(self, messages: List[Dict[str, str]], system_prompt: Optional[str] = None) -> Completion:
        self.fallback_calls += 1
        text = self._next(self.fallback_responses)
        return Completion(text=text, usage=self.usage, model=self.model)


def demo_script() -> List[str]:
    """Canned session for --mock: inspect the project, add a file, then stop."""
    return [
        "Let me look at the project first.\n\n"
        '<tool_call>{"name": "list_directory", "arguments": {"path": "."}}</tool_call>',
        "I'll add a short notes file for the project.\n\n"
        '<tool_call>{"name": "write_file", "arguments": {"path": "NOTES.md", '
        '"content": "# Notes\\n\\nCreated by devify in mock mode.\\n"}}</tool_call>',
        "I created NOTES.md. Let me know what you'd like to build next.",
    ]
