"""
Conversation orchestrator: the bounded agentic loop.

Each iteration streams one model turn, parses tool calls out of it, runs them
in order and feeds the results back as a user turn. The loop stops when a
turn has no tool calls, when there is no project to act on, when the user
cancels, or when the iteration cap is reached.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger

from devify.core.errors import ProviderError
from devify.core.history import HistoryCompactor
from devify.core.tool_executors import ToolExecutor, ToolResult
from devify.core.tool_parser import format_tool_results, parse_tool_calls
from devify.core.usage import UsageTracker
from devify.llm.base_client import ModelProvider, ModelStream

CONTINUE_MESSAGE = "Continue from where you left off."

EventCallback = Callable[[str, Any], None]


class LoopState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    PARSING_TOOL_CALLS = "parsing_tool_calls"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    CANCELLED = "cancelled"
    ITERATION_CAP_REACHED = "iteration_cap_reached"
    ERROR = "error"


@dataclass
class LoopOutcome:
    """How one bounded loop ended."""
    state: LoopState
    iterations: int = 0
    results: List[ToolResult] = field(default_factory=list)
    files_changed: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def can_continue(self) -> bool:
        return self.state == LoopState.ITERATION_CAP_REACHED


class ConversationOrchestrator:
    """
    Drives one chat session.

    One loop runs at a time. cancel() may be called from another thread
    (e.g. a Ctrl+C handler); it is honoured between stream chunks and
    between tool executions, and it releases the active model stream.
    """

    def __init__(
        self,
        provider: ModelProvider,
        executor: Optional[ToolExecutor] = None,
        system_prompt: Union[str, Callable[[], str], None] = None,
        max_iterations: Optional[int] = None,
        compactor: Optional[HistoryCompactor] = None,
        usage_tracker: Optional[UsageTracker] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: Streaming model provider
            executor: Tool executor for the open project (None when no project is open)
            system_prompt: Prompt string, or a callable rebuilt before every call
            max_iterations: Provider calls allowed per loop (defaults to config.max_iterations)
            compactor: History compactor applied before every call
            usage_tracker: Receives one record per completed provider call
            on_event: Progress callback: (kind, data) with kind in
                text, tool_start, tool_result, iteration_cap, error
        """
        if max_iterations is None:
            from devify.core.config import config
            max_iterations = config.max_iterations

        self.provider = provider
        self.executor = executor
        self.system_prompt = system_prompt
        self.max_iterations = max(1, max_iterations)
        self.compactor = compactor or HistoryCompactor()
        self.usage = usage_tracker or UsageTracker()
        self.on_event = on_event
        self.messages: List[Dict[str, str]] = []
        self.state = LoopState.IDLE

        self._cancel = threading.Event()
        self._stream_lock = threading.Lock()
        self._active_stream: Optional[ModelStream] = None

    # ── control ────────────────────────────────────────────────

    def cancel(self):
        """Request cancellation and release the active model stream."""
        self._cancel.set()
        with self._stream_lock:
            stream = self._active_stream
        if stream is not None:
            stream.abort()
        logger.info("Cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def send(self, user_message: str) -> LoopOutcome:
        """Append a user message and run a bounded loop."""
        self.messages.append({"role": "user", "content": user_message})
        return self._run()

    def resume(self, message: str = CONTINUE_MESSAGE) -> LoopOutcome:
        """Start a fresh bounded loop on the same conversation, e.g. after the iteration cap."""
        return self.send(message)

    # ── internals ──────────────────────────────────────────────

    def _emit(self, kind: str, data: Any = None):
        if self.on_event:
            self.on_event(kind, data)

    def _set_state(self, state: LoopState):
        self.state = state
        logger.debug(f"Loop state: {state.value}")

    def _build_system_prompt(self) -> Optional[str]:
        if callable(self.system_prompt):
            return self.system_prompt()
        return self.system_prompt

    def _finish(self, outcome: LoopOutcome, state: LoopState) -> LoopOutcome:
        outcome.state = state
        self._set_state(state)
        return outcome

    def _stream_turn(self) -> Tuple[str, bool]:
        """
        Run one provider call.

        Returns:
            (text, cancelled); partial text is kept when cancelled

        Raises:
            ProviderError: When the provider call fails
        """
        system_prompt = self._build_system_prompt()
        payload = self.compactor.compact(self.messages)
        stream = self.provider.stream_chat(payload, system_prompt)
        with self._stream_lock:
            self._active_stream = stream

        parts: List[str] = []
        usage = None
        try:
            for chunk in stream:
                if self._cancel.is_set():
                    break
                if chunk.usage is not None:
                    usage = chunk.usage
                if chunk.text:
                    parts.append(chunk.text)
                    self._emit("text", chunk.text)
        except Exception:
            # Aborting from another thread can break the read in progress
            if not self._cancel.is_set():
                raise
            logger.debug("Stream read interrupted by cancellation")
        finally:
            with self._stream_lock:
                self._active_stream = None
            stream.close()

        text = "".join(parts)
        if self._cancel.is_set():
            return text, True

        self.usage.record(self.provider.model, usage)

        if not text.strip():
            logger.info("Stream produced no text; making a non-streamed call")
            completion = self.provider.complete(payload, system_prompt)
            self.usage.record(self.provider.model, completion.usage, fallback=True)
            text = completion.text
            if text:
                self._emit("text", text)

        return text, self._cancel.is_set()

    def _run(self) -> LoopOutcome:
        self._cancel.clear()
        outcome = LoopOutcome(state=LoopState.IDLE)

        for iteration in range(1, self.max_iterations + 1):
            outcome.iterations = iteration
            self._set_state(LoopState.STREAMING)
            logger.info(f"Iteration {iteration}/{self.max_iterations}")

            try:
                text, cancelled = self._stream_turn()
            except ProviderError as e:
                logger.error(f"Provider call failed: {e}")
                outcome.error = str(e)
                self._emit("error", str(e))
                return self._finish(outcome, LoopState.ERROR)

            if text:
                self.messages.append({"role": "assistant", "content": text})
            if cancelled:
                return self._finish(outcome, LoopState.CANCELLED)

            self._set_state(LoopState.PARSING_TOOL_CALLS)
            parsed = parse_tool_calls(text)
            if not parsed.has_tool_calls:
                return self._finish(outcome, LoopState.DONE)
            if self.executor is None:
                logger.info("Tool calls ignored: no project is open")
                return self._finish(outcome, LoopState.DONE)

            self._set_state(LoopState.EXECUTING_TOOLS)
            results: List[ToolResult] = []
            for call in parsed.tool_calls:
                if self._cancel.is_set():
                    break
                self._emit("tool_start", call)
                result = self.executor.execute(call)
                results.append(result)
                self._emit("tool_result", result)

            outcome.results.extend(results)
            for path in (p for r in results for p in r.files_changed):
                if path not in outcome.files_changed:
                    outcome.files_changed.append(path)

            if results:
                self.messages.append({"role": "user", "content": format_tool_results(results)})
            if self._cancel.is_set():
                return self._finish(outcome, LoopState.CANCELLED)

        logger.warning(f"Reached the iteration cap ({self.max_iterations})")
        self._emit("iteration_cap", outcome.iterations)
        return self._finish(outcome, LoopState.ITERATION_CAP_REACHED)
