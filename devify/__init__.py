"""
Devify - agentic coding assistant engine.
Turns free-text model output into sandboxed project file and shell actions.
"""

__version__ = "0.6.0"

from devify.core.orchestrator import ConversationOrchestrator, LoopOutcome, LoopState
from devify.core.tool_executors import ToolExecutor, ToolResult

__all__ = [
    "ConversationOrchestrator",
    "LoopOutcome",
    "LoopState",
    "ToolExecutor",
    "ToolResult",
]
