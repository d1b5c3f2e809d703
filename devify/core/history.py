"""
History compaction before each provider call.

Two passes, both idempotent and order-preserving:
1. Tool-result turns that the model has already answered are collapsed to
   one-line synopses. The newest unanswered tool-result turn stays intact.
2. Only the most recent user/assistant pairs are kept.
"""

import re
from typing import Dict, List, Optional

COMPACTED_MARKER = "[compacted tool results]"

_RESULT_BLOCK = re.compile(r"<tool_result>\s*([\s\S]*?)\s*</tool_result>")
_TOOL_PREFIX = re.compile(r"^\[(\w+)\]\s*")
_READ_HEADER = re.compile(r"^Contents of (.+?):$")
_LIST_HEADER = re.compile(r"^Listing of (.+?) \((\d+) entries\):$")
_MULTI_READ_HEADER = re.compile(r"^### (.+)$", re.MULTILINE)

MAX_SYNOPSIS_CHARS = 120

Message = Dict[str, str]


def is_tool_result_turn(message: Message) -> bool:
    return message.get("role") == "user" and "<tool_result>" in (message.get("content") or "")


def _fenced_line_count(body: str) -> int:
    lines = body.splitlines()
    if len(lines) >= 2 and lines[0].startswith("```") and lines[-1].startswith("```"):
        lines = lines[1:-1]
        # Files ending in a newline leave one empty line before the closing fence
        if lines and not lines[-1]:
            lines.pop()
    return len(lines)


def summarize_result(block: str) -> str:
    """
    One-line synopsis of a single tool result.

    "[read path — N lines]" for reads, "[listed path — N entries]" for
    listings, otherwise the first line of the message.
    """
    tool = None
    prefix = _TOOL_PREFIX.match(block)
    if prefix:
        tool = prefix.group(1)
        block = block[prefix.end():]

    first, _, rest = block.partition("\n")
    first = first.strip()

    read = _READ_HEADER.match(first)
    if read and rest.startswith("```"):
        return f"[read {read.group(1)} — {_fenced_line_count(rest)} lines]"

    listing = _LIST_HEADER.match(first)
    if listing:
        return f"[listed {listing.group(1)} — {listing.group(2)} entries]"

    if first.startswith("### "):
        paths = _MULTI_READ_HEADER.findall(block)
        return f"[read {len(paths)} files: {', '.join(p.strip() for p in paths)}]"

    if len(first) > MAX_SYNOPSIS_CHARS:
        first = first[:MAX_SYNOPSIS_CHARS] + "..."
    return f"[{tool}] {first}" if tool else first


def collapse_tool_results(messages: List[Message]) -> List[Message]:
    """Collapse every tool-result turn that is followed by an assistant turn."""
    last_assistant: Optional[int] = None
    for index, message in enumerate(messages):
        if message.get("role") == "assistant":
            last_assistant = index

    compacted = []
    for index, message in enumerate(messages):
        if last_assistant is not None and index < last_assistant and is_tool_result_turn(message):
            blocks = _RESULT_BLOCK.findall(message["content"])
            synopsis = "\n".join(summarize_result(b) for b in blocks)
            compacted.append({**message, "content": f"{COMPACTED_MARKER}\n{synopsis}"})
        else:
            compacted.append(message)
    return compacted


def keep_recent_pairs(messages: List[Message], max_pairs: int) -> List[Message]:
    """Keep the last `max_pairs` user/assistant pairs; the result starts with a user turn."""
    if max_pairs <= 0:
        return []
    recent = messages[-max_pairs * 2:]
    start = 0
    while start < len(recent) and recent[start].get("role") != "user":
        start += 1
    return list(recent[start:])


class HistoryCompactor:
    """Applies both compaction passes. Never mutates its input."""

    def __init__(self, max_pairs: Optional[int] = None):
        """
        Args:
            max_pairs: Pairs kept uphill (defaults to config.history_pairs)
        """
        if max_pairs is None:
            from devify.core.config import config
            max_pairs = config.history_pairs
        self.max_pairs = max_pairs

    def compact(self, messages: List[Message]) -> List[Message]:
        return keep_recent_pairs(collapse_tool_results(messages), self.max_pairs)
