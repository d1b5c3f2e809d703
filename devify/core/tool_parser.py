"""
Tool Call Parser
Turns one turn of raw model text into structured tool calls.

Two wire formats are understood:

1. Delimited JSON blocks:
   <tool_call>{"name": "write_file", "arguments": {"path": "a.txt", "content": "hi"}}</tool_call>
2. Tag-style blocks, tried only when no <tool_call> block is present:
   <read_file><path>a.txt</path></read_file>

Local models routinely emit broken JSON (triple quotes, single quotes,
trailing commas, raw newlines), so each <tool_call> candidate goes through
several parse strategies before it is dropped.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from devify.core.arguments import clean_path, split_list
from devify.core.tool_definitions import CANONICAL_TOOLS, TOOL_ALIASES, resolve_tool_name


@dataclass
class ToolCall:
    """A single structured request to perform one project action."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedResponse:
    """Narration around the tool calls plus the calls themselves."""
    text_before: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    text_after: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


TOOL_CALL_PATTERN = re.compile(r"<tool_call>\s*([\s\S]*?)\s*</tool_call>")

# Fields whose values are free text and may span many lines
CONTENT_FIELDS = ["content", "search", "replace", "old_content", "new_content", "code", "text", "body", "data"]

# Short single-line string fields recovered by the manual extractor
SCALAR_FIELDS = [
    "path", "file_path", "filepath", "filename", "directory", "dir", "folder",
    "command", "cmd", "query", "provider", "action", "section",
    "schedule", "cron_expression", "description",
]

LIST_FIELDS = ["paths", "files", "file_paths", "entries", "steps"]

# Tag-style children that carry lists
LIST_TAGS = {"paths", "files", "file_paths", "filenames", "entries"}

# Bare text inside a tag-style block maps to the tool's main parameter
PRIMARY_PARAMETER = {
    "read_file": "path",
    "list_directory": "path",
    "create_directory": "path",
    "delete_file": "path",
    "read_multiple_files": "paths",
    "run_command": "command",
    "web_search": "query",
}

_CHILD_TAG_PATTERN = re.compile(r"<([A-Za-z_][\w\-]*)>([\s\S]*?)</\1\s*>")
_FENCED_BLOCK_PATTERN = re.compile(r"```[\s\S]*?(?:```|\Z)")


def tag_names() -> List[str]:
    """
    Outer tag names accepted in the tag-style format.

    Single-word aliases (cat, dir, search, list...) collide with HTML
    elements and ordinary words, so only canonical names and multi-word
    aliases open a tag-style block.
    """
    names = set(CANONICAL_TOOLS) | {alias for alias in TOOL_ALIASES if "_" in alias}
    return sorted(names, key=len, reverse=True)


def _build_tag_pattern() -> "re.Pattern":
    alternation = "|".join(re.escape(name) for name in tag_names())
    return re.compile(rf"<({alternation})(?:\s[^>]*)?>([\s\S]*?)</\1\s*>", re.IGNORECASE)


TAG_BLOCK_PATTERN = _build_tag_pattern()


def parse_tool_calls(response: str) -> ParsedResponse:
    """
    Parse a model response for tool calls.

    Args:
        response: Full text of one model turn

    Returns:
        ParsedResponse. When no call survives parsing, the whole response is
        narration in text_before and has_tool_calls is False.
    """
    response = response or ""
    matches = list(TOOL_CALL_PATTERN.finditer(response))

    if matches:
        calls = []
        for match in matches:
            call = parse_candidate(match.group(1).strip())
            if call:
                calls.append(call)
        if not calls:
            return ParsedResponse(text_before=response)
        return ParsedResponse(
            text_before=response[:matches[0].start()].strip(),
            tool_calls=calls,
            text_after=response[matches[-1].end():].strip(),
        )

    return _parse_tag_blocks(response)


def parse_candidate(raw: str) -> Optional[ToolCall]:
    """
    Run the parse strategies over one <tool_call> body in order.

    Returns None (after logging) when every strategy fails or the tool name
    does not resolve to a canonical tool.
    """
    strategies: List[Callable[[str], Optional[ToolCall]]] = [
        _parse_json,
        _extract_manually,
        _parse_nested,
        _parse_lines,
    ]
    for strategy in strategies:
        try:
            call = strategy(raw)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"{strategy.__name__} raised {e}")
            call = None
        if call:
            return call

    logger.warning(f"All tool call parse strategies failed for: {raw[:200]}")
    return None


# ── Strategy (a): normalize then strict parse ──────────────────

def _as_json_string(content: str) -> str:
    return json.dumps(content, ensure_ascii=False)


def clean_json_string(raw: str) -> str:
    """Repair the JSON defects local models commonly produce."""
    cleaned = re.sub(r"\$\([^)]*\)/", "", raw)

    # "key": """multi-line"""
    cleaned = re.sub(
        r':\s*"{3,}\n?([\s\S]*?)"{3,}',
        lambda m: ": " + _as_json_string(m.group(1)),
        cleaned,
    )

    # "key": ```multi-line``` or `value`
    cleaned = re.sub(
        r":\s*`{1,3}\n?([\s\S]*?)`{1,3}",
        lambda m: ": " + _as_json_string(m.group(1)),
        cleaned,
    )

    # 'key': ...
    cleaned = re.sub(r"([{,]\s*)'(\w+)'\s*:", r'\1"\2":', cleaned)

    # "key": 'value'
    cleaned = re.sub(
        r"\"(\w+)\":\s*'([^'\n]*)'",
        lambda m: f'"{m.group(1)}": ' + _as_json_string(m.group(2)),
        cleaned,
    )

    # Trailing commas
    cleaned = re.sub(r",\s*([\]}])", r"\1", cleaned)

    return cleaned


def _loads_lenient(text: str) -> Any:
    # strict=False accepts raw newlines and tabs inside string values
    return json.loads(text, strict=False)


def _call_from_object(parsed: Any) -> Optional[ToolCall]:
    if not isinstance(parsed, dict) or not parsed.get("name"):
        return None

    name = resolve_tool_name(parsed["name"])
    if not name:
        logger.warning(f"Unknown tool name in tool call: {parsed['name']}")
        return None

    args = parsed.get("arguments", parsed.get("parameters"))
    if isinstance(args, str):
        args = _loads_lenient(clean_json_string(args))
    args = dict(args) if isinstance(args, dict) else {}

    # Flat form: {"name": "read_file", "path": "a.txt"}
    for key, value in parsed.items():
        if key not in ("name", "arguments", "parameters"):
            args.setdefault(key, value)

    return ToolCall(name=name, arguments=args)


def _parse_json(raw: str) -> Optional[ToolCall]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = _loads_lenient(clean_json_string(raw))
    return _call_from_object(parsed)


# ── Strategy (b): manual field extraction ──────────────────────

def read_json_string(text: str, start: int) -> str:
    """
    Decode a JSON string body beginning just after its opening quote.

    Walks character by character, decoding escape sequences, and stops at
    the first unescaped quote. An unterminated string returns everything up
    to the end of the text.
    """
    escapes = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f"}
    out = []
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt == "u" and re.match(r"[0-9a-fA-F]{4}", text[i + 2:i + 6]):
                out.append(chr(int(text[i + 2:i + 6], 16)))
                i += 6
                continue
            out.append(escapes.get(nxt, nxt))
            i += 2
            continue
        if ch == '"':
            break
        out.append(ch)
        i += 1
    return "".join(out)


def _extract_content_field(text: str, key: str) -> Optional[str]:
    triple = re.search(rf'"{key}"\s*:\s*"{{3,}}\n?([\s\S]*?)"{{3,}}', text)
    if triple:
        return triple.group(1)

    backtick = re.search(rf'"{key}"\s*:\s*`{{1,3}}\n?([\s\S]*?)`{{1,3}}', text)
    if backtick:
        return backtick.group(1)

    quoted = re.search(rf'"{key}"\s*:\s*"', text)
    if quoted:
        return read_json_string(text, quoted.end())
    return None


def _extract_manually(raw: str) -> Optional[ToolCall]:
    """
    Pull fields out with regexes when the block is not valid JSON at all.

    Requires a resolvable tool name and at least one recovered argument.
    """
    names = re.findall(r'"(?:name|tool|tool_name)"\s*:\s*"([\w\-]+)"', raw)
    if not names:
        return None
    name = resolve_tool_name(names[0])
    if not name:
        return None

    args: Dict[str, Any] = {}
    # A second "name" belongs to the arguments (e.g. a scheduled task name)
    task_name = re.findall(r'"name"\s*:\s*"([^"]*)"', raw)
    if len(task_name) > 1:
        args["name"] = task_name[1]

    for key in SCALAR_FIELDS:
        match = re.search(rf'"{key}"\s*:\s*"([^"]*)"', raw)
        if match:
            value = match.group(1)
            args[key] = clean_path(value) if key == "path" else value

    for key in CONTENT_FIELDS:
        value = _extract_content_field(raw, key)
        if value is not None and (value or key in ("content", "replace", "new_content")):
            args[key] = value

    for key in LIST_FIELDS:
        match = re.search(rf'"{key}"\s*:\s*\[([\s\S]*?)\]', raw)
        if match:
            items = re.findall(r'"([^"]+)"', match.group(1))
            if items:
                args[key] = items

    params = re.search(r'"params"\s*:\s*(\{[\s\S]*?\})\s*[,}]', raw)
    if params:
        try:
            args["params"] = _loads_lenient(clean_json_string(params.group(1)))
        except ValueError:
            logger.debug("Could not parse params object, leaving it out")

    if not args:
        return None
    return ToolCall(name=name, arguments=args)


# ── Strategy (c): nested name/arguments wrapper ────────────────

_WRAPPER_ARG_KEYS = ("arguments", "parameters", "args", "input", "params")


def _find_nested(node: Any, depth: int = 0) -> Optional[ToolCall]:
    if depth > 4:
        return None
    if isinstance(node, dict):
        name = node.get("name")
        if isinstance(name, str) and resolve_tool_name(name):
            for key in _WRAPPER_ARG_KEYS:
                args = node.get(key)
                if isinstance(args, str):
                    args = _loads_lenient(clean_json_string(args))
                if isinstance(args, dict):
                    return ToolCall(name=resolve_tool_name(name), arguments=dict(args))
        # {"read_file": {"path": "a.txt"}}
        if len(node) == 1:
            (key, value), = node.items()
            if resolve_tool_name(key) and isinstance(value, dict):
                return ToolCall(name=resolve_tool_name(key), arguments=dict(value))
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None

    for child in children:
        found = _find_nested(child, depth + 1)
        if found:
            return found
    return None


def _parse_nested(raw: str) -> Optional[ToolCall]:
    cleaned = clean_json_string(raw)
    decoder = json.JSONDecoder(strict=False)
    start = cleaned.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(cleaned, start)
        except ValueError:
            start = cleaned.find("{", start + 1)
            continue
        return _find_nested(parsed)
    return None


# ── Strategy (d): line-based "key: value" ──────────────────────

def _strip_quotes(value: str) -> str:
    return re.sub(r"^[\"']|[\"']$", "", value.strip())


def _parse_lines(raw: str) -> Optional[ToolCall]:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if not lines:
        return None

    first = lines[0]
    lowered = first.lower()
    for prefix in ("name:", "tool:"):
        if lowered.startswith(prefix):
            first = first[len(prefix):]
            break
    name = resolve_tool_name(_strip_quotes(first))
    if not name:
        return None

    args: Dict[str, Any] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        key = _strip_quotes(key)
        value = _strip_quotes(value)
        if value.startswith(("[", "{")):
            try:
                value = json.loads(value)
            except ValueError:
                logger.debug(f"Keeping {key} as text: not valid JSON")
        args[key] = value

    return ToolCall(name=name, arguments=args)


# ── Tag-style format ───────────────────────────────────────────

def _trim_block_text(value: str) -> str:
    """Drop the single newline that usually follows/precedes a tag."""
    if value.startswith("\r\n"):
        value = value[2:]
    elif value.startswith("\n"):
        value = value[1:]
    if value.endswith("\r\n"):
        value = value[:-2]
    elif value.endswith("\n"):
        value = value[:-1]
    return value


def _parse_tag_arguments(name: str, inner: str) -> Dict[str, Any]:
    args: Dict[str, Any] = {}
    for child in _CHILD_TAG_PATTERN.finditer(inner):
        key = child.group(1).lower()
        value = child.group(2)
        if key in LIST_TAGS:
            args[key] = [clean_path(item) for item in split_list(value)]
        elif key == "params":
            try:
                args[key] = _loads_lenient(value)
            except ValueError:
                args[key] = value.strip()
        elif key in CONTENT_FIELDS:
            args[key] = _trim_block_text(value)
        else:
            args[key] = value.strip()

    if not args and inner.strip() and name in PRIMARY_PARAMETER:
        key = PRIMARY_PARAMETER[name]
        args[key] = split_list(inner) if key == "paths" else inner.strip()
    return args


def _parse_tag_blocks(response: str) -> ParsedResponse:
    # Markup shown inside ``` fences is example text, not a request
    fences = [(m.start(), m.end()) for m in _FENCED_BLOCK_PATTERN.finditer(response)]
    matches = [
        match for match in TAG_BLOCK_PATTERN.finditer(response)
        if not any(start <= match.start() < end for start, end in fences)
    ]
    calls = []
    for match in matches:
        name = resolve_tool_name(match.group(1))
        args = _parse_tag_arguments(name, match.group(2))
        calls.append(ToolCall(name=name, arguments=args))

    if not calls:
        return ParsedResponse(text_before=response)
    return ParsedResponse(
        text_before=response[:matches[0].start()].strip(),
        tool_calls=calls,
        text_after=response[matches[-1].end():].strip(),
    )


# ── Results uphill ─────────────────────────────────────────────

def format_tool_results(results: List[Any]) -> str:
    """
    Format tool results into the message sent back to the model.

    Args:
        results: ToolResult objects (anything with .tool and .message)

    Returns:
        One <tool_result> block, or several prefixed with [tool] and
        separated by blank lines.
    """
    if len(results) == 1:
        return f"<tool_result>\n{results[0].message}\n</tool_result>"
    return "\n\n".join(
        f"<tool_result>\n[{r.tool}] {r.message}\n</tool_result>" for r in results
    )
