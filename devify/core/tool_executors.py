"""
Tool executors for the agentic loop.

Each canonical tool has one handler. Handlers never raise for expected
outcomes: validation errors, security blocks and collaborator failures all
come back as a ToolResult with success=False so the model can correct itself.
"""

import html
import json
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from devify.core.approval import ApprovalGate, AutoApproveGate, PendingDiff
from devify.core.arguments import (
    resolve_command,
    resolve_content,
    resolve_entries,
    resolve_path,
    resolve_paths,
    resolve_query,
    resolve_replace,
    resolve_search,
    split_list,
)
from devify.core.command_guard import CommandGuard
from devify.core.errors import ToolExecutionError
from devify.core.manifest import ProjectManifest, count_lines, generate_manifest
from devify.core.project_context import ContextStore, ProjectContext
from devify.core.rate_limiter import RateLimiter, get_shared_rate_limiter
from devify.core.sandbox import PathSandbox, is_blocklisted_directory, is_noisy_file, is_sensitive_file
from devify.core.snapshots import SnapshotStore
from devify.core.tool_definitions import CANONICAL_TOOLS, resolve_tool_name
from devify.core.tool_parser import ToolCall
from devify.services.commands import CommandRunner, LocalCommandRunner
from devify.services.connections import ConnectionManager, ConnectorError
from devify.services.files import FileService, LocalFileService
from devify.services.scheduler import TaskScheduler
from devify.services.web_search import WebSearchError, WebSearchService, format_results

HTML_EXTENSIONS = {".html", ".htm"}
MAX_PARALLEL_READS = 8

_FILE_LIKE = re.compile(r"\.\w{1,10}$")
_ENCODED_TAG = re.compile(r"&lt;/?[a-zA-Z!]")
_SECTION_ALIASES = {
    "preference": "preferences",
    "prefs": "preferences",
    "decision": "decisions",
    "tech": "tech_stack",
    "techstack": "tech_stack",
    "stack": "tech_stack",
    "technologies": "tech_stack",
}


@dataclass
class ToolResult:
    """Outcome of one tool call, fed back to the model."""
    tool: str
    success: bool
    message: str
    files_changed: List[str] = field(default_factory=list)


def _fail(tool: str, message: str) -> ToolResult:
    return ToolResult(tool=tool, success=False, message=message)


def sanitize_html(content: str) -> str:
    """
    Undo escaping that the tag-style format leaves in HTML documents.

    Entity-encoded markup (&lt;div&gt;) is unescaped when the document has no
    real tags. Backslash escapes are unescaped when the document has no real
    newlines, which means the model sent a JSON-escaped string verbatim.
    Escaped attribute quotes (href=\\"a.html\\") are always unescaped.
    """
    if _ENCODED_TAG.search(content) and "<" not in content:
        content = html.unescape(content)
    if "\n" not in content and "\\n" in content:
        content = content.replace("\\r\\n", "\n").replace("\\n", "\n").replace("\\t", "\t")
    if '=\\"' in content:
        content = content.replace('\\"', '"')
    return content


class ToolExecutor:
    """Executes parsed tool calls against one project."""

    def __init__(
        self,
        project_root: Union[str, Path],
        file_service: Optional[FileService] = None,
        command_runner: Optional[CommandRunner] = None,
        rate_limiter: Optional[RateLimiter] = None,
        approval_gate: Optional[ApprovalGate] = None,
        manifest: Optional[ProjectManifest] = None,
        context_store: Optional[ContextStore] = None,
        web_search: Optional[WebSearchService] = None,
        connections: Optional[ConnectionManager] = None,
        scheduler: Optional[TaskScheduler] = None,
        snapshots: Optional[SnapshotStore] = None,
        max_read_bytes: Optional[int] = None,
        max_write_bytes: Optional[int] = None,
        list_depth: Optional[int] = None,
    ):
        """
        Initialize the executor.

        Args:
            project_root: Project directory every path is confined to
            file_service: Disk access (defaults to the local filesystem)
            command_runner: Shell access (defaults to subprocess)
            rate_limiter: Per-tool budget (defaults to the process-wide limiter)
            approval_gate: Decides on mutations (defaults to auto-approve)
            manifest: Project manifest to keep in sync (generated when omitted)
            context_store: Where write_context and recent changes are saved
            web_search: Search collaborator
            connections: Third-party connection manager
            scheduler: Scheduled task store
            snapshots: Where file versions are saved before each mutation
            max_read_bytes: Largest file read_file will return
            max_write_bytes: Largest content write_file will accept
            list_depth: Depth of list_directory trees
        """
        from devify.core.config import config

        self.sandbox = PathSandbox(project_root)
        self.root = self.sandbox.root
        self.guard = CommandGuard(self.sandbox)
        self.files = file_service or LocalFileService()
        self.runner = command_runner or LocalCommandRunner()
        self.rate_limiter = rate_limiter or get_shared_rate_limiter()
        self.approval_gate = approval_gate or AutoApproveGate()
        self.manifest = manifest if manifest is not None else generate_manifest(self.root)
        self.context_store = context_store or ContextStore(self.root)
        self.web_search = web_search or WebSearchService()
        self.connections = connections or ConnectionManager()
        self.scheduler = scheduler or TaskScheduler()
        self.snapshots = snapshots or SnapshotStore(self.root)
        self.max_read_bytes = max_read_bytes or config.max_read_bytes
        self.max_write_bytes = max_write_bytes or config.max_write_bytes
        self.list_depth = list_depth or config.list_depth
        self._context: Optional[ProjectContext] = None

        self._handlers: Dict[str, Callable[[Dict[str, Any]], ToolResult]] = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "edit_file": self._edit_file,
            "list_directory": self._list_directory,
            "create_directory": self._create_directory,
            "delete_file": self._delete_file,
            "read_multiple_files": self._read_multiple_files,
            "run_command": self._run_command,
            "web_search": self._web_search,
            "connection": self._connection,
            "write_context": self._write_context,
            "create_scheduled_task": self._create_scheduled_task,
        }

    @property
    def context(self) -> ProjectContext:
        """Project context, loaded from the store on first use."""
        if self._context is None:
            self._context = self.context_store.load() or ProjectContext(
                project_name=self.root.name,
                project_path=str(self.root),
            )
        return self._context

    def execute(self, call: ToolCall) -> ToolResult:
        """
        Execute one tool call.

        Args:
            call: Parsed tool call

        Returns:
            ToolResult; failures are results, never exceptions
        """
        name = resolve_tool_name(call.name)
        if name is None or name not in self._handlers:
            logger.warning(f"Unknown tool requested: {call.name}")
            return _fail(call.name, f"Unknown tool: {call.name}. Available tools are: {', '.join(CANONICAL_TOOLS)}")

        decision = self.rate_limiter.check(name)
        if not decision.allowed:
            return _fail(name, decision.message)

        arguments = call.arguments if isinstance(call.arguments, dict) else {}
        logger.debug(f"Executing {name} with {sorted(arguments)}")
        try:
            return self._handlers[name](arguments)
        except ToolExecutionError as e:
            logger.warning(str(e))
            return _fail(name, e.message)
        except Exception as e:
            logger.exception(f"Tool {name} failed unexpectedly")
            return _fail(name, f"Error executing {name}: {e}")

    def execute_all(
        self,
        calls: List[ToolCall],
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> List[ToolResult]:
        """
        Execute calls strictly in order; later calls may depend on earlier writes.

        Args:
            calls: Tool calls from one model turn
            cancel_check: Polled before each call; True stops the batch

        Returns:
            Results for the calls that ran
        """
        results = []
        for call in calls:
            if cancel_check and cancel_check():
                logger.info("Tool execution cancelled")
                break
            results.append(self.execute(call))
        return results

    # ── helpers ────────────────────────────────────────────────

    def _read_text(self, path: Path, display: str) -> str:
        try:
            return self.files.read(path)
        except UnicodeDecodeError as e:
            raise ToolExecutionError("read", f"Cannot read {display}: not a UTF-8 text file") from e
        except OSError as e:
            raise ToolExecutionError("read", f"Cannot read {display}: {e.strerror or e}") from e

    def _write_text(self, path: Path, content: str, display: str):
        try:
            self.files.write(path, content)
        except OSError as e:
            raise ToolExecutionError("write", f"Cannot write {display}: {e.strerror or e}") from e

    def _existing_content(self, path: Path) -> Optional[str]:
        """Best-effort "before" content for a diff."""
        if not self.files.exists(path) or self.files.is_dir(path):
            return None
        try:
            return self.files.read(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"No diff baseline for {path}: {e}")
            return None

    def _snapshot(self, rel: str, action: str):
        try:
            self.snapshots.take(rel, action)
        except OSError as e:
            logger.warning(f"Snapshot of {rel} failed, continuing with {action}: {e}")

    def _record_change(self, change: str):
        context = self.context
        context.add_recent_change(change)
        try:
            self.context_store.save(context)
        except OSError as e:
            logger.warning(f"Failed to save project context: {e}")

    def _check_read(self, path: Path, display: str) -> Optional[str]:
        if not self.files.exists(path):
            return f"File not found: {display}"
        if self.files.is_dir(path):
            return f"{display} is a directory. Use list_directory to see its contents."
        size = self.files.size(path)
        if size > self.max_read_bytes:
            return (
                f"File too large to read: {display} ({size} bytes, limit {self.max_read_bytes} bytes). "
                "Use run_command with head/grep to inspect parts of it."
            )
        return None

    # ── handlers ───────────────────────────────────────────────

    def _read_file(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args)
        if not path:
            return _fail("read_file", 'Missing \'path\' parameter. Use: {"name": "read_file", "arguments": {"path": "filename.ext"}}')

        target, error = self.sandbox.check(path)
        if error:
            return _fail("read_file", error)
        error = self._check_read(target, path)
        if error:
            return _fail("read_file", error)

        content = self._read_text(target, path)
        return ToolResult(tool="read_file", success=True, message=f"Contents of {path}:\n```\n{content}\n```")

    def _read_one(self, path: str) -> str:
        target, error = self.sandbox.check(path)
        if not error:
            error = self._check_read(target, path)
        if error:
            raise ToolExecutionError("read_multiple_files", error)
        return self._read_text(target, path)

    def _read_multiple_files(self, args: Dict[str, Any]) -> ToolResult:
        paths = resolve_paths(args)
        if not paths:
            return _fail(
                "read_multiple_files",
                'Missing \'paths\' parameter. Use: {"name": "read_multiple_files", "arguments": {"paths": ["file1", "file2"]}}',
            )

        # Reads have no side effects, so they run concurrently; output keeps request order
        results_by_index: Dict[int, str] = {}
        succeeded = 0
        with ThreadPoolExecutor(max_workers=min(len(paths), MAX_PARALLEL_READS)) as pool:
            future_to_index = {pool.submit(self._read_one, p): i for i, p in enumerate(paths)}
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                path = paths[index]
                try:
                    content = future.result()
                    results_by_index[index] = f"### {path}\n```\n{content}\n```"
                    succeeded += 1
                except ToolExecutionError as e:
                    results_by_index[index] = f"### {path}\nError: {e.message}"

        message = "\n\n".join(results_by_index[i] for i in range(len(paths)))
        return ToolResult(tool="read_multiple_files", success=succeeded > 0, message=message)

    def _write_file(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args)
        if not path:
            return _fail(
                "write_file",
                'Missing \'path\' parameter. Use: {"name": "write_file", "arguments": {"path": "filename.ext", "content": "file content"}}',
            )
        content = resolve_content(args)
        if content is None:
            return _fail(
                "write_file",
                "Missing 'content' parameter. The content must be a JSON string with \\n for newlines. "
                f'Use: {{"name": "write_file", "arguments": {{"path": "{path}", "content": "<!DOCTYPE html>\\n<html>...</html>"}}}}',
            )

        target, error = self.sandbox.check(path)
        if error:
            return _fail("write_file", error)
        if target == self.root or self.files.is_dir(target):
            return _fail("write_file", f"{path} is a directory, not a file")

        if target.suffix.lower() in HTML_EXTENSIONS:
            content = sanitize_html(content)

        size = len(content.encode("utf-8"))
        if size > self.max_write_bytes:
            return _fail("write_file", f"Content too large: {size} bytes (limit {self.max_write_bytes} bytes)")

        rel = self.sandbox.relative(target)
        existed = self.files.exists(target)
        diff = PendingDiff(
            action="rewrite" if existed else "create",
            file_path=rel,
            old_content=self._existing_content(target),
            new_content=content,
        )
        if not self.approval_gate.request(diff):
            return _fail("write_file", f"Skipped: the user rejected the change to {rel}")

        self._snapshot(rel, "write")
        self._write_text(target, content, path)
        self.manifest.update_entry(rel, content)
        self._record_change(f"{'Updated' if existed else 'Created'} {rel}")
        logger.info(f"Wrote {rel} ({len(content)} chars)")

        return ToolResult(
            tool="write_file",
            success=True,
            message=f"Written: {rel} ({len(content)} chars, {count_lines(content)} lines)",
            files_changed=[rel],
        )

    def _edit_file(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args)
        search = resolve_search(args)
        replace = resolve_replace(args)
        if not path or search is None or replace is None:
            return _fail(
                "edit_file",
                "Missing 'path', 'search' or 'replace' parameter. Use: "
                '{"name": "edit_file", "arguments": {"path": "file.ext", "search": "exact old text", "replace": "new text"}}',
            )

        target, error = self.sandbox.check(path)
        if error:
            return _fail("edit_file", error)
        error = self._check_read(target, path)
        if error:
            return _fail("edit_file", error)

        content = self._read_text(target, path)
        occurrences = content.count(search)
        if occurrences == 0:
            return _fail(
                "edit_file",
                f"Search text not found in {path}. Read the file and copy the exact text to replace, "
                "including whitespace.",
            )
        if occurrences > 1:
            return _fail(
                "edit_file",
                f"Search text appears {occurrences} times in {path}. Include more surrounding lines "
                "so it matches exactly once.",
            )

        updated = content.replace(search, replace, 1)
        size = len(updated.encode("utf-8"))
        if size > self.max_write_bytes:
            return _fail("edit_file", f"Edited file too large: {size} bytes (limit {self.max_write_bytes} bytes)")

        rel = self.sandbox.relative(target)
        diff = PendingDiff(
            action="edit",
            file_path=rel,
            old_content=content,
            new_content=updated,
            search_text=search,
            replace_text=replace,
        )
        if not self.approval_gate.request(diff):
            return _fail("edit_file", f"Skipped: the user rejected the edit to {rel}")

        self._snapshot(rel, "write")
        self._write_text(target, updated, path)
        self.manifest.update_entry(rel, updated)
        self._record_change(f"Edited {rel}")
        logger.info(f"Edited {rel}")

        return ToolResult(
            tool="edit_file",
            success=True,
            message=f"Edited: {rel} ({count_lines(updated)} lines)",
            files_changed=[rel],
        )

    def _tree_lines(self, path: Path, depth: int, indent: str = "") -> List[str]:
        lines = []
        try:
            entries = self.files.list(path)
        except OSError as e:
            return [f"{indent}(unreadable: {e.strerror or e})"]

        for entry in entries:
            if entry.is_dir:
                if is_blocklisted_directory(entry.name):
                    continue
                lines.append(f"{indent}{entry.name}/")
                if depth > 1:
                    lines.extend(self._tree_lines(entry.path, depth - 1, indent + "  "))
            else:
                if is_noisy_file(entry.name) or is_sensitive_file(entry.name):
                    continue
                lines.append(f"{indent}{entry.name} ({entry.size} bytes)")
        return lines

    def _list_directory(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args) or "."
        if path in ("/", ""):
            path = "."

        target, error = self.sandbox.check(path)
        if error:
            return _fail("list_directory", error)
        if not self.files.exists(target):
            return _fail("list_directory", f"Directory not found: {path}")
        if not self.files.is_dir(target):
            return _fail("list_directory", f"{path} is a file. Use read_file to see its contents.")

        lines = self._tree_lines(target, self.list_depth)
        label = "project root" if target == self.root else self.sandbox.relative(target)
        listing = "\n".join(lines) if lines else "(empty)"
        return ToolResult(
            tool="list_directory",
            success=True,
            message=f"Listing of {label} ({len(lines)} entries):\n{listing}",
        )

    def _create_directory(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args)
        if not path:
            return _fail(
                "create_directory",
                'Missing \'path\' parameter. Use: {"name": "create_directory", "arguments": {"path": "dirname"}}',
            )

        if _FILE_LIKE.search(path):
            # Models confuse create_directory with write_file
            if resolve_content(args):
                logger.info(f"create_directory on file-like path {path}; writing a file instead")
                decision = self.rate_limiter.check("write_file")
                if not decision.allowed:
                    return _fail("write_file", decision.message)
                result = self._write_file(args)
                if result.success:
                    result.message += " (auto-corrected from create_directory to write_file)"
                return result
            return _fail(
                "create_directory",
                f'"{path}" looks like a file, not a directory. Use write_file instead: '
                f'{{"name": "write_file", "arguments": {{"path": "{path}", "content": "..."}}}}',
            )

        target, error = self.sandbox.check(path)
        if error:
            return _fail("create_directory", error)
        if self.files.exists(target) and not self.files.is_dir(target):
            return _fail("create_directory", f"A file already exists at {path}")

        try:
            self.files.mkdir(target)
        except OSError as e:
            return _fail("create_directory", f"Cannot create directory {path}: {e.strerror or e}")
        return ToolResult(tool="create_directory", success=True, message=f"Created directory: {self.sandbox.relative(target)}")

    def _delete_file(self, args: Dict[str, Any]) -> ToolResult:
        path = resolve_path(args)
        if not path:
            return _fail(
                "delete_file",
                'Missing \'path\' parameter. Use: {"name": "delete_file", "arguments": {"path": "filename.ext"}}',
            )

        target, error = self.sandbox.check(path)
        if error:
            return _fail("delete_file", error)
        if target == self.root:
            return _fail("delete_file", "Refusing to delete the project root")
        if not self.files.exists(target):
            return _fail("delete_file", f"File not found: {path}")

        rel = self.sandbox.relative(target)
        diff = PendingDiff(action="delete", file_path=rel, old_content=self._existing_content(target))
        if not self.approval_gate.request(diff):
            return _fail("delete_file", f"Skipped: the user rejected deleting {rel}")

        self._snapshot(rel, "delete")
        try:
            self.files.delete(target)
        except OSError as e:
            return _fail("delete_file", f"Cannot delete {path}: {e.strerror or e}")

        self.manifest.remove_entry(rel)
        self._record_change(f"Deleted {rel}")
        logger.info(f"Deleted {rel}")
        return ToolResult(tool="delete_file", success=True, message=f"Deleted: {rel}", files_changed=[rel])

    def _run_command(self, args: Dict[str, Any]) -> ToolResult:
        command = resolve_command(args)
        plan, reason = self.guard.plan(command or "")
        if reason:
            return _fail("run_command", reason)
        if plan.notice:
            return ToolResult(tool="run_command", success=True, message=plan.notice)

        try:
            output = self.runner.run(plan.command, plan.cwd)
        except OSError as e:
            return _fail("run_command", f"Failed to start command: {e}")

        parts = []
        if output.stdout.strip():
            parts.append(f"stdout:\n{output.stdout.strip()}")
        if output.stderr.strip():
            parts.append(f"stderr:\n{output.stderr.strip()}")
        parts.append(f"Exit code: {output.exit_code}")
        if output.timed_out:
            parts.append(
                "The command did not finish in time. Do not start dev servers or watchers; "
                "ask the user to run long-lived processes themselves."
            )
        if plan.cwd != self.root:
            parts.insert(0, f"(ran in {self.sandbox.relative(plan.cwd)})")

        return ToolResult(tool="run_command", success=output.exit_code == 0, message="\n\n".join(parts))

    def _web_search(self, args: Dict[str, Any]) -> ToolResult:
        query = resolve_query(args)
        if not query:
            return _fail("web_search", 'Missing \'query\' parameter. Use: {"name": "web_search", "arguments": {"query": "search terms"}}')

        try:
            results = self.web_search.search(query)
        except WebSearchError as e:
            return _fail("web_search", str(e))
        return ToolResult(tool="web_search", success=True, message=format_results(query, results))

    def _connection(self, args: Dict[str, Any]) -> ToolResult:
        provider = str(args.get("provider") or "").strip().lower()
        action = str(args.get("action") or "").strip()
        if not provider or not action:
            return _fail(
                "connection",
                'Missing provider or action. Use: {"name": "connection", "arguments": '
                '{"provider": "vercel", "action": "list_projects", "params": {}}}',
            )

        params = args.get("params") or {}
        if isinstance(params, str):
            try:
                params = json.loads(params)
            except ValueError:
                return _fail("connection", "'params' must be a JSON object")
        if not isinstance(params, dict):
            return _fail("connection", "'params' must be a JSON object")

        try:
            text = self.connections.execute(provider, action, params)
        except ConnectorError as e:
            return _fail("connection", f"Error: {e}")
        return ToolResult(tool="connection", success=True, message=text)

    def _write_context(self, args: Dict[str, Any]) -> ToolResult:
        section = str(args.get("section") or "").strip().lower().replace(" ", "_").replace("-", "_")
        section = _SECTION_ALIASES.get(section, section)
        entries = resolve_entries(args)
        if not section or not entries:
            return _fail(
                "write_context",
                'Missing \'section\' or \'entries\'. Use: {"name": "write_context", "arguments": '
                '{"section": "preferences", "entries": ["Use Tailwind for styling"]}}',
            )

        context = self.context
        try:
            added = context.merge_entries(section, entries)
        except ValueError as e:
            return _fail("write_context", f"{e}. Valid sections: preferences, decisions, tech_stack")

        if not added:
            return ToolResult(tool="write_context", success=True, message=f"Nothing new to save in {section}")
        try:
            self.context_store.save(context)
        except OSError as e:
            return _fail("write_context", f"Failed to save project context: {e.strerror or e}")
        return ToolResult(
            tool="write_context",
            success=True,
            message=f"Saved {len(added)} entr{'y' if len(added) == 1 else 'ies'} to {section}",
        )

    def _create_scheduled_task(self, args: Dict[str, Any]) -> ToolResult:
        steps = args.get("steps")
        if isinstance(steps, str):
            try:
                steps = json.loads(steps)
            except ValueError:
                steps = split_list(steps, "\n")
        if steps is not None and not isinstance(steps, list):
            return _fail("create_scheduled_task", "'steps' must be a list of commands or step objects")

        try:
            task = self.scheduler.create_task(
                name=str(args.get("name") or args.get("title") or ""),
                schedule=args.get("schedule"),
                cron_expression=args.get("cron_expression") or args.get("cron"),
                steps=steps,
                command=resolve_command(args),
                description=str(args.get("description") or ""),
                project_path=str(self.root),
            )
        except ValueError as e:
            return _fail(
                "create_scheduled_task",
                f"{e}. Use: {{\"name\": \"create_scheduled_task\", \"arguments\": {{\"name\": \"Nightly build\", "
                "\"schedule\": \"every day at 2am\", \"command\": \"npm run build\"}}",
            )
        except OSError as e:
            return _fail("create_scheduled_task", f"Failed to save task: {e.strerror or e}")

        return ToolResult(
            tool="create_scheduled_task",
            success=True,
            message=(
                f"Scheduled task '{task.name}' ({task.cron_expression}) with {len(task.steps)} step(s). "
                f"ID: {task.id}"
            ),
        )
