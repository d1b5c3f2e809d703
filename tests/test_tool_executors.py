"""
Tests for the tool executor: one handler per canonical tool, plus the
sandbox, approval gate and rate limiter in front of them.
"""

import json
import tempfile
from pathlib import Path

import pytest

from devify.core.approval import RecordingGate
from devify.core.rate_limiter import RateLimit, RateLimiter
from devify.core.tool_executors import ToolExecutor, sanitize_html
from devify.core.tool_parser import ToolCall
from devify.services.commands import CommandOutput, CommandRunner
from devify.services.connections import ConnectionHandler, ConnectionManager
from devify.services.files import LocalFileService
from devify.services.scheduler import TaskScheduler
from devify.services.web_search import SearchResult, WebSearchError, WebSearchService

APP_JS = "const a = 1;\nconsole.log(a);\n"


@pytest.fixture
def temp_project():
    """Create a temporary project directory with sample files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "index.html").write_text("<h1>Hello</h1>\n")
        (root / "src").mkdir()
        (root / "src" / "app.js").write_text(APP_JS)
        yield root


class RecordingRunner(CommandRunner):
    """Records commands instead of running them."""

    def __init__(self, exit_code=0, stdout="ok\n", stderr="", error=None, timed_out=False):
        self.calls = []
        self.timed_out = timed_out
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.error = error

    def run(self, command, cwd):
        self.calls.append((command, cwd))
        if self.error:
            raise self.error
        return CommandOutput(stdout=self.stdout, stderr=self.stderr, exit_code=self.exit_code, timed_out=self.timed_out)


class CountingFileService(LocalFileService):
    """Local file service that records every call."""

    def __init__(self):
        self.calls = []

    def exists(self, path):
        self.calls.append(("exists", path))
        return super().exists(path)

    def is_dir(self, path):
        self.calls.append(("is_dir", path))
        return super().is_dir(path)

    def read(self, path):
        self.calls.append(("read", path))
        return super().read(path)

    def write(self, path, content):
        self.calls.append(("write", path))
        super().write(path, content)

    def delete(self, path):
        self.calls.append(("delete", path))
        super().delete(path)


class StubSearch(WebSearchService):
    def __init__(self, results=None, error=None):
        super().__init__(tavily_api_key="")
        self.results = results or []
        self.error = error

    def search(self, query):
        if self.error:
            raise self.error
        return self.results


class EchoHandler(ConnectionHandler):
    name = "echo"
    display_name = "Echo"

    def execute(self, action, params, token):
        if action == "fail":
            raise RuntimeError("service down")
        return {"action": action, "params": params, "token": token}


def make_executor(root, **kwargs):
    kwargs.setdefault("rate_limiter", RateLimiter(limits={}))
    kwargs.setdefault("command_runner", RecordingRunner())
    kwargs.setdefault("scheduler", TaskScheduler(tasks_file=root / ".devify" / "tasks.json"))
    kwargs.setdefault("web_search", StubSearch())
    return ToolExecutor(root, **kwargs)


def run(executor, tool, **arguments):
    return executor.execute(ToolCall(name=tool, arguments=arguments))


class TestReadFile:
    def test_read(self, temp_project):
        result = run(make_executor(temp_project), "read_file", path="src/app.js")

        assert result.success is True
        assert result.message == f"Contents of src/app.js:\n```\n{APP_JS}\n```"

    def test_alias_tool_and_key(self, temp_project):
        result = run(make_executor(temp_project), "cat", file_path="./src/app.js")

        assert result.success is True
        assert result.tool == "read_file"

    def test_missing_file(self, temp_project):
        result = run(make_executor(temp_project), "read_file", path="nope.txt")

        assert result.success is False
        assert result.message == "File not found: nope.txt"

    def test_directory(self, temp_project):
        result = run(make_executor(temp_project), "read_file", path="src")

        assert result.success is False
        assert "is a directory" in result.message

    def test_size_limit(self, temp_project):
        result = run(make_executor(temp_project, max_read_bytes=10), "read_file", path="src/app.js")

        assert result.success is False
        assert "File too large to read" in result.message

    def test_sensitive_file(self, temp_project):
        (temp_project / ".env").write_text("SECRET=1\n")

        result = run(make_executor(temp_project), "read_file", path=".env")

        assert result.success is False
        assert "SECRET" not in result.message

    def test_missing_path(self, temp_project):
        result = run(make_executor(temp_project), "read_file")

        assert result.success is False
        assert "Missing 'path'" in result.message


class TestReadMultipleFiles:
    def test_order_and_partial_failure(self, temp_project):
        result = run(make_executor(temp_project), "read_multiple_files", paths=["src/app.js", "missing.txt", "index.html"])

        assert result.success is True
        sections = result.message.split("\n\n### ")
        assert sections[0].startswith("### src/app.js")
        assert sections[1] == "missing.txt\nError: File not found: missing.txt"
        assert sections[2].startswith("index.html")

    def test_all_missing(self, temp_project):
        result = run(make_executor(temp_project), "read_multiple_files", paths="a.txt, b.txt")

        assert result.success is False


class TestWriteFile:
    def test_create(self, temp_project):
        executor = make_executor(temp_project)

        result = run(executor, "write_file", path="notes/todo.md", content="# Todo\n- one\n")

        assert result.success is True
        assert result.message == "Written: notes/todo.md (13 chars, 2 lines)"
        assert result.files_changed == ["notes/todo.md"]
        assert (temp_project / "notes" / "todo.md").read_text() == "# Todo\n- one\n"
        assert executor.manifest.get("notes/todo.md").lines == 2
        assert executor.context.recent_changes[0] == "Created notes/todo.md"

    def test_empty_content_creates_empty_file(self, temp_project):
        result = run(make_executor(temp_project), "write_file", path="empty.txt", content="")

        assert result.success is True
        assert (temp_project / "empty.txt").read_text() == ""

    def test_traversal_touches_nothing(self, temp_project):
        files = CountingFileService()

        result = run(make_executor(temp_project, file_service=files), "write_file", path="../../etc/passwd", content="x")

        assert result.success is False
        assert "escapes" in result.message
        assert files.calls == []

    def test_rejected_by_gate(self, temp_project):
        gate = RecordingGate(decision=False)
        executor = make_executor(temp_project, approval_gate=gate)

        result = run(executor, "write_file", path="new.txt", content="hi")

        assert result.success is False
        assert result.message.startswith("Skipped")
        assert not (temp_project / "new.txt").exists()
        assert executor.manifest.get("new.txt") is None
        assert gate.seen[0].action == "create"

    def test_overwrite_shows_old_content(self, temp_project):
        gate = RecordingGate()

        run(make_executor(temp_project, approval_gate=gate), "write_file", path="src/app.js", content="x\n")

        assert gate.seen[0].action == "rewrite"
        assert gate.seen[0].old_content == APP_JS
        assert "-const a = 1;" in gate.seen[0].unified_diff()

    def test_size_limit(self, temp_project):
        result = run(make_executor(temp_project, max_write_bytes=5), "write_file", path="big.txt", content="123456")

        assert result.success is False
        assert "Content too large" in result.message
        assert not (temp_project / "big.txt").exists()

    def test_directory_target(self, temp_project):
        result = run(make_executor(temp_project), "write_file", path="src", content="x")

        assert result.success is False
        assert "is a directory" in result.message

    def test_missing_content(self, temp_project):
        result = run(make_executor(temp_project), "write_file", path="a.txt")

        assert result.success is False
        assert "Missing 'content'" in result.message

    def test_html_entities_are_decoded(self, temp_project):
        run(make_executor(temp_project), "write_file", path="page.html", content="&lt;h1&gt;Hi&lt;/h1&gt;")

        assert (temp_project / "page.html").read_text() == "<h1>Hi</h1>"

    def test_non_html_is_written_verbatim(self, temp_project):
        run(make_executor(temp_project), "write_file", path="notes.txt", content="&lt;b&gt;")

        assert (temp_project / "notes.txt").read_text() == "&lt;b&gt;"


class TestSanitizeHtml:
    def test_entity_encoded_markup(self):
        assert sanitize_html("&lt;p&gt;a &amp; b&lt;/p&gt;") == "<p>a & b</p>"

    def test_real_markup_keeps_entities(self):
        assert sanitize_html("<p>&lt;code&gt;</p>") == "<p>&lt;code&gt;</p>"

    def test_literal_newlines(self):
        assert sanitize_html("<ul>\\n<li>a</li>\\n</ul>") == "<ul>\n<li>a</li>\n</ul>"

    def test_escaped_attribute_quotes(self):
        assert sanitize_html('<a href=\\"x.html\\">x</a>\n') == '<a href="x.html">x</a>\n'


class TestEditFile:
    def test_single_occurrence(self, temp_project):
        executor = make_executor(temp_project)

        result = run(executor, "edit_file", path="src/app.js", search="const a = 1;", replace="const a = 2;")

        assert result.success is True
        assert result.message == "Edited: src/app.js (2 lines)"
        assert (temp_project / "src" / "app.js").read_text() == "const a = 2;\nconsole.log(a);\n"
        assert executor.context.recent_changes[0] == "Edited src/app.js"

    def test_alias_keys(self, temp_project):
        result = run(make_executor(temp_project), "str_replace", file_path="src/app.js", old_string="1", new_string="3")

        assert result.success is True
        assert "const a = 3;" in (temp_project / "src" / "app.js").read_text()

    def test_not_found_leaves_file_alone(self, temp_project):
        before = (temp_project / "src" / "app.js").read_bytes()

        result = run(make_executor(temp_project), "edit_file", path="src/app.js", search="let b", replace="let c")

        assert result.success is False
        assert "not found" in result.message
        assert (temp_project / "src" / "app.js").read_bytes() == before

    def test_ambiguous_leaves_file_alone(self, temp_project):
        (temp_project / "dup.txt").write_text("a\na\n")
        before = (temp_project / "dup.txt").read_bytes()

        result = run(make_executor(temp_project), "edit_file", path="dup.txt", search="a", replace="b")

        assert result.success is False
        assert "appears 2 times" in result.message
        assert (temp_project / "dup.txt").read_bytes() == before

    def test_rejected_by_gate(self, temp_project):
        gate = RecordingGate(decision=False)

        result = run(make_executor(temp_project, approval_gate=gate), "edit_file", path="src/app.js", search="1", replace="2")

        assert result.success is False
        assert (temp_project / "src" / "app.js").read_text() == APP_JS
        assert gate.seen[0].search_text == "1"


class TestListDirectory:
    def test_root_listing_skips_noise(self, temp_project):
        (temp_project / "node_modules").mkdir()
        (temp_project / "node_modules" / "x.js").write_text("x")
        (temp_project / ".env").write_text("SECRET=1\n")

        result = run(make_executor(temp_project), "list_directory", path=".")

        assert result.success is True
        assert result.message.startswith("Listing of project root (3 entries):")
        assert "src/" in result.message
        assert "  app.js" in result.message
        assert "node_modules" not in result.message
        assert ".env" not in result.message

    def test_dangling_symlink_is_skipped(self, temp_project):
        (temp_project / "link.txt").symlink_to(temp_project / "missing.txt")

        result = run(make_executor(temp_project), "list_directory", path=".")

        assert result.success is True
        assert result.message.startswith("Listing of project root (3 entries):")
        assert "index.html" in result.message
        assert "link.txt" not in result.message
        assert "unreadable" not in result.message

    def test_subdirectory(self, temp_project):
        result = run(make_executor(temp_project), "list_directory", path="src")

        assert result.message.startswith("Listing of src (1 entries):")

    def test_file_target(self, temp_project):
        result = run(make_executor(temp_project), "list_directory", path="index.html")

        assert result.success is False
        assert "is a file" in result.message


class TestCreateDirectory:
    def test_create(self, temp_project):
        result = run(make_executor(temp_project), "create_directory", path="assets/img")

        assert result.success is True
        assert result.message == "Created directory: assets/img"
        assert (temp_project / "assets" / "img").is_dir()

    def test_file_like_path_with_content_becomes_write(self, temp_project):
        result = run(make_executor(temp_project), "create_directory", path="about.html", content="<p>About</p>")

        assert result.success is True
        assert "auto-corrected" in result.message
        assert (temp_project / "about.html").read_text() == "<p>About</p>"

    def test_auto_corrected_write_uses_write_budget(self, temp_project):
        limiter = RateLimiter(limits={"write_file": RateLimit(max_calls=1, window_ms=60000)})
        executor = make_executor(temp_project, rate_limiter=limiter)
        run(executor, "write_file", path="a.txt", content="a")

        result = run(executor, "create_directory", path="about.html", content="<p>About</p>")

        assert result.success is False
        assert result.tool == "write_file"
        assert "Rate limit reached for write_file" in result.message
        assert not (temp_project / "about.html").exists()

    def test_file_like_path_without_content(self, temp_project):
        result = run(make_executor(temp_project), "create_directory", path="about.html")

        assert result.success is False
        assert "looks like a file" in result.message
        assert not (temp_project / "about.html").exists()


class TestDeleteFile:
    def test_delete_updates_manifest(self, temp_project):
        executor = make_executor(temp_project)
        assert executor.manifest.get("src/app.js") is not None

        result = run(executor, "delete_file", path="src/app.js")

        assert result.success is True
        assert result.files_changed == ["src/app.js"]
        assert not (temp_project / "src" / "app.js").exists()
        assert executor.manifest.get("src/app.js") is None

    def test_delete_directory_removes_entries_below(self, temp_project):
        executor = make_executor(temp_project)

        run(executor, "delete_file", path="src")

        assert not (temp_project / "src").exists()
        assert all(not e.path.startswith("src/") for e in executor.manifest.entries)

    def test_refuses_root(self, temp_project):
        result = run(make_executor(temp_project), "delete_file", path=".")

        assert result.success is False
        assert temp_project.exists()

    def test_missing(self, temp_project):
        result = run(make_executor(temp_project), "delete_file", path="ghost.txt")

        assert result.success is False
        assert result.message == "File not found: ghost.txt"

    def test_rejected_by_gate(self, temp_project):
        gate = RecordingGate(decision=False)

        result = run(make_executor(temp_project, approval_gate=gate), "delete_file", path="index.html")

        assert result.success is False
        assert (temp_project / "index.html").exists()


class TestSnapshots:
    """Every approved mutation saves the previous version first."""

    def test_write_then_restore(self, temp_project):
        executor = make_executor(temp_project)

        run(executor, "write_file", path="index.html", content="<h1>Bye</h1>\n")
        snapshot = executor.snapshots.file_snapshots("index.html")[0]
        executor.snapshots.restore(snapshot.id)

        assert snapshot.action == "write"
        assert (temp_project / "index.html").read_text() == "<h1>Hello</h1>\n"

    def test_edit_then_restore(self, temp_project):
        executor = make_executor(temp_project)

        run(executor, "edit_file", path="src/app.js", search="const a = 1;", replace="const a = 2;")
        executor.snapshots.restore(executor.snapshots.file_snapshots("src/app.js")[0].id)

        assert (temp_project / "src" / "app.js").read_text() == APP_JS

    def test_delete_then_restore(self, temp_project):
        executor = make_executor(temp_project)

        run(executor, "delete_file", path="src/app.js")
        snapshot = executor.snapshots.file_snapshots("src/app.js")[0]
        executor.snapshots.restore(snapshot.id)

        assert snapshot.action == "delete"
        assert (temp_project / "src" / "app.js").read_text() == APP_JS

    def test_rejected_change_takes_no_snapshot(self, temp_project):
        executor = make_executor(temp_project, approval_gate=RecordingGate(decision=False))

        run(executor, "write_file", path="index.html", content="x")

        assert executor.snapshots.list_snapshots() == []

    def test_snapshots_are_hidden_from_listing(self, temp_project):
        executor = make_executor(temp_project)
        run(executor, "write_file", path="index.html", content="x")

        result = run(executor, "list_directory", path=".")

        assert ".devify" not in result.message


class TestRunCommand:
    def test_runs_at_root(self, temp_project):
        runner = RecordingRunner()
        executor = make_executor(temp_project, command_runner=runner)

        result = run(executor, "run_command", command="npm test")

        assert result.success is True
        assert runner.calls == [("npm test", executor.root)]
        assert result.message == "stdout:\nok\n\nExit code: 0"

    def test_cd_prefix_runs_in_subdirectory(self, temp_project):
        runner = RecordingRunner()
        executor = make_executor(temp_project, command_runner=runner)

        result = run(executor, "run_command", command="cd src && npm run build")

        assert runner.calls == [("npm run build", executor.root / "src")]
        assert result.message.startswith("(ran in src)")

    def test_timeout_adds_a_hint(self, temp_project):
        runner = RecordingRunner(exit_code=-1, stdout="", stderr="Command timed out (120s limit)", timed_out=True)

        result = run(make_executor(temp_project, command_runner=runner), "run_command", command="npm run dev")

        assert result.success is False
        assert "did not finish in time" in result.message

    def test_nonzero_exit(self, temp_project):
        runner = RecordingRunner(exit_code=1, stdout="", stderr="boom\n")

        result = run(make_executor(temp_project, command_runner=runner), "run_command", cmd="npm test")

        assert result.success is False
        assert result.message == "stderr:\nboom\n\nExit code: 1"

    def test_dangerous_command_never_runs(self, temp_project):
        runner = RecordingRunner()

        result = run(make_executor(temp_project, command_runner=runner), "run_command", command="sudo rm -rf /")

        assert result.success is False
        assert "Dangerous command" in result.message
        assert runner.calls == []

    def test_bare_cd_is_a_notice(self, temp_project):
        runner = RecordingRunner()

        result = run(make_executor(temp_project, command_runner=runner), "run_command", command="cd src")

        assert result.success is True
        assert "fresh shell" in result.message
        assert runner.calls == []

    def test_unexpected_runner_error_becomes_result(self, temp_project):
        runner = RecordingRunner(error=RuntimeError("boom"))

        result = run(make_executor(temp_project, command_runner=runner), "run_command", command="ls")

        assert result.success is False
        assert result.message == "Error executing run_command: boom"


class TestDispatch:
    def test_unknown_tool(self, temp_project):
        result = run(make_executor(temp_project), "fly_to_moon")

        assert result.success is False
        assert result.message.startswith("Unknown tool: fly_to_moon. Available tools are: read_file, write_file")

    def test_rate_limited_call_is_not_executed(self, temp_project):
        limiter = RateLimiter(limits={"write_file": RateLimit(max_calls=1, window_ms=60000)})
        executor = make_executor(temp_project, rate_limiter=limiter)

        first = run(executor, "write_file", path="a.txt", content="a")
        second = run(executor, "write_file", path="b.txt", content="b")

        assert first.success is True
        assert second.success is False
        assert "Rate limit reached" in second.message
        assert not (temp_project / "b.txt").exists()

    def test_execute_all_in_order_with_cancel(self, temp_project):
        executor = make_executor(temp_project)
        calls = [
            ToolCall("write_file", {"path": "a.txt", "content": "1"}),
            ToolCall("edit_file", {"path": "a.txt", "search": "1", "replace": "2"}),
            ToolCall("write_file", {"path": "c.txt", "content": "3"}),
        ]
        seen = []

        def cancel_check():
            seen.append(True)
            return len(seen) > 2

        results = executor.execute_all(calls, cancel_check=cancel_check)

        assert [r.success for r in results] == [True, True]
        assert (temp_project / "a.txt").read_text() == "2"
        assert not (temp_project / "c.txt").exists()


class TestWebSearch:
    def test_results(self, temp_project):
        search = StubSearch(results=[SearchResult(title="Docs", url="https://example.com", snippet="Hello")])

        result = run(make_executor(temp_project, web_search=search), "web_search", query="vite config")

        assert result.success is True
        assert "1. Docs" in result.message
        assert "URL: https://example.com" in result.message

    def test_failure(self, temp_project):
        search = StubSearch(error=WebSearchError("Search failed: offline"))

        result = run(make_executor(temp_project, web_search=search), "web_search", q="vite")

        assert result.success is False
        assert result.message == "Search failed: offline"


class TestConnection:
    @pytest.fixture
    def connections(self):
        manager = ConnectionManager()
        manager.register(EchoHandler())
        return manager

    def test_action(self, temp_project, connections):
        connections.connect("echo", "t0k")

        result = run(
            make_executor(temp_project, connections=connections),
            "connection", provider="Echo", action="ping", params='{"a": 1}',
        )

        assert result.success is True
        assert json.loads(result.message) == {"action": "ping", "params": {"a": 1}, "token": "t0k"}

    def test_not_connected(self, temp_project, connections):
        result = run(make_executor(temp_project, connections=connections), "connection", provider="echo", action="ping")

        assert result.success is False
        assert result.message.startswith("Error: Not connected to Echo")

    def test_handler_failure(self, temp_project, connections):
        connections.connect("echo", "t0k")

        result = run(make_executor(temp_project, connections=connections), "connection", provider="echo", action="fail")

        assert result.success is False
        assert result.message == "Error: service down"

    def test_unknown_provider(self, temp_project):
        result = run(make_executor(temp_project), "connection", provider="nope", action="x")

        assert result.success is False
        assert 'Unknown provider "nope"' in result.message


class TestWriteContext:
    def test_save_and_dedupe(self, temp_project):
        executor = make_executor(temp_project)

        first = run(executor, "write_context", section="prefs", entries=["Use Tailwind"])
        second = run(executor, "write_context", section="preferences", entries=["use tailwind"])

        assert first.message == "Saved 1 entry to preferences"
        assert second.message == "Nothing new to save in preferences"
        stored = (temp_project / ".devify" / "context.md").read_text()
        assert "- Use Tailwind" in stored

    def test_unknown_section(self, temp_project):
        result = run(make_executor(temp_project), "write_context", section="colors", entries=["blue"])

        assert result.success is False
        assert "Valid sections" in result.message


class TestCreateScheduledTask:
    def test_single_command(self, temp_project):
        scheduler = TaskScheduler(tasks_file=temp_project / ".devify" / "tasks.json")

        result = run(
            make_executor(temp_project, scheduler=scheduler),
            "create_scheduled_task", name="Nightly tests", schedule="every day at 2am", command="npm test",
        )

        assert result.success is True
        assert "Scheduled task 'Nightly tests' (0 2 * * *) with 1 step(s)" in result.message
        tasks = scheduler.list_tasks()
        assert len(tasks) == 1
        assert tasks[0].steps[0].action == {"type": "run_command", "command": "npm test"}
        assert tasks[0].project_path == str(temp_project.resolve())

    def test_steps_as_json_string(self, temp_project):
        result = run(
            make_executor(temp_project),
            "create_scheduled_task", title="Build", cron="0 * * * *", steps='["npm ci", "npm run build"]',
        )

        assert result.success is True
        assert "with 2 step(s)" in result.message

    def test_unreadable_schedule(self, temp_project):
        result = run(make_executor(temp_project), "create_scheduled_task", name="x", schedule="whenever", command="ls")

        assert result.success is False
        assert "Could not understand schedule" in result.message
