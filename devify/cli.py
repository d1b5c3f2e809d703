"""
Devify Command-Line Interface
Interactive chat session that drives the tool-execution loop on one project.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from loguru import logger

from devify import __version__
from devify.core.approval import AutoApproveGate, ConsoleApprovalGate
from devify.config import set_project_root
from devify.core.config import config
from devify.core.manifest import generate_manifest, manifest_to_string
from devify.core.orchestrator import ConversationOrchestrator, LoopOutcome, LoopState
from devify.core.project_context import ContextStore
from devify.core.snapshots import SnapshotStore
from devify.core.tool_executors import ToolExecutor, ToolResult
from devify.core.tool_parser import ToolCall
from devify.llm.llm_factory import LLMFactory
from devify.prompts import build_system_prompt
from devify.services.github import default_connections

app = typer.Typer(
    name="devify",
    help="Devify - agentic coding assistant for a local project",
    add_completion=False
)

console = Console(soft_wrap=True)

MAX_RESULT_PREVIEW_LINES = 6


def safe_console_print(text: Any = "", **kwargs):
    console.print(text, **kwargs)


def _describe_call(call: ToolCall) -> str:
    args = call.arguments
    target = args.get("path") or args.get("command") or args.get("query") or args.get("paths") or ""
    if isinstance(target, list):
        target = ", ".join(str(t) for t in target)
    return f"{call.name} {target}".strip()


def _render_event(kind: str, data: Any):
    """Render orchestrator progress events."""
    if kind == "text":
        console.print(data, end="", markup=False, highlight=False)
    elif kind == "tool_start":
        safe_console_print(f"\n[cyan]> {_describe_call(data)}[/cyan]")
    elif kind == "tool_result":
        result: ToolResult = data
        lines = result.message.splitlines() or [""]
        preview = "\n".join(lines[:MAX_RESULT_PREVIEW_LINES])
        if len(lines) > MAX_RESULT_PREVIEW_LINES:
            preview += f"\n... ({len(lines) - MAX_RESULT_PREVIEW_LINES} more lines)"
        style = "green" if result.success else "red"
        console.print(preview, style=style, markup=False, highlight=False)
    elif kind == "iteration_cap":
        safe_console_print(
            f"\n[yellow]Reached the maximum of {data} tool iterations. "
            "Type /continue to keep going.[/yellow]"
        )
    elif kind == "error":
        safe_console_print(f"\n[red]Error: {data}[/red]")


def _run_with_cancel(orchestrator: ConversationOrchestrator, action, *args) -> Optional[LoopOutcome]:
    """
    Run one loop in a worker thread so Ctrl+C can cancel it.

    Returns:
        The loop outcome
    """
    holder = {}

    def target():
        holder["outcome"] = action(*args)

    worker = threading.Thread(target=target, name="devify-loop", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.1)
        except KeyboardInterrupt:
            safe_console_print("\n[yellow]Cancelling...[/yellow]")
            orchestrator.cancel()
    return holder.get("outcome")


def _render_banner(project_dir: Path, model_name: str, mock_enabled: bool, auto_approve: bool):
    mode = "mock" if mock_enabled else model_name
    safe_console_print(Panel.fit(
        f"[bold cyan]Devify[/bold cyan] v{__version__}\n"
        f"Project: {project_dir}\n"
        f"Model: {mode}{'  (auto-approve)' if auto_approve else ''}\n"
        "[dim]/continue resumes after the iteration cap, /usage shows tokens, /exit quits. "
        "Ctrl+C cancels a running turn.[/dim]",
        border_style="cyan"
    ))


@app.command()
def chat(
    project_dir: Path = typer.Argument(..., help="Project directory to work in"),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (defaults to DEFAULT_MODEL)"
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        help="Use scripted model responses (offline demo mode)"
    ),
    yes: bool = typer.Option(
        False,
        "--yes", "-y",
        help="Apply file changes without asking"
    ),
):
    """
    Chat with the assistant about a project; it reads and changes files via tools.

    Examples:
        devify chat ./my-site
        devify chat ./my-site --model gpt-4o --yes
        devify chat ./demo --mock
    """
    project_dir = project_dir.expanduser().resolve()
    if not project_dir.is_dir():
        safe_console_print(f"[red]Not a directory: {project_dir}[/red]")
        raise typer.Exit(1)

    if mock:
        config.mock_mode = True

    try:
        provider = LLMFactory.create_provider(config=config, model=model)
    except ValueError as e:
        safe_console_print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    set_project_root(project_dir)
    context_store = ContextStore(project_dir)
    context_store.init_context()
    executor = ToolExecutor(
        project_dir,
        approval_gate=AutoApproveGate() if yes else ConsoleApprovalGate(console),
        context_store=context_store,
        connections=default_connections(config.github_token),
    )

    def system_prompt() -> str:
        return build_system_prompt(
            str(executor.root),
            context=executor.context,
            manifest=executor.manifest,
            connections_summary=executor.connections.summary(),
        )

    orchestrator = ConversationOrchestrator(
        provider,
        executor=executor,
        system_prompt=system_prompt,
        on_event=_render_event,
    )
    logger.info(f"Chat session started in {project_dir}")
    _render_banner(project_dir, provider.model, config.mock_mode, yes)

    last_outcome: Optional[LoopOutcome] = None
    while True:
        safe_console_print()
        try:
            user_input = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            safe_console_print("\n[dim]Goodbye![/dim]")
            raise typer.Exit(0)

        if not user_input:
            continue
        if user_input in ("/exit", "/quit"):
            safe_console_print("[dim]Goodbye![/dim]")
            raise typer.Exit(0)
        if user_input == "/usage":
            safe_console_print(f"[dim]{orchestrator.usage.summary()}[/dim]")
            continue
        if user_input == "/continue":
            if not last_outcome or not last_outcome.can_continue:
                safe_console_print("[dim]Nothing to continue.[/dim]")
                continue
            last_outcome = _run_with_cancel(orchestrator, orchestrator.resume)
        elif user_input.startswith("/"):
            safe_console_print(f"[yellow]Unknown command: {user_input}[/yellow]")
            continue
        else:
            last_outcome = _run_with_cancel(orchestrator, orchestrator.send, user_input)

        safe_console_print()
        if last_outcome is None:
            continue
        if last_outcome.state == LoopState.CANCELLED:
            safe_console_print("[yellow]Cancelled.[/yellow]")
        if last_outcome.files_changed:
            safe_console_print(f"[dim]Changed: {', '.join(last_outcome.files_changed)}[/dim]")


@app.command()
def manifest(
    project_dir: Path = typer.Argument(..., help="Project directory to index"),
):
    """Print the file manifest the assistant sees for a project."""
    project_dir = project_dir.expanduser().resolve()
    if not project_dir.is_dir():
        safe_console_print(f"[red]Not a directory: {project_dir}[/red]")
        raise typer.Exit(1)
    console.print(manifest_to_string(generate_manifest(project_dir)), markup=False, highlight=False)


@app.command()
def snapshots(
    project_dir: Path = typer.Argument(..., help="Project directory"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Only snapshots of this file"),
):
    """List saved file versions, newest first."""
    project_dir = project_dir.expanduser().resolve()
    if not project_dir.is_dir():
        safe_console_print(f"[red]Not a directory: {project_dir}[/red]")
        raise typer.Exit(1)

    store = SnapshotStore(project_dir)
    items = store.file_snapshots(file) if file else store.list_snapshots()
    if not items:
        safe_console_print("[dim]No snapshots yet.[/dim]")
        return

    table = Table(title="Snapshots", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Time")
    table.add_column("File")
    table.add_column("Action")
    table.add_column("Size", justify="right")
    for snap in items:
        when = datetime.fromtimestamp(snap.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        size = "new file" if snap.is_new_file else f"{snap.file_size} B"
        table.add_row(snap.id, when, snap.file_path, snap.action, size)
    safe_console_print(table)

    stats = store.stats()
    safe_console_print(f"[dim]{stats.total_snapshots} snapshots of {stats.files_tracked} files[/dim]")


@app.command()
def restore(
    project_dir: Path = typer.Argument(..., help="Project directory"),
    snapshot_id: str = typer.Argument(..., help="Snapshot ID from `devify snapshots`"),
):
    """Restore a file to a saved version. The current version is snapshotted first."""
    project_dir = project_dir.expanduser().resolve()
    store = SnapshotStore(project_dir)
    try:
        restored = store.restore(snapshot_id)
    except KeyError:
        safe_console_print(f"[red]Snapshot not found: {snapshot_id}[/red]")
        raise typer.Exit(1)
    except OSError as e:
        safe_console_print(f"[red]Restore failed: {e}[/red]")
        raise typer.Exit(1)
    safe_console_print(f"[green]Restored {restored}[/green]")


@app.command()
def info():
    """Show Devify configuration."""
    table = Table(title="Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Default Model", config.default_model)
    table.add_row("Endpoint", config.base_url or "api.openai.com")
    table.add_row("Max Iterations", str(config.max_iterations))
    table.add_row("History Pairs", str(config.history_pairs))
    table.add_row("Command Timeout", f"{config.command_timeout}s")
    table.add_row("Mock Mode", "✓" if config.mock_mode else "✗")
    table.add_row("OpenAI Key", "✓" if config.openai_api_key else "✗")
    table.add_row("Tavily Key", "✓" if config.tavily_api_key else "✗ (DuckDuckGo fallback)")
    table.add_row("GitHub Token", "✓" if config.github_token else "✗")
    safe_console_print(table)


@app.command()
def version():
    """Show Devify version."""
    safe_console_print(f"Devify version [bold cyan]{__version__}[/bold cyan]")


if __name__ == "__main__":
    app()
