"""
Approval gate for mutating tool calls.

write_file, edit_file and delete_file build a PendingDiff and ask the gate
before touching disk. A rejection leaves the project untouched.
"""

import difflib
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger
from rich.console import Console
from rich.syntax import Syntax


@dataclass
class PendingDiff:
    """A proposed mutation awaiting a decision."""
    action: str  # create | rewrite | edit | delete
    file_path: str
    old_content: Optional[str] = None
    new_content: Optional[str] = None
    search_text: Optional[str] = None
    replace_text: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def unified_diff(self, context_lines: int = 3) -> str:
        """Unified diff between the before and after content."""
        before = (self.old_content or "").splitlines(keepends=True)
        after = (self.new_content or "").splitlines(keepends=True)
        lines = difflib.unified_diff(
            before,
            after,
            fromfile=f"a/{self.file_path}" if self.action != "create" else "/dev/null",
            tofile=f"b/{self.file_path}" if self.action != "delete" else "/dev/null",
            n=context_lines,
        )
        return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


class ApprovalGate(ABC):
    """Collaborator that decides whether a PendingDiff is applied."""

    @abstractmethod
    def request(self, diff: PendingDiff) -> bool:
        """Return True to apply the change, False to skip it."""


class AutoApproveGate(ApprovalGate):
    """Approves everything. Used with --yes and when no gate is configured."""

    def request(self, diff: PendingDiff) -> bool:
        return True


class RecordingGate(ApprovalGate):
    """Returns a fixed decision and keeps every diff it was shown."""

    def __init__(self, decision: bool = True):
        self.decision = decision
        self.seen: List[PendingDiff] = []

    def request(self, diff: PendingDiff) -> bool:
        self.seen.append(diff)
        return self.decision


class ConsoleApprovalGate(ApprovalGate):
    """Shows the diff in the terminal and asks y/n."""

    def __init__(self, console: Optional[Console] = None, max_diff_lines: int = 200):
        self.console = console or Console()
        self.max_diff_lines = max_diff_lines

    def request(self, diff: PendingDiff) -> bool:
        labels = {"create": "Create", "rewrite": "Overwrite", "edit": "Edit", "delete": "Delete"}
        self.console.print(f"\n[yellow]Approval required:[/yellow] [bold]{labels.get(diff.action, diff.action)}[/bold] {diff.file_path}")

        text = diff.unified_diff()
        if text:
            lines = text.splitlines()
            if len(lines) > self.max_diff_lines:
                hidden = len(lines) - self.max_diff_lines
                text = "\n".join(lines[:self.max_diff_lines]) + f"\n... ({hidden} more lines)"
            self.console.print(Syntax(text, "diff", theme="ansi_dark", word_wrap=True))

        try:
            choice = input("Apply this change? [y/N]: ").strip().lower()
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n[yellow]Approval prompt interrupted[/yellow]")
            return False

        approved = choice in ("y", "yes")
        logger.info(f"{'Approved' if approved else 'Rejected'} {diff.action} of {diff.file_path}")
        return approved
