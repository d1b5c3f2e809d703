"""Shell command execution collaborator."""

import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger


@dataclass
class CommandOutput:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False


class CommandRunner(ABC):
    """Runs one command in a fresh shell: (command, cwd) -> stdout, stderr, exit_code."""

    @abstractmethod
    def run(self, command: str, cwd: Path) -> CommandOutput: ...


class LocalCommandRunner(CommandRunner):
    """Runs commands with subprocess in a shell."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds before the command is killed (defaults to config.command_timeout)
        """
        if timeout is None:
            from devify.core.config import config
            timeout = config.command_timeout
        self.timeout = timeout

    def run(self, command: str, cwd: Path) -> CommandOutput:
        logger.info(f"Running command in {cwd}: {command}")
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            stdout = e.stdout if isinstance(e.stdout, str) else (e.stdout or b"").decode("utf-8", "replace")
            stderr = e.stderr if isinstance(e.stderr, str) else (e.stderr or b"").decode("utf-8", "replace")
            return CommandOutput(
                stdout=stdout,
                stderr=stderr + f"\nCommand timed out ({self.timeout:.0f}s limit)",
                exit_code=-1,
                timed_out=True,
            )
        return CommandOutput(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)
