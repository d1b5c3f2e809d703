"""External collaborators used by the tool executor."""

from devify.services.files import FileService, LocalFileService, DirectoryEntry
from devify.services.commands import CommandRunner, CommandOutput, LocalCommandRunner

__all__ = [
    "FileService",
    "LocalFileService",
    "DirectoryEntry",
    "CommandRunner",
    "CommandOutput",
    "LocalCommandRunner",
]
