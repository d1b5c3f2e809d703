"""
Project manifest: a lightweight index of project files (path, size, lines).

The manifest is generated once when a project opens and then kept in sync by
the tool executor after every write, edit and delete. It goes into the
system prompt instead of file contents.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Union

from loguru import logger

from devify.core.sandbox import is_blocklisted_directory, is_noisy_file

# Binary and media files never get an entry
SKIP_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".ico", ".svg",
    ".mp3", ".mp4", ".wav", ".ogg", ".webm", ".mov",
    ".zip", ".rar", ".7z", ".tar", ".gz",
    ".woff", ".woff2", ".ttf", ".eot",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx",
    ".exe", ".dll", ".so", ".dylib", ".pyc",
    ".lock", ".map",
}


@dataclass
class ManifestEntry:
    path: str
    size: int
    lines: int
    description: Optional[str] = None


@dataclass
class ProjectManifest:
    """File index for one project."""
    project_path: str
    generated_at: float = field(default_factory=time.time)
    entries: List[ManifestEntry] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.entries)

    def get(self, path: str) -> Optional[ManifestEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def update_entry(self, path: str, content: str, description: Optional[str] = None) -> ManifestEntry:
        """
        Add or replace the entry for a written file.

        Args:
            path: Project-relative POSIX path
            content: New file content
            description: Optional one-liner; the old one is kept when omitted

        Returns:
            The updated entry
        """
        entry = ManifestEntry(path=path, size=len(content), lines=count_lines(content), description=description)
        existing = self.get(path)
        if existing:
            if not description:
                entry.description = existing.description
            self.entries[self.entries.index(existing)] = entry
        else:
            self.entries.append(entry)
        self.generated_at = time.time()
        return entry

    def remove_entry(self, path: str) -> int:
        """Drop a file, or every file under a deleted directory. Returns the number removed."""
        prefix = path.rstrip("/") + "/"
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.path != path and not e.path.startswith(prefix)]
        self.generated_at = time.time()
        return before - len(self.entries)


def count_lines(content: str) -> int:
    return len(content.splitlines())


def _skip_file(name: str) -> bool:
    return PurePosixPath(name).suffix.lower() in SKIP_EXTENSIONS or is_noisy_file(name)


def generate_manifest(project_root: Union[str, Path]) -> ProjectManifest:
    """
    Walk a project and index its text files.

    Blocklisted directories and binary/noisy files are skipped. A file that
    cannot be read as text is still listed, with size and lines of 0.
    """
    root = Path(project_root).resolve()
    manifest = ProjectManifest(project_path=str(root))

    def walk(directory: Path):
        try:
            children = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.warning(f"Cannot list {directory}: {e}")
            return
        for child in children:
            if child.is_dir():
                if not is_blocklisted_directory(child.name):
                    walk(child)
                continue
            if _skip_file(child.name):
                continue
            rel = child.relative_to(root).as_posix()
            try:
                content = child.read_text(encoding="utf-8")
                manifest.entries.append(ManifestEntry(path=rel, size=len(content), lines=count_lines(content)))
            except (OSError, UnicodeDecodeError):
                manifest.entries.append(ManifestEntry(path=rel, size=0, lines=0))

    walk(root)
    logger.info(f"Generated manifest for {root.name}: {manifest.total_files} files")
    return manifest


def manifest_to_string(manifest: ProjectManifest) -> str:
    """Compact listing grouped by directory, as shown to the model."""
    by_dir: Dict[str, List[ManifestEntry]] = {}
    for entry in manifest.entries:
        parent = PurePosixPath(entry.path).parent.as_posix()
        by_dir.setdefault("(root)" if parent == "." else parent, []).append(entry)

    lines = [
        f"Project: {Path(manifest.project_path).name}",
        f"Files: {manifest.total_files}",
        "",
    ]
    for directory in sorted(by_dir):
        lines.append(f"{directory}/")
        for entry in sorted(by_dir[directory], key=lambda e: e.path):
            desc = f" - {entry.description}" if entry.description else ""
            lines.append(f"  {PurePosixPath(entry.path).name} ({entry.lines} lines){desc}")
    return "\n".join(lines) + "\n"
