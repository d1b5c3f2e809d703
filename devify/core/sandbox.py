"""
Path sandbox for project file access.

Every path a tool touches is resolved here first. Resolution is purely
lexical: separators are normalized and ".." segments are collapsed by hand,
so nothing on disk is consulted before the path is known to be inside the
project root.
"""

import re
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple, Union

from loguru import logger

# "$(root)/" and friends that models prepend to paths
_INVENTED_PREFIX = re.compile(r"^\$\([^)]*\)/")
_DRIVE_ROOT = re.compile(r"^[A-Za-z]:(/|$)")

# Credential and key material, checked by file name
SENSITIVE_FILE_NAMES = {
    ".npmrc",
    ".pypirc",
    ".netrc",
    ".git-credentials",
    ".gitconfig",
    ".htpasswd",
    "credentials.json",
    "service-account.json",
    "secrets.json",
    "id_rsa",
    "id_dsa",
    "id_ecdsa",
    "id_ed25519",
    "known_hosts",
    "authorized_keys",
}

SENSITIVE_EXTENSIONS = {".pem", ".key", ".p12", ".pfx", ".jks", ".keystore", ".ppk", ".gpg"}

# Any path passing through one of these directories is off limits
SENSITIVE_DIRECTORIES = {".ssh", ".aws", ".gnupg", ".azure", ".kube", ".docker", ".vscode", ".idea"}

# Template env files hold no secrets
ENV_TEMPLATE_SUFFIXES = (".example", ".sample", ".template", ".dist")

# Generated, dependency and VCS directories
BLOCKLISTED_DIRECTORIES = {
    "node_modules",
    "dist",
    "build",
    ".git",
    ".next",
    ".nuxt",
    ".output",
    ".svelte-kit",
    ".cache",
    ".turbo",
    ".parcel-cache",
    "coverage",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".venv",
    "venv",
    "target",
    "vendor",
    ".devify",
}

# Noisy files that cost tokens and are never edited by hand
NOISY_EXTENSIONS = {".lock", ".log", ".map"}
NOISY_FILE_NAMES = {
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "poetry.lock",
    "Cargo.lock",
    "composer.lock",
    "Gemfile.lock",
    ".DS_Store",
    "Thumbs.db",
}


def _segments(path: Union[str, Path]) -> list:
    return [part for part in str(path).replace("\\", "/").split("/") if part]


def is_sensitive_file(path: Union[str, Path]) -> bool:
    """
    Check a path against the credential/key denylist.

    Works on the raw string so it can run before any resolution.
    """
    parts = _segments(path)
    if not parts:
        return False

    if any(part.lower() in SENSITIVE_DIRECTORIES for part in parts[:-1]):
        return True

    name = parts[-1]
    lowered = name.lower()
    if lowered in SENSITIVE_FILE_NAMES or lowered in SENSITIVE_DIRECTORIES:
        return True
    if lowered == ".env" or (lowered.startswith(".env.") and not lowered.endswith(ENV_TEMPLATE_SUFFIXES)):
        return True
    return PurePosixPath(lowered).suffix in SENSITIVE_EXTENSIONS


def is_blocklisted_directory(name: str) -> bool:
    """True for build/dependency/VCS directory names."""
    return name in BLOCKLISTED_DIRECTORIES


def is_noisy_file(name: str) -> bool:
    """True for lockfiles, logs, source maps and OS clutter."""
    return name in NOISY_FILE_NAMES or PurePosixPath(name).suffix.lower() in NOISY_EXTENSIONS


def blocked_reason(relative: Union[str, Path]) -> Optional[str]:
    """
    Return why a project-relative path may not be read or written, or None.

    Args:
        relative: Path relative to the project root

    Returns:
        Reason string for sensitive files, blocklisted directories and noisy files
    """
    if is_sensitive_file(relative):
        return f"Access to sensitive file '{relative}' is blocked"
    parts = _segments(relative)
    for part in parts[:-1]:
        if is_blocklisted_directory(part):
            return f"Access inside '{part}/' is blocked (generated or dependency directory)"
    if parts and is_blocklisted_directory(parts[-1]):
        return f"Access to '{parts[-1]}/' is blocked (generated or dependency directory)"
    if parts and is_noisy_file(parts[-1]):
        return f"Access to '{parts[-1]}' is blocked (lockfile/log/generated file)"
    return None


class PathSandbox:
    """Confines tool paths to one project root."""

    def __init__(self, project_root: Union[str, Path]):
        """
        Args:
            project_root: Project directory; resolved once here
        """
        self.root = Path(project_root).resolve()
        self._root_text = self.root.as_posix().rstrip("/") or "/"

    def _inside_root(self, candidate: str) -> bool:
        root = self._root_text.lower()
        value = candidate.lower()
        return value == root or value.startswith(root.rstrip("/") + "/")

    def resolve(self, relative: Union[str, Path, None]) -> Tuple[Optional[Path], Optional[str]]:
        """
        Resolve a model-supplied path against the project root.

        Args:
            relative: Path from the tool call (relative, or absolute inside the root)

        Returns:
            (absolute_path, None) on success, (None, reason) when blocked
        """
        text = "" if relative is None else str(relative).strip()
        if "\x00" in text:
            return None, "Invalid path: contains a NUL byte"

        text = text.replace("\\", "/")
        text = _INVENTED_PREFIX.sub("", text)
        while text.startswith("./"):
            text = text[2:]

        if text.startswith("~"):
            logger.warning(f"Blocked home-relative path: {relative}")
            return None, "Absolute paths must be inside the project directory"

        if text.startswith("/") or _DRIVE_ROOT.match(text):
            if not self._inside_root(text):
                logger.warning(f"Blocked absolute path outside project: {relative}")
                return None, "Absolute paths must be inside the project directory"
            text = text[len(self._root_text):]
        else:
            # Models sometimes repeat the project root without its leading slash
            bare_root = self._root_text.lstrip("/")
            if bare_root and text.lower().startswith(bare_root.lower() + "/"):
                text = text[len(bare_root):]

        segments = []
        for part in text.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                if not segments:
                    logger.warning(f"Blocked path traversal: {relative}")
                    return None, "Path escapes the project directory"
                segments.pop()
                continue
            segments.append(part)

        candidate = "/".join([self._root_text.rstrip("/")] + segments)
        if not self._inside_root(candidate):
            logger.warning(f"Blocked path outside project: {relative}")
            return None, "Path escapes the project directory"

        return self.root.joinpath(*segments), None

    def relative(self, path: Path) -> str:
        """Project-relative POSIX string for a path returned by resolve()."""
        try:
            return path.relative_to(self.root).as_posix() or "."
        except ValueError:
            return path.as_posix()

    def check(self, relative: Union[str, Path, None]) -> Tuple[Optional[Path], Optional[str]]:
        """
        Resolve and apply the sensitive-file and blocklist rules.

        Returns:
            (absolute_path, None) or (None, reason)
        """
        if relative is not None and is_sensitive_file(relative):
            logger.warning(f"Blocked sensitive file: {relative}")
            return None, f"Access to sensitive file '{relative}' is blocked"

        resolved, error = self.resolve(relative)
        if error:
            return None, error

        reason = blocked_reason(self.relative(resolved))
        if reason and resolved != self.root:
            logger.warning(reason)
            return None, reason
        return resolved, None
