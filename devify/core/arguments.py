"""
Argument resolution for tool calls.

Models invent their own key names ("file_path", "filename", "cmd", ...).
Every handler reads its logical fields through these functions, which walk an
ordered list of accepted spellings and return the first present value.
None of them raise; a missing field comes back as None.
"""

import re
from typing import Any, Dict, List, Optional

PATH_KEYS = ["path", "directory", "dir", "folder", "filepath", "file_path", "file", "filename", "name", "location"]
CONTENT_KEYS = ["content", "contents", "text", "data", "body", "code", "file_content"]
PATHS_KEYS = ["paths", "files", "file_paths", "filenames"]
COMMAND_KEYS = ["command", "cmd", "script", "run", "exec"]
SEARCH_KEYS = ["search", "old_content", "old_text", "old_string", "old", "find", "original"]
REPLACE_KEYS = ["replace", "new_content", "new_text", "new_string", "new", "replacement", "updated"]
QUERY_KEYS = ["query", "q", "search", "search_query", "terms", "question"]

# "$(root)/", "$(PROJECT_DIR)/" and similar invented prefixes
_INVENTED_PREFIX = re.compile(r"^\$\([^)]*\)/")


def clean_path(value: str) -> str:
    """Strip invented prefixes and a leading './' from a path string."""
    path = value.strip()
    path = _INVENTED_PREFIX.sub("", path)
    while path.startswith("./"):
        path = path[2:]
    return path


def _first_text(args: Dict[str, Any], keys: List[str], allow_blank: bool = False) -> Optional[str]:
    for key in keys:
        value = args.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value)
        if allow_blank or text.strip():
            return text
    return None


def resolve_path(args: Dict[str, Any]) -> Optional[str]:
    """Return the target path, or None when no path key is present."""
    value = _first_text(args, PATH_KEYS)
    if value is None:
        return None
    return clean_path(value)


def resolve_content(args: Dict[str, Any]) -> Optional[str]:
    """
    Return file content.

    Empty content is valid (it creates an empty file), so only an absent key
    yields None.
    """
    return _first_text(args, CONTENT_KEYS, allow_blank=True)


def resolve_paths(args: Dict[str, Any]) -> Optional[List[str]]:
    """
    Return a list of paths for batch reads.

    Accepts a real list, a newline/comma separated string, or a list under
    the singular "path" key.
    """
    for key in PATHS_KEYS + ["path"]:
        value = args.get(key)
        if isinstance(value, (list, tuple)) and value:
            return [clean_path(str(item)) for item in value if str(item).strip()]
        if isinstance(value, str) and key != "path" and value.strip():
            return [clean_path(part) for part in split_list(value)]
    return None


def resolve_command(args: Dict[str, Any]) -> Optional[str]:
    value = _first_text(args, COMMAND_KEYS)
    return value.strip() if value is not None else None


def resolve_search(args: Dict[str, Any]) -> Optional[str]:
    # Whitespace is significant in search text, so no trimming here
    return _first_text(args, SEARCH_KEYS, allow_blank=False)


def resolve_replace(args: Dict[str, Any]) -> Optional[str]:
    return _first_text(args, REPLACE_KEYS, allow_blank=True)


def resolve_query(args: Dict[str, Any]) -> Optional[str]:
    value = _first_text(args, QUERY_KEYS)
    return value.strip() if value is not None else None


def resolve_entries(args: Dict[str, Any]) -> Optional[List[str]]:
    """Return context entries from "entries", "entry", "items" or "notes"."""
    for key in ("entries", "items", "notes", "values", "entry", "note", "value"):
        value = args.get(key)
        if isinstance(value, (list, tuple)):
            entries = [str(item).strip() for item in value if str(item).strip()]
            if entries:
                return entries
        elif isinstance(value, str) and value.strip():
            return split_list(value, separators="\n")
    return None


def split_list(value: str, separators: str = "\n,") -> List[str]:
    """Split a string on any of the given separator characters, dropping blanks."""
    pattern = "[" + re.escape(separators) + "]"
    return [part.strip() for part in re.split(pattern, value) if part.strip()]
