"""
Tool Definitions
Canonical tool set, the alias table that maps model-invented names onto it,
and the tool catalogue rendered into the system prompt.
"""

from typing import List, Dict, Optional

# Canonical tools in prompt order: (name, description, parameter shape)
TOOL_CATALOGUE: List[Dict[str, str]] = [
    {
        "name": "read_file",
        "description": "Read the contents of a file. Use this to inspect code, configs, or any text file in the project.",
        "parameters": '{"path": "relative/path/to/file"}',
    },
    {
        "name": "write_file",
        "description": "Create or overwrite a file with the given content. Always provide the COMPLETE file content.",
        "parameters": '{"path": "relative/path/to/file", "content": "full file content here"}',
    },
    {
        "name": "edit_file",
        "description": "Replace one exact snippet in an existing file. The search text must occur exactly once; read the file first.",
        "parameters": '{"path": "relative/path/to/file", "search": "exact existing text", "replace": "new text"}',
    },
    {
        "name": "list_directory",
        "description": "List files and subdirectories in a directory as an indented tree.",
        "parameters": '{"path": "relative/path/to/dir"}',
    },
    {
        "name": "create_directory",
        "description": "Create a new directory (including parent directories if needed).",
        "parameters": '{"path": "relative/path/to/new/dir"}',
    },
    {
        "name": "delete_file",
        "description": "Delete a file or directory.",
        "parameters": '{"path": "relative/path/to/file"}',
    },
    {
        "name": "read_multiple_files",
        "description": "Read multiple files at once. More efficient than multiple read_file calls.",
        "parameters": '{"paths": ["path/to/file1", "path/to/file2"]}',
    },
    {
        "name": "run_command",
        "description": (
            "Run a shell command in the project directory (scripts, package installs, tests, builds). "
            "Returns stdout, stderr, and exit code. Each command runs in a fresh shell; "
            "use 'cd dir && command' to run inside a subdirectory."
        ),
        "parameters": '{"command": "npm test"}',
    },
    {
        "name": "web_search",
        "description": "Search the web for documentation, error messages, or current information.",
        "parameters": '{"query": "search terms"}',
    },
    {
        "name": "connection",
        "description": "Interact with connected external services. Specify provider, action, and parameters.",
        "parameters": '{"provider": "github", "action": "list_repos", "params": {}}',
    },
    {
        "name": "write_context",
        "description": "Remember project preferences or decisions for future sessions.",
        "parameters": '{"section": "preferences|decisions|tech_stack", "entries": ["short note"]}',
    },
    {
        "name": "create_scheduled_task",
        "description": "Schedule a recurring task that runs shell steps on a cron schedule.",
        "parameters": '{"name": "Nightly tests", "schedule": "every day at 2am", "command": "npm test"}',
    },
]

CANONICAL_TOOLS: List[str] = [tool["name"] for tool in TOOL_CATALOGUE]

# Plausible synonyms models use for the canonical tools
TOOL_ALIASES: Dict[str, str] = {
    # read_file
    "cat": "read_file",
    "get_file": "read_file",
    "open_file": "read_file",
    "view_file": "read_file",
    "read": "read_file",
    "show_file": "read_file",
    "file_read": "read_file",
    # write_file
    "create_file": "write_file",
    "new_file": "write_file",
    "make_file": "write_file",
    "save_file": "write_file",
    "write": "write_file",
    "overwrite_file": "write_file",
    "file_write": "write_file",
    "update_file": "write_file",
    # edit_file
    "edit": "edit_file",
    "modify_file": "edit_file",
    "replace_in_file": "edit_file",
    "patch_file": "edit_file",
    "str_replace": "edit_file",
    "search_replace": "edit_file",
    "apply_edit": "edit_file",
    # list_directory
    "ls": "list_directory",
    "list_files": "list_directory",
    "list_dir": "list_directory",
    "dir": "list_directory",
    "tree": "list_directory",
    "list": "list_directory",
    # create_directory
    "mkdir": "create_directory",
    "make_directory": "create_directory",
    "new_directory": "create_directory",
    "create_folder": "create_directory",
    "make_dir": "create_directory",
    # delete_file
    "rm": "delete_file",
    "remove_file": "delete_file",
    "delete": "delete_file",
    "delete_path": "delete_file",
    "remove": "delete_file",
    "unlink": "delete_file",
    "delete_directory": "delete_file",
    # read_multiple_files
    "read_files": "read_multiple_files",
    "cat_files": "read_multiple_files",
    "read_many_files": "read_multiple_files",
    # run_command
    "execute_command": "run_command",
    "exec": "run_command",
    "shell": "run_command",
    "bash": "run_command",
    "run": "run_command",
    "terminal": "run_command",
    "execute": "run_command",
    "run_shell": "run_command",
    "sh": "run_command",
    # web_search
    "search": "web_search",
    "search_web": "web_search",
    "google": "web_search",
    "internet_search": "web_search",
    # connection
    "connect": "connection",
    "service": "connection",
    "integration": "connection",
    # write_context
    "remember": "write_context",
    "save_context": "write_context",
    "update_context": "write_context",
    # create_scheduled_task
    "schedule_task": "create_scheduled_task",
    "create_task": "create_scheduled_task",
    "schedule": "create_scheduled_task",
    "cron": "create_scheduled_task",
}


def resolve_tool_name(name: Optional[str]) -> Optional[str]:
    """
    Map a raw tool name to its canonical id.

    Returns None for names that are neither canonical nor a known alias.
    """
    if not name:
        return None
    key = str(name).strip().lower().replace("-", "_").replace(" ", "_")
    if key in CANONICAL_TOOLS:
        return key
    return TOOL_ALIASES.get(key)

