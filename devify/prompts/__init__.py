"""
Devify Prompts
Markdown prompt templates plus the builder that assembles the system prompt
sent with every provider call.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from devify.core.manifest import ProjectManifest, manifest_to_string
from devify.core.project_context import ProjectContext
from devify.core.tool_definitions import TOOL_CATALOGUE

# Prompt directory
PROMPTS_DIR = Path(__file__).parent


class PromptMetadata:
    """Metadata from a prompt's <!-- --> header."""

    def __init__(self, name: str = "", description: str = "", variables: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.variables = variables or []


class PromptLoader:
    """Load and cache prompts from markdown files."""

    _cache: Dict[str, str] = {}
    _metadata_cache: Dict[str, PromptMetadata] = {}

    @classmethod
    def _parse_frontmatter(cls, content: str) -> Tuple[PromptMetadata, str]:
        """
        Split the leading <!-- ... --> header from the prompt body.

        Args:
            content: Full file content

        Returns:
            Tuple of (metadata, remaining_content)
        """
        metadata = PromptMetadata()
        if not content.startswith("<!--"):
            return metadata, content

        end_idx = content.find("-->")
        if end_idx == -1:
            return metadata, content

        in_variables = False
        for line in content[4:end_idx].strip().split("\n"):
            line = line.strip()
            if line.startswith("- ") and in_variables:
                metadata.variables.append(line[2:].strip())
                continue
            in_variables = False
            if ":" not in line:
                continue
            key, value = (part.strip() for part in line.split(":", 1))
            if key == "name":
                metadata.name = value
            elif key == "description":
                metadata.description = value
            elif key == "variables" and not value:
                in_variables = True

        return metadata, content[end_idx + 3:].strip()

    @classmethod
    def load(cls, category: str, name: str) -> str:
        """
        Load a prompt from file.

        Args:
            category: Prompt category (system, tools)
            name: Prompt file name without extension

        Returns:
            Prompt content as string
        """
        cache_key = f"{category}/{name}"
        if cache_key in cls._cache:
            return cls._cache[cache_key]

        prompt_path = PROMPTS_DIR / category / f"{name}.md"
        if not prompt_path.exists():
            raise FileNotFoundError(f"Prompt not found: {prompt_path}")

        metadata, content = cls._parse_frontmatter(prompt_path.read_text(encoding="utf-8"))
        cls._cache[cache_key] = content
        cls._metadata_cache[cache_key] = metadata
        return content

    @classmethod
    def get_metadata(cls, category: str, name: str) -> PromptMetadata:
        cache_key = f"{category}/{name}"
        if cache_key not in cls._metadata_cache:
            cls.load(category, name)
        return cls._metadata_cache.get(cache_key, PromptMetadata())

    @classmethod
    def load_with_vars(cls, category: str, name: str, variables: Dict[str, str]) -> str:
        """
        Load a prompt and substitute ${VAR} placeholders.

        Args:
            category: Prompt category
            name: Prompt file name
            variables: Dict of variable substitutions {VAR_NAME: value}

        Returns:
            Prompt with variables substituted
        """
        content = cls.load(category, name)
        for var_name, value in variables.items():
            content = content.replace(f"${{{var_name}}}", str(value))
        return content


def build_tools_prompt() -> str:
    """Tool catalogue, wire format, worked examples and rules."""
    tool_list = "\n\n".join(
        f"**{tool['name']}**: {tool['description']}\nParameters: {tool['parameters']}"
        for tool in TOOL_CATALOGUE
    )
    return PromptLoader.load_with_vars("tools", "tool_usage", {"TOOL_LIST": tool_list})


def build_system_prompt(
    project_path: Optional[str],
    context: Optional[ProjectContext] = None,
    manifest: Optional[ProjectManifest] = None,
    connections_summary: Optional[str] = None,
) -> str:
    """
    Assemble the system prompt for one provider call.

    Args:
        project_path: Open project, or None for plain chat
        context: Project notes (tech stack, preferences, decisions, recent changes)
        manifest: File index rendered as a compact listing
        connections_summary: Connected-services block

    Returns:
        System prompt text
    """
    if project_path is None:
        project_block = "No project is open. Answer questions directly; tools are unavailable."
    elif context is not None:
        project_block = context.to_prompt_string().strip()
    else:
        project_block = f"Path: {project_path}"

    return PromptLoader.load_with_vars("system", "assistant", {
        "PROJECT_CONTEXT": project_block,
        "MANIFEST": manifest_to_string(manifest).strip() if manifest else "(no files indexed)",
        "TOOLS": build_tools_prompt() if project_path is not None else "",
        "CONNECTIONS": connections_summary or "No external services connected.",
    }).strip() + "\n"
