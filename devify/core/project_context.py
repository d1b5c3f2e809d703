"""
Project context: a small persisted note set about a project.

Stored as markdown at .devify/context.md inside the project so it survives
between sessions. Only the write_context tool and the executor's
recent-change hook change it.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

CONTEXT_DIR = ".devify"
CONTEXT_FILE = "context.md"
MAX_RECENT_CHANGES = 10
PROMPT_RECENT_CHANGES = 5

WRITABLE_SECTIONS = ("preferences", "decisions", "tech_stack")

# Root files that reveal the tech stack
TECH_INDICATORS = {
    "tsconfig.json": "TypeScript",
    "tailwind.config.js": "Tailwind CSS",
    "tailwind.config.ts": "Tailwind CSS",
    "postcss.config.js": "PostCSS",
    "vite.config.ts": "Vite",
    "vite.config.js": "Vite",
    "next.config.js": "Next.js",
    "next.config.mjs": "Next.js",
    "next.config.ts": "Next.js",
    "nuxt.config.ts": "Nuxt",
    "svelte.config.js": "SvelteKit",
    "astro.config.mjs": "Astro",
    "angular.json": "Angular",
    "vue.config.js": "Vue CLI",
    "Cargo.toml": "Rust",
    "requirements.txt": "Python",
    "pyproject.toml": "Python",
    "go.mod": "Go",
    "Gemfile": "Ruby",
    "composer.json": "PHP",
}

PACKAGE_JSON_FRAMEWORKS = {
    "react": "React",
    "react-dom": "React",
    "next": "Next.js",
    "vue": "Vue",
    "nuxt": "Nuxt",
    "svelte": "Svelte",
    "@sveltejs/kit": "SvelteKit",
    "@angular/core": "Angular",
    "express": "Express",
    "fastify": "Fastify",
    "hono": "Hono",
    "tailwindcss": "Tailwind CSS",
    "three": "Three.js",
    "d3": "D3.js",
    "prisma": "Prisma",
    "drizzle-orm": "Drizzle",
    "mongoose": "Mongoose",
    "stripe": "Stripe",
    "firebase": "Firebase",
    "@supabase/supabase-js": "Supabase",
}


@dataclass
class ProjectContext:
    project_name: str
    project_path: str
    tech_stack: List[str] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    recent_changes: List[str] = field(default_factory=list)

    def add_recent_change(self, change: str):
        """Newest first, capped at MAX_RECENT_CHANGES."""
        self.recent_changes = [change] + self.recent_changes
        del self.recent_changes[MAX_RECENT_CHANGES:]

    def merge_entries(self, section: str, entries: List[str]) -> List[str]:
        """
        Append entries to a section, skipping case-insensitive duplicates.

        Returns:
            The entries that were actually added
        """
        if section not in WRITABLE_SECTIONS:
            raise ValueError(f"Unknown context section '{section}'")
        current: List[str] = getattr(self, section)
        seen = {item.lower() for item in current}
        added = []
        for entry in entries:
            entry = entry.strip()
            if entry and entry.lower() not in seen:
                seen.add(entry.lower())
                current.append(entry)
                added.append(entry)
        return added

    def to_prompt_string(self) -> str:
        """Lean form sent with every request."""
        lines = [f"Project: {self.project_name}", f"Path: {self.project_path}"]
        if self.tech_stack:
            lines.append(f"Tech: {', '.join(self.tech_stack)}")
        for title, items in (("Preferences", self.preferences), ("Decisions", self.decisions)):
            if items:
                lines.append("")
                lines.append(f"{title}:")
                lines.extend(f"- {item}" for item in items)
        if self.recent_changes:
            lines.append("")
            lines.append("Recent changes:")
            lines.extend(f"- {c}" for c in self.recent_changes[:PROMPT_RECENT_CHANGES])
        return "\n".join(lines) + "\n"

    def to_markdown(self) -> str:
        lines = [
            "# Project Context",
            f"Project: {self.project_name}",
            f"Path: {self.project_path}",
            f"Tech: {', '.join(self.tech_stack)}",
        ]
        for title, items in (
            ("Preferences", self.preferences),
            ("Decisions", self.decisions),
            ("Recent Changes", self.recent_changes),
        ):
            lines.append("")
            lines.append(f"## {title}")
            lines.extend([f"- {item}" for item in items] or ["(none yet)"])
        return "\n".join(lines) + "\n"

    @classmethod
    def from_markdown(cls, content: str, project_path: str) -> "ProjectContext":
        tech = _extract_field(content, "Tech") or ""
        return cls(
            project_name=_extract_field(content, "Project") or Path(project_path).name,
            project_path=project_path,
            tech_stack=[t.strip() for t in tech.split(",") if t.strip()],
            preferences=_extract_list(content, "Preferences"),
            decisions=_extract_list(content, "Decisions"),
            recent_changes=_extract_list(content, "Recent Changes"),
        )


def _extract_field(content: str, name: str) -> Optional[str]:
    match = re.search(rf"^{name}:[ \t]*(.*)$", content, re.MULTILINE)
    return match.group(1).strip() if match else None


def _extract_list(content: str, heading: str) -> List[str]:
    match = re.search(rf"^## {heading}[ \t]*\n([\s\S]*?)(?=\n## |\Z)", content, re.MULTILINE)
    if not match:
        return []
    return [
        line.strip()[2:].strip()
        for line in match.group(1).splitlines()
        if line.strip().startswith("- ") and line.strip()[2:].strip()
    ]


class ContextStore:
    """Loads and saves ProjectContext under <project>/.devify/context.md."""

    def __init__(self, project_root: Union[str, Path]):
        self.project_root = Path(project_root).resolve()
        self.path = self.project_root / CONTEXT_DIR / CONTEXT_FILE

    def load(self) -> Optional[ProjectContext]:
        if not self.path.exists():
            return None
        try:
            return ProjectContext.from_markdown(self.path.read_text(encoding="utf-8"), str(self.project_root))
        except OSError as e:
            logger.warning(f"Failed to read project context: {e}")
            return None

    def save(self, context: ProjectContext):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(context.to_markdown(), encoding="utf-8")

    def detect_tech_stack(self) -> List[str]:
        """Detect frameworks from root indicator files and package.json."""
        try:
            root_names = {p.name for p in self.project_root.iterdir()}
        except OSError:
            return []

        detected: List[str] = []

        def add(tech: str):
            if tech not in detected:
                detected.append(tech)

        for name in sorted(root_names):
            if name in TECH_INDICATORS:
                add(TECH_INDICATORS[name])

        if "package.json" in root_names:
            try:
                pkg = json.loads((self.project_root / "package.json").read_text(encoding="utf-8"))
                deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
                for dep, tech in PACKAGE_JSON_FRAMEWORKS.items():
                    if dep in deps:
                        add(tech)
            except (OSError, ValueError, AttributeError) as e:
                logger.debug(f"Could not parse package.json: {e}")
        elif any(name.endswith(".html") for name in root_names):
            add("Static HTML")

        return detected

    def init_context(self) -> ProjectContext:
        """
        Load the stored context and merge in freshly detected tech, or
        create a new one. The result is saved either way.
        """
        detected = self.detect_tech_stack()
        context = self.load()
        if context:
            context.project_name = self.project_root.name
            context.merge_entries("tech_stack", detected)
        else:
            context = ProjectContext(
                project_name=self.project_root.name,
                project_path=str(self.project_root),
                tech_stack=detected,
            )
        self.save(context)
        return context
