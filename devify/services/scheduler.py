"""
Task Scheduler - stores recurring tasks created by the create_scheduled_task tool.

Tasks are persisted as JSON. Running them on schedule is the host's job;
this module only validates, normalizes and stores them.
"""

import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

WEEKDAYS = {
    "sunday": 0, "sun": 0,
    "monday": 1, "mon": 1,
    "tuesday": 2, "tue": 2, "tues": 2,
    "wednesday": 3, "wed": 3,
    "thursday": 4, "thu": 4, "thur": 4, "thurs": 4,
    "friday": 5, "fri": 5,
    "saturday": 6, "sat": 6,
}

SIMPLE_SCHEDULES = {
    "hourly": "0 * * * *",
    "every hour": "0 * * * *",
    "daily": "0 0 * * *",
    "every day": "0 0 * * *",
    "weekly": "0 0 * * 0",
    "every week": "0 0 * * 0",
}

_CRON_FIELD = re.compile(r"^([\d*/,\-?LW#]+|(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC|SUN|MON|TUE|WED|THU|FRI|SAT)([-,][A-Z]{3})*)$", re.IGNORECASE)
_TIME = r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?"
_EVERY_DAY_AT = re.compile(rf"^(?:every\s+day|daily)\s+at\s+{_TIME}$")
_EVERY_WEEKDAY_AT = re.compile(rf"^every\s+([a-z]+)\s+at\s+{_TIME}$")


def is_cron_expression(value: str) -> bool:
    """True for 5 to 7 whitespace-separated cron fields."""
    parts = value.split()
    return 5 <= len(parts) <= 7 and all(_CRON_FIELD.match(p) for p in parts)


def _to_hour_minute(hour: str, minute: Optional[str], meridiem: Optional[str]) -> Optional[tuple]:
    h = int(hour)
    m = int(minute) if minute else 0
    if meridiem:
        if not 1 <= h <= 12:
            return None
        h = h % 12 + (12 if meridiem == "pm" else 0)
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return h, m


def schedule_to_cron(schedule: str) -> Optional[str]:
    """
    Convert a human-readable schedule to a 5-field cron expression.

    Accepts cron expressions verbatim, "hourly", "daily", "weekly",
    "every day at 9am", "every monday at 8:30 pm" and "every weekday at 7".

    Returns:
        Cron expression, or None when the phrase is not understood
    """
    text = (schedule or "").strip()
    if not text:
        return None
    if is_cron_expression(text):
        return text

    lowered = re.sub(r"\s+", " ", text.lower())
    if lowered in SIMPLE_SCHEDULES:
        return SIMPLE_SCHEDULES[lowered]

    match = _EVERY_DAY_AT.match(lowered)
    if match:
        hm = _to_hour_minute(*match.groups())
        return f"{hm[1]} {hm[0]} * * *" if hm else None

    match = _EVERY_WEEKDAY_AT.match(lowered)
    if match:
        day, *time_parts = match.groups()
        hm = _to_hour_minute(*time_parts)
        if not hm:
            return None
        if day == "weekday":
            return f"{hm[1]} {hm[0]} * * 1-5"
        if day in WEEKDAYS:
            return f"{hm[1]} {hm[0]} * * {WEEKDAYS[day]}"
    return None


@dataclass
class TaskStep:
    name: str
    action: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    depends_on_previous: bool = True


@dataclass
class ScheduledTask:
    name: str
    schedule: str
    cron_expression: str
    steps: List[TaskStep]
    description: str = ""
    project_path: Optional[str] = None
    enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledTask":
        data = dict(data)
        data["steps"] = [TaskStep(**step) for step in data.get("steps", [])]
        return cls(**data)


def _normalize_step(step: Union[str, Dict[str, Any]], index: int) -> TaskStep:
    if isinstance(step, str):
        if not step.strip():
            raise ValueError(f"Step {index} is empty")
        return TaskStep(name=f"Step {index}", action={"type": "run_command", "command": step.strip()})

    if not isinstance(step, dict):
        raise ValueError(f"Step {index} must be a command string or an object")

    name = str(step.get("name") or f"Step {index}")
    if isinstance(step.get("action"), dict):
        action = dict(step["action"])
    elif step.get("command"):
        action = {"type": "run_command", "command": str(step["command"])}
        if step.get("cwd"):
            action["cwd"] = str(step["cwd"])
    elif step.get("type"):
        action = {k: v for k, v in step.items() if k not in ("name", "id", "depends_on_previous")}
    else:
        raise ValueError(f"Step {index} needs a 'command' or an 'action'")

    return TaskStep(name=name, action=action, depends_on_previous=bool(step.get("depends_on_previous", True)))


class TaskScheduler:
    """JSON-backed store of scheduled tasks."""

    def __init__(self, tasks_file: Optional[Union[str, Path]] = None):
        """
        Args:
            tasks_file: JSON file path (defaults to config.tasks_file)
        """
        if tasks_file is None:
            from devify.core.config import config
            tasks_file = config.tasks_file
        self.tasks_file = Path(tasks_file).expanduser()

    def list_tasks(self) -> List[ScheduledTask]:
        if not self.tasks_file.exists():
            return []
        try:
            data = json.loads(self.tasks_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load tasks from {self.tasks_file}: {e}")
            return []
        return [ScheduledTask.from_dict(item) for item in data]

    def _save(self, tasks: List[ScheduledTask]):
        self.tasks_file.parent.mkdir(parents=True, exist_ok=True)
        self.tasks_file.write_text(json.dumps([asdict(t) for t in tasks], indent=2), encoding="utf-8")

    def get_task(self, task_id: str) -> Optional[ScheduledTask]:
        for task in self.list_tasks():
            if task.id == task_id:
                return task
        return None

    def create_task(
        self,
        name: str,
        schedule: Optional[str] = None,
        cron_expression: Optional[str] = None,
        steps: Optional[List[Union[str, Dict[str, Any]]]] = None,
        command: Optional[str] = None,
        description: str = "",
        project_path: Optional[str] = None,
    ) -> ScheduledTask:
        """
        Validate and store a new task.

        Args:
            name: Task name
            schedule: Human-readable schedule or cron expression
            cron_expression: Explicit cron expression (wins over schedule)
            steps: Ordered steps (command strings or step objects)
            command: Single command, used when steps is empty
            description: Free text
            project_path: Project the task belongs to

        Returns:
            The stored task

        Raises:
            ValueError: Missing name, unreadable schedule, or no steps
        """
        if not name or not str(name).strip():
            raise ValueError("Missing required argument 'name'")

        if cron_expression:
            cron = cron_expression.strip()
            if not is_cron_expression(cron):
                raise ValueError(f"Invalid cron expression '{cron_expression}' (expected 5-7 fields)")
        elif schedule:
            cron = schedule_to_cron(schedule)
            if not cron:
                raise ValueError(
                    f"Could not understand schedule '{schedule}'. Use a cron expression, 'hourly', 'daily', "
                    "'weekly', 'every day at 9am' or 'every monday at 8:30am'."
                )
        else:
            raise ValueError("Missing 'schedule' or 'cron_expression'")

        raw_steps = list(steps or [])
        if not raw_steps and command:
            raw_steps = [command]
        if not raw_steps:
            raise ValueError("Task needs 'steps' or a 'command' to run")
        normalized = [_normalize_step(step, i) for i, step in enumerate(raw_steps, 1)]

        task = ScheduledTask(
            name=str(name).strip(),
            schedule=schedule or cron,
            cron_expression=cron,
            steps=normalized,
            description=description or "",
            project_path=project_path,
        )
        tasks = self.list_tasks()
        tasks.append(task)
        self._save(tasks)
        logger.info(f"Scheduled task '{task.name}' ({task.cron_expression}) with {len(normalized)} step(s)")
        return task

    def delete_task(self, task_id: str) -> bool:
        tasks = self.list_tasks()
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            return False
        self._save(remaining)
        return True

    def set_enabled(self, task_id: str, enabled: bool) -> bool:
        tasks = self.list_tasks()
        for task in tasks:
            if task.id == task_id:
                task.enabled = enabled
                task.updated_at = datetime.now().isoformat()
                self._save(tasks)
                return True
        return False
