"""
Task workflow: statuses and the column-title status table.

A column carries an explicit ``status``. The title table below is only used
to seed that field when a column is created without one, so renaming a column
later never changes what moving a task into it does. Boards remember which
table version seeded their columns.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

TASK_STATUSES = ("todo", "in-progress", "review", "done", "archived")
TASK_PRIORITIES = ("low", "medium", "high", "critical")

DEFAULT_COLUMNS = (
    # title, color, status
    ("To Do", "#6B7280", "todo"),
    ("In Progress", "#3B82F6", "in-progress"),
    ("Review", "#F59E0B", "review"),
    ("Done", "#10B981", "done"),
)


@dataclass(frozen=True)
class StatusMapping:
    version: int
    titles: Mapping[str, str]

    def status_for_title(self, title: str) -> str | None:
        """
        Exact lookup on the lower-cased, whitespace-normalised title.

        Example:
            >>> DEFAULT_STATUS_MAPPING.status_for_title("In  Progress")
            'in-progress'
            >>> DEFAULT_STATUS_MAPPING.status_for_title("Not Done") is None
            True
        """
        normalized = " ".join((title or "").lower().split())
        return self.titles.get(normalized)


DEFAULT_STATUS_MAPPING = StatusMapping(
    version=1,
    titles=MappingProxyType({
        "to do": "todo",
        "todo": "todo",
        "in progress": "in-progress",
        "progress": "in-progress",
        "review": "review",
        "testing": "review",
        "done": "done",
        "complete": "done",
        "completed": "done",
    }),
)

STATUS_MAPPINGS = {DEFAULT_STATUS_MAPPING.version: DEFAULT_STATUS_MAPPING}


def get_status_mapping(version: int | None = None) -> StatusMapping:
    if version is None:
        return DEFAULT_STATUS_MAPPING
    try:
        return STATUS_MAPPINGS[version]
    except KeyError:
        raise ValueError(f"Unknown status mapping version: {version}") from None


def apply_status(task, status: str, now) -> None:
    """Set a task's status and the fields that follow from it."""
    task.status = status
    if status == "done":
        task.completion_percentage = 100
    if status == "archived":
        task.archived_at = task.archived_at or now
    else:
        task.archived_at = None
