from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# Remote API expects numeric priorities on write
PRIORITY_WIRE = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


def parse_priority(value) -> Priority:
    """Accept a Priority, its name, or its wire number. Unknown values map to Medium."""
    if isinstance(value, Priority):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        for prio, num in PRIORITY_WIRE.items():
            if num == value:
                return prio
        return Priority.MEDIUM
    if isinstance(value, str):
        for prio in Priority:
            if prio.value.lower() == value.strip().lower():
                return prio
    return Priority.MEDIUM


class Column(str, Enum):
    """Board column. Derived from a task's state, never stored."""

    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"


BOARD_COLUMNS = (Column.PENDING, Column.IN_PROGRESS, Column.COMPLETED)

COLUMN_TITLES = {
    Column.PENDING: "To Do",
    Column.IN_PROGRESS: "In Progress",
    Column.COMPLETED: "Completed",
}


class TaskAssignment(SQLModel, table=False):
    id: int
    user_id: str
    assigned_at: datetime | None = None
    display_name: str | None = None
    note: str | None = None


class Task(SQLModel, table=False):
    """Client-side copy of a remote task."""

    id: int
    title: str
    description: str | None = None
    priority: Priority = Field(default=Priority.MEDIUM)
    is_completed: bool = False
    due_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    category_id: int | None = None
    category_name: str | None = None
    project_id: int | None = None
    project_title: str | None = None
    assignments: list[TaskAssignment] = Field(default_factory=list)

    @property
    def assignee_ids(self) -> list[str]:
        return [a.user_id for a in self.assignments]


def column_of(task: Task) -> Column:
    """Total, pure partition of tasks into board columns."""
    if task.is_completed:
        return Column.COMPLETED
    if task.due_date is not None:
        return Column.IN_PROGRESS
    return Column.PENDING
