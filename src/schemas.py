"""Wire and response schemas.

Remote DTOs use the camelCase field names of the task API; the bridge
request/response bodies are plain SQLModel (table=False) models, consistent
with models.py.
"""

from datetime import datetime
from typing import Any

from sqlmodel import SQLModel

from models import (
    BOARD_COLUMNS,
    COLUMN_TITLES,
    PRIORITY_WIRE,
    Column,
    Priority,
    Task,
    TaskAssignment,
    parse_priority,
)


class TaskStatePatch(SQLModel):
    """Body of an updateTaskState call: completion flag and due date, always together."""

    is_completed: bool
    due_date: datetime | None = None


# ---------------------------------------------------------------------------
# Remote wire format
# ---------------------------------------------------------------------------


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def assignment_from_wire(data: dict[str, Any]) -> TaskAssignment:
    assigned_to = data.get("assignedTo") or {}
    user_id = assigned_to.get("id") or data.get("userId")
    if user_id is None:
        raise ValueError(f"Assignment {data.get('id')} has no user id")
    return TaskAssignment(
        id=int(data["id"]),
        user_id=str(user_id),
        assigned_at=parse_datetime(data.get("assignedAt")),
        display_name=assigned_to.get("displayName"),
        note=data.get("note"),
    )


def task_from_wire(data: dict[str, Any]) -> Task:
    assignments = [assignment_from_wire(a) for a in data.get("assignments") or []]
    assignments.sort(key=lambda a: (a.assigned_at is None, a.assigned_at or datetime.min, a.id))
    seen: set[str] = set()
    unique = []
    for a in assignments:
        if a.user_id in seen:
            continue
        seen.add(a.user_id)
        unique.append(a)
    return Task(
        id=int(data["id"]),
        title=data.get("title") or "",
        description=data.get("description"),
        priority=parse_priority(data.get("priority")),
        is_completed=bool(data.get("isCompleted", False)),
        due_date=parse_datetime(data.get("dueDate")),
        completed_at=parse_datetime(data.get("completedAt")),
        created_at=parse_datetime(data.get("createdAt")),
        category_id=data.get("categoryId"),
        category_name=data.get("categoryName"),
        project_id=data.get("projectId"),
        project_title=data.get("projectTitle"),
        assignments=unique,
    )


def task_to_wire(task: Task, patch: TaskStatePatch | None = None) -> dict[str, Any]:
    """Full PUT body for a task, with *patch* applied on top."""
    is_completed = patch.is_completed if patch is not None else task.is_completed
    due_date = patch.due_date if patch is not None else task.due_date
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "priority": PRIORITY_WIRE.get(task.priority, PRIORITY_WIRE[Priority.MEDIUM]),
        "categoryId": task.category_id,
        "projectId": task.project_id,
        "isCompleted": is_completed,
        "dueDate": format_datetime(due_date),
    }


# ---------------------------------------------------------------------------
# Bridge bodies
# ---------------------------------------------------------------------------


class TaskCard(SQLModel):
    id: int
    title: str
    priority: Priority
    is_completed: bool
    due_date: datetime | None = None
    project_id: int | None = None
    assignee_ids: list[str] = []
    pending: bool = False


class BoardColumn(SQLModel):
    id: Column
    title: str
    tasks: list[TaskCard]


class BoardView(SQLModel):
    session_id: str
    columns: list[BoardColumn]
    drag_state: str


class BeginDragRequest(SQLModel):
    task_id: int


class DropRequest(SQLModel):
    column: Column | None = None


class AssignmentsRequest(SQLModel):
    user_ids: list[str]


class AssignmentsResponse(SQLModel):
    task_id: int
    added: list[str]
    removed: list[str]
    failed: list[str]
    assignee_ids: list[str]


def board_view(session_id: str, columns: dict[Column, list[Task]], pending: frozenset[int], drag_state: str) -> BoardView:
    return BoardView(
        session_id=session_id,
        drag_state=drag_state,
        columns=[
            BoardColumn(
                id=col,
                title=COLUMN_TITLES[col],
                tasks=[
                    TaskCard(
                        id=t.id,
                        title=t.title,
                        priority=t.priority,
                        is_completed=t.is_completed,
                        due_date=t.due_date,
                        project_id=t.project_id,
                        assignee_ids=t.assignee_ids,
                        pending=t.id in pending,
                    )
                    for t in columns.get(col, [])
                ],
            )
            for col in BOARD_COLUMNS
        ],
    )
