"""Map a board column to the task state it implies.

Pending means open with no due date, InProgress means open with a due date,
Completed means the completion flag is set. Moving a task into InProgress
therefore has to guarantee a due date, and moving it into Pending has to clear
one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from models import BOARD_COLUMNS, Column, Task, column_of

IN_PROGRESS_DEFAULT_DUE = timedelta(days=7)


@dataclass(frozen=True)
class ColumnState:
    is_completed: bool
    due_date: datetime | None

    @property
    def column(self) -> Column:
        if self.is_completed:
            return Column.COMPLETED
        if self.due_date is not None:
            return Column.IN_PROGRESS
        return Column.PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve(target: Column, task: Task, now: datetime | None = None) -> ColumnState:
    """Return the (completion, due date) pair a drop on *target* implies for *task*."""
    target = Column(target)
    if target == Column.COMPLETED:
        return ColumnState(is_completed=True, due_date=task.due_date)
    if target == Column.IN_PROGRESS:
        due = task.due_date
        if due is None:
            due = (now or utcnow()) + IN_PROGRESS_DEFAULT_DUE
        return ColumnState(is_completed=False, due_date=due)
    return ColumnState(is_completed=False, due_date=None)


def is_valid_drop(task: Task, target: Column | None) -> bool:
    """A drop target is valid when it is a board column other than the task's own."""
    if target is None:
        return False
    try:
        target = Column(target)
    except ValueError:
        return False
    return target != column_of(task)


def valid_drop_targets(task: Task) -> list[Column]:
    return [c for c in BOARD_COLUMNS if is_valid_drop(task, c)]
