import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from executor import OptimisticMutationExecutor
from gateway import RemoteTaskGateway
from models import Priority, Task, TaskAssignment
from task_state import TaskStateModel

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_task(task_id: int = 1, **overrides) -> Task:
    fields = {
        "id": task_id,
        "title": f"Task {task_id}",
        "description": "D",
        "priority": Priority.MEDIUM,
        "is_completed": False,
        "due_date": None,
        "project_id": 7,
    }
    fields.update(overrides)
    return Task(**fields)


def make_assignment(assignment_id: int, user_id: str) -> TaskAssignment:
    return TaskAssignment(id=assignment_id, user_id=user_id, assigned_at=NOW)


class Gate:
    """Holds a remote call open until the test releases it."""

    def __init__(self):
        self.event = asyncio.Event()
        self.error: Exception | None = None
        self.entered = asyncio.Event()

    async def __call__(self, *args, **kwargs):
        self.entered.set()
        await self.event.wait()
        if self.error is not None:
            raise self.error
        return None

    def release(self, error: Exception | None = None) -> None:
        self.error = error
        self.event.set()


@pytest.fixture
def gateway():
    """Gateway double: every operation is an AsyncMock that succeeds."""
    gw = MagicMock(spec=RemoteTaskGateway)
    gw.update_task_state = AsyncMock(return_value=None)
    gw.set_assignment = AsyncMock()
    gw.clear_assignment = AsyncMock(return_value=None)
    gw.list_tasks = AsyncMock(return_value=[])
    gw.get_task = AsyncMock()
    return gw


@pytest.fixture
def model():
    return TaskStateModel(
        [
            make_task(1),
            make_task(2, due_date=datetime(2024, 2, 1, tzinfo=timezone.utc)),
            make_task(3, is_completed=True),
        ]
    )


@pytest.fixture
def executor(model):
    return OptimisticMutationExecutor(model)
