"""Board-view session: the entry points the UI layer calls.

One BoardSession is created per board view and discarded when the user
navigates away. It owns the TaskStateModel and wires the executor and the
coordinators to it and to the injected gateway.

Env:
    TASKBOARD_PAGE_SIZE: tasks fetched per refresh (default 100)
    TASKBOARD_REFRESH_AFTER_TOGGLE: background refresh after a toggle (default true)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from datetime import datetime
from typing import Callable, Iterable

import column_policy
from assignments import AssignmentSyncCoordinator, AssignmentSyncResult
from drag_session import DragSessionCoordinator, DragState, DropResult
from errors import GatewayError, LocalPolicyViolation
from executor import MutationKind, MutationOutcome, OptimisticMutationExecutor
from gateway import RemoteTaskGateway
from models import Column, Task
from schemas import TaskStatePatch
from task_state import TaskStateModel

logger = logging.getLogger(__name__)

PAGE_SIZE = int(os.environ.get("TASKBOARD_PAGE_SIZE", "100"))
REFRESH_AFTER_TOGGLE = os.environ.get("TASKBOARD_REFRESH_AFTER_TOGGLE", "true").strip().lower() in ("true", "1", "yes")


class SessionClosed(LocalPolicyViolation):
    pass


class BoardSession:
    def __init__(
        self,
        gateway: RemoteTaskGateway,
        *,
        session_id: str | None = None,
        page_size: int | None = None,
        refresh_after_toggle: bool | None = None,
        clock: Callable[[], datetime] = column_policy.utcnow,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.gateway = gateway
        self.page_size = page_size or PAGE_SIZE
        self.refresh_after_toggle = REFRESH_AFTER_TOGGLE if refresh_after_toggle is None else refresh_after_toggle
        self.model = TaskStateModel()
        self.executor = OptimisticMutationExecutor(self.model)
        self.drag = DragSessionCoordinator(self.executor, gateway, clock=clock)
        self.assignments = AssignmentSyncCoordinator(self.executor, gateway)
        self.closed = False
        self._refresh_task: asyncio.Task | None = None
        self._refresh_again = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, tasks: Iterable[Task] | None = None) -> "BoardSession":
        """Load the board. Fetches from the gateway unless *tasks* is given."""
        if tasks is None:
            tasks = await self.gateway.list_tasks(page_size=self.page_size)
        self.model.load(tasks)
        logger.info("Board session %s opened with %d tasks.", self.id, len(self.model))
        return self

    async def close(self) -> None:
        self.closed = True
        self.drag.cancel_drag()
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.model.load([])
        logger.info("Board session %s closed.", self.id)

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosed(f"Board session {self.id} is closed")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def columns(self) -> dict[Column, list[Task]]:
        return self.model.columns()

    @property
    def drag_state(self) -> DragState:
        return self.drag.state

    # ------------------------------------------------------------------
    # Drag and drop
    # ------------------------------------------------------------------

    def begin_drag(self, task_id: int) -> bool:
        self._ensure_open()
        return self.drag.begin_drag(task_id)

    async def drop(self, target: Column | str | None) -> DropResult:
        self._ensure_open()
        return await self.drag.drop(target)

    def cancel_drag(self) -> bool:
        self._ensure_open()
        return self.drag.cancel_drag()

    # ------------------------------------------------------------------
    # Completion toggle
    # ------------------------------------------------------------------

    async def toggle_completion(self, task_id: int) -> MutationOutcome | None:
        """Flip the completion flag; the due date is left as it is.

        Returns None when the toggle is refused locally (unknown task or a
        change already pending on it). Remote failures are re-raised after
        the rollback.
        """
        self._ensure_open()
        try:
            task = self.model.get(task_id)
        except LocalPolicyViolation as exc:
            logger.debug("Toggle ignored: %s", exc)
            return None
        completed = not task.is_completed
        patch = TaskStatePatch(is_completed=completed, due_date=task.due_date)
        try:
            outcome = await self.executor.apply(
                task_id,
                MutationKind.COMPLETION,
                completed,
                confirm=lambda: self.gateway.update_task_state(task_id, patch),
            )
        except LocalPolicyViolation as exc:
            logger.debug("Toggle on task %s ignored: %s", task_id, exc)
            return None
        if self.refresh_after_toggle:
            self.schedule_refresh()
        return outcome

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def commit_assignments(self, task_id: int, target_ids: Iterable[str]) -> AssignmentSyncResult | None:
        self._ensure_open()
        try:
            return await self.assignments.commit_assignments(task_id, target_ids)
        except LocalPolicyViolation as exc:
            logger.debug("Assignment commit on task %s ignored: %s", task_id, exc)
            return None

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> list[int]:
        """Re-read the board from the server without clobbering local changes.

        Tasks with a pending mutation, or written while the listing was in
        flight, keep their local value. Returns the ids that were kept.
        """
        self._ensure_open()
        baseline = self.model.revisions()
        tasks = await self.gateway.list_tasks(page_size=self.page_size)
        if self.closed:
            return []
        return self.model.reconcile(tasks, baseline=baseline)

    def schedule_refresh(self) -> asyncio.Task:
        """Start a background refresh, or fold this request into the one running."""
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_again = True
            return self._refresh_task
        self._refresh_task = asyncio.get_running_loop().create_task(self._background_refresh())
        return self._refresh_task

    async def _background_refresh(self) -> None:
        while not self.closed:
            self._refresh_again = False
            try:
                await self.refresh()
            except GatewayError as exc:
                logger.warning("Background refresh for session %s failed: %s", self.id, exc)
            if not self._refresh_again:
                return

    async def settle(self) -> None:
        """Wait for a scheduled background refresh to finish."""
        task = self._refresh_task
        if task is not None and not task.done():
            await task
