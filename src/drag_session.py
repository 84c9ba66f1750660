"""Drag-and-drop session state machine for the board view.

Pointer events are folded into at most one column move per session:

    Idle --begin--> Dragging --drop (valid target)--> Committing --resolved--> Idle
                        |--drop (same column / no target)--> Idle
                        |--cancel--> Idle

Anything not in TRANSITIONS (a second begin while a drag is active, a cancel
once the remote call is running, a drop with no drag) is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Union

import column_policy
from errors import LocalPolicyViolation
from executor import MutationKind, MutationOutcome, OptimisticMutationExecutor
from models import Column, Task
from schemas import TaskStatePatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Dragging:
    task_id: int
    source: Column


@dataclass(frozen=True)
class Committing:
    task_id: int
    source: Column
    target: Column


DragState = Union[Idle, Dragging, Committing]


class DragEvent(str, Enum):
    BEGIN = "begin"
    DROP = "drop"
    CANCEL = "cancel"
    RESOLVED = "resolved"


TRANSITIONS: dict[tuple[type, DragEvent], tuple[type, ...]] = {
    (Idle, DragEvent.BEGIN): (Dragging,),
    (Dragging, DragEvent.DROP): (Committing, Idle),
    (Dragging, DragEvent.CANCEL): (Idle,),
    (Committing, DragEvent.RESOLVED): (Idle,),
}


@dataclass(frozen=True)
class DropResult:
    committed: bool
    task_id: int | None = None
    source: Column | None = None
    target: Column | None = None
    reason: str | None = None
    task: Task | None = None


TransitionListener = Callable[[DragState, DragState], None]


class DragSessionCoordinator:
    def __init__(
        self,
        executor: OptimisticMutationExecutor,
        gateway,
        clock: Callable[[], datetime] = column_policy.utcnow,
    ):
        self.executor = executor
        self.gateway = gateway
        self.clock = clock
        self._state: DragState = Idle()
        self._listeners: list[TransitionListener] = []

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def model(self):
        return self.executor.model

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def _allowed(self, event: DragEvent) -> bool:
        return (type(self._state), event) in TRANSITIONS

    def _move(self, event: DragEvent, new_state: DragState) -> None:
        allowed = TRANSITIONS.get((type(self._state), event), ())
        if type(new_state) not in allowed:
            raise RuntimeError(
                f"Illegal drag transition {type(self._state).__name__} --{event.value}--> {type(new_state).__name__}"
            )
        old, self._state = self._state, new_state
        logger.debug("Drag %s: %s -> %s", event.value, old, new_state)
        for listener in list(self._listeners):
            try:
                listener(old, new_state)
            except Exception:
                logger.exception("Drag transition listener failed on %s -> %s", old, new_state)

    def begin_drag(self, task_id: int) -> bool:
        """Start dragging *task_id*. Returns False (and changes nothing) if not allowed."""
        if not self._allowed(DragEvent.BEGIN):
            logger.debug("Ignoring drag start for task %s while %s", task_id, self._state)
            return False
        if task_id not in self.model:
            logger.debug("Ignoring drag start for unknown task %s", task_id)
            return False
        self._move(DragEvent.BEGIN, Dragging(task_id=task_id, source=self.model.column_of(task_id)))
        return True

    def cancel_drag(self) -> bool:
        if not self._allowed(DragEvent.CANCEL):
            return False
        self._move(DragEvent.CANCEL, Idle())
        return True

    def _abandon(self, dragging: Dragging, target: Column | None, reason: str) -> DropResult:
        self._move(DragEvent.DROP, Idle())
        return DropResult(
            committed=False,
            task_id=dragging.task_id,
            source=dragging.source,
            target=target,
            reason=reason,
        )

    async def drop(self, target: Column | str | None) -> DropResult:
        """Drop the dragged task on *target*.

        The column change is visible in the model before the remote call
        starts. Once the executor resolves the session is back to Idle; a
        remote failure is re-raised after the rollback.
        """
        dragging = self._state
        if not isinstance(dragging, Dragging) or not self._allowed(DragEvent.DROP):
            return DropResult(committed=False, reason="no active drag")

        if target is not None:
            try:
                target = Column(target)
            except ValueError:
                target = None
        if target is None:
            return self._abandon(dragging, None, "no drop target")
        if target == dragging.source:
            return self._abandon(dragging, target, "same column")
        if dragging.task_id not in self.model:
            return self._abandon(dragging, target, "task no longer on board")
        task = self.model.get(dragging.task_id)
        if not column_policy.is_valid_drop(task, target):
            return self._abandon(dragging, target, "same column")
        if self.model.is_pending(dragging.task_id):
            return self._abandon(dragging, target, "task has a pending change")

        new_state = column_policy.resolve(target, task, now=self.clock())
        self._move(
            DragEvent.DROP,
            Committing(task_id=dragging.task_id, source=dragging.source, target=target),
        )
        patch = TaskStatePatch(is_completed=new_state.is_completed, due_date=new_state.due_date)
        task_id = dragging.task_id
        try:
            outcome: MutationOutcome = await self.executor.apply(
                task_id,
                MutationKind.COLUMN_STATE,
                new_state,
                confirm=lambda: self.gateway.update_task_state(task_id, patch),
            )
        except LocalPolicyViolation as exc:
            logger.debug("Drop on task %s ignored: %s", task_id, exc)
            return DropResult(
                committed=False, task_id=task_id, source=dragging.source, target=target, reason=str(exc)
            )
        finally:
            self._move(DragEvent.RESOLVED, Idle())

        return DropResult(
            committed=True,
            task_id=task_id,
            source=dragging.source,
            target=target,
            task=outcome.task,
        )
