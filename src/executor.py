"""Apply a task change locally, then confirm it remotely or roll it back.

The snapshot and the local write happen back to back with no ``await`` in
between, so no other event can observe the task between the two. The remote
confirmation is the only suspension point.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from column_policy import ColumnState
from errors import GatewayError, LocalPolicyViolation, TaskNotFound, TransportError
from models import Task
from task_state import MutationSnapshot, TaskStateModel

logger = logging.getLogger(__name__)


class MutationKind(str, Enum):
    COLUMN_STATE = "column_state"  # completion flag + due date, as one unit
    COMPLETION = "completion"
    ASSIGNMENTS = "assignments"


MUTATION_FIELDS: dict[MutationKind, tuple[str, ...]] = {
    MutationKind.COLUMN_STATE: ("is_completed", "due_date"),
    MutationKind.COMPLETION: ("is_completed",),
    MutationKind.ASSIGNMENTS: ("assignments",),
}

Confirm = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class MutationOutcome:
    task_id: int
    kind: MutationKind
    task: Task
    result: Any = None


def _coerce_values(kind: MutationKind, new_value: Any) -> dict[str, Any]:
    if isinstance(new_value, ColumnState):
        values = {"is_completed": new_value.is_completed, "due_date": new_value.due_date}
    elif isinstance(new_value, Mapping):
        values = dict(new_value)
    elif kind == MutationKind.COMPLETION and isinstance(new_value, bool):
        values = {"is_completed": new_value}
    else:
        raise TypeError(f"Unsupported value for {kind.value} mutation: {new_value!r}")
    expected = set(MUTATION_FIELDS[kind])
    if set(values) != expected:
        raise ValueError(f"{kind.value} mutation must set exactly {sorted(expected)}, got {sorted(values)}")
    return values


class OptimisticMutationExecutor:
    """Generic apply / confirm / rollback engine over one TaskStateModel."""

    def __init__(self, model: TaskStateModel):
        self.model = model

    @property
    def pending_count(self) -> int:
        return len(self.model.pending_ids)

    def reserve(self, task_id: int, kind: MutationKind) -> MutationSnapshot:
        """Check local policy, snapshot the fields *kind* touches and mark the task pending.

        Raises LocalPolicyViolation (or TaskNotFound) without touching the model.
        """
        kind = MutationKind(kind)
        if task_id not in self.model:
            raise TaskNotFound(task_id)
        if self.model.is_pending(task_id):
            raise LocalPolicyViolation(f"Task {task_id} already has a pending mutation")
        snapshot = self.model.snapshot(task_id, MUTATION_FIELDS[kind])
        self.model.begin_pending(task_id)
        return snapshot

    def release(self, snapshot: MutationSnapshot) -> None:
        self.model.end_pending(snapshot.task_id)

    def rollback(self, snapshot: MutationSnapshot, expected_revision: int | None = None) -> bool:
        restored = self.model.restore(snapshot, expected_revision=expected_revision)
        if restored:
            logger.warning("Rolled back task %s (%s).", snapshot.task_id, ", ".join(snapshot.fields))
        return restored

    async def apply(
        self,
        task_id: int,
        kind: MutationKind,
        new_value: Any,
        confirm: Confirm,
    ) -> MutationOutcome:
        """Write *new_value* now, await *confirm()*, and undo the write if it fails.

        Gateway failures are re-raised after the rollback; any other exception
        from *confirm* is treated as a transport failure.
        """
        kind = MutationKind(kind)
        values = _coerce_values(kind, new_value)
        snapshot = self.reserve(task_id, kind)
        try:
            revision = self.model.write(task_id, **values)
            written = self.model.get(task_id)
        except Exception:
            self.release(snapshot)
            raise
        logger.debug("Applied %s to task %s optimistically.", kind.value, task_id)

        try:
            result = await confirm()
        except GatewayError as exc:
            self.rollback(snapshot, expected_revision=revision)
            logger.warning("Remote rejected %s on task %s: %s", kind.value, task_id, exc)
            raise
        except asyncio.CancelledError:
            self.rollback(snapshot, expected_revision=revision)
            raise
        except Exception as exc:
            self.rollback(snapshot, expected_revision=revision)
            logger.warning("Confirming %s on task %s failed: %s", kind.value, task_id, exc)
            raise TransportError(str(exc) or type(exc).__name__) from exc
        finally:
            self.release(snapshot)

        logger.info("Committed %s on task %s.", kind.value, task_id)
        # The written copy stays valid if the board was closed meanwhile
        return MutationOutcome(task_id=task_id, kind=kind, task=written, result=result)
