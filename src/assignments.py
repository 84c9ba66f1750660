"""Assignee-list reconciliation.

``diff`` turns a user-edited target list into the minimal add/remove sets;
AssignmentSyncCoordinator sends them one call per user id, additions first so
the task is never left with zero assignees at the remote longer than needed.
Calls fail independently: whatever was confirmed is kept, whatever failed is
left as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal

from errors import GatewayError, TransportError
from executor import MutationKind, OptimisticMutationExecutor
from models import TaskAssignment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentDelta:
    to_add: tuple[str, ...]
    to_remove: tuple[str, ...]

    def __post_init__(self):
        overlap = set(self.to_add) & set(self.to_remove)
        if overlap:
            raise ValueError(f"User ids both added and removed: {sorted(overlap)}")

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for uid in ids:
        if uid not in seen:
            seen.add(uid)
            out.append(uid)
    return out


def diff(current_ids: Iterable[str], target_ids: Iterable[str]) -> AssignmentDelta:
    """to_add = target - current, to_remove = current - target.

    to_add keeps target order and to_remove keeps current order.
    """
    current = _unique(current_ids)
    target = _unique(target_ids)
    current_set, target_set = set(current), set(target)
    return AssignmentDelta(
        to_add=tuple(uid for uid in target if uid not in current_set),
        to_remove=tuple(uid for uid in current if uid not in target_set),
    )


@dataclass(frozen=True)
class AssignmentFailure:
    user_id: str
    operation: Literal["add", "remove"]
    error: GatewayError


@dataclass
class AssignmentSyncResult:
    task_id: int
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failures: list[AssignmentFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_user_ids(self) -> list[str]:
        return [f.user_id for f in self.failures]


class AssignmentSyncCoordinator:
    def __init__(self, executor: OptimisticMutationExecutor, gateway):
        self.executor = executor
        self.gateway = gateway

    @property
    def model(self):
        return self.executor.model

    async def commit_assignments(self, task_id: int, target_ids: Iterable[str]) -> AssignmentSyncResult:
        """Converge the task's assignees toward *target_ids*.

        Raises LocalPolicyViolation for an unknown task or one with a pending
        mutation; remote failures are reported in the result instead.
        """
        snapshot = self.executor.reserve(task_id, MutationKind.ASSIGNMENTS)
        result = AssignmentSyncResult(task_id=task_id)
        current: list[TaskAssignment] = list(snapshot.values["assignments"])
        confirmed: list[TaskAssignment] = [a.model_copy() for a in current]
        try:
            delta = diff([a.user_id for a in current], target_ids)
            if delta.empty:
                return result

            logger.info(
                "Syncing assignments for task %s: +%s -%s",
                task_id,
                list(delta.to_add),
                list(delta.to_remove),
            )

            for user_id in delta.to_add:
                try:
                    assignment = await self.gateway.set_assignment(task_id, user_id)
                except Exception as exc:
                    result.failures.append(AssignmentFailure(user_id, "add", _as_gateway_error(exc)))
                    logger.warning("Assigning %s to task %s failed: %s", user_id, task_id, exc)
                    continue
                if assignment.user_id != user_id:
                    assignment = assignment.model_copy(update={"user_id": user_id})
                confirmed.append(assignment)
                result.added.append(user_id)

            by_user = {a.user_id: a for a in current}
            for user_id in delta.to_remove:
                assignment = by_user[user_id]
                try:
                    await self.gateway.clear_assignment(task_id, assignment.id)
                except Exception as exc:
                    result.failures.append(AssignmentFailure(user_id, "remove", _as_gateway_error(exc)))
                    logger.warning("Unassigning %s from task %s failed: %s", user_id, task_id, exc)
                    continue
                confirmed = [a for a in confirmed if a.user_id != user_id]
                result.removed.append(user_id)
            return result
        finally:
            # Only confirmed operations reach the model, including when the
            # series was cancelled part way through
            if (result.added or result.removed) and task_id in self.model:
                self.model.write(task_id, assignments=confirmed)
            self.executor.release(snapshot)


def _as_gateway_error(exc: Exception) -> GatewayError:
    if isinstance(exc, GatewayError):
        return exc
    return TransportError(str(exc) or type(exc).__name__)
