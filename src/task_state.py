"""In-memory task collection for one board view.

A TaskStateModel is created per board session and handed to the coordinators
that mutate it; there is no module-level store. Readers always get copies, so
the only way to change a task is through ``write``/``restore``, which the
optimistic executor owns.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from errors import TaskNotFound
from models import BOARD_COLUMNS, Column, Task, column_of

logger = logging.getLogger(__name__)

# Fields the sync core is allowed to rewrite
MUTABLE_FIELDS = frozenset({"is_completed", "due_date", "assignments"})


@dataclass(frozen=True)
class MutationSnapshot:
    """Pre-mutation values of the fields one mutation touches."""

    task_id: int
    values: Mapping[str, Any]
    revision: int
    fields: tuple[str, ...] = field(default=())


Listener = Callable[["TaskStateModel", int | None], None]


class TaskStateModel:
    def __init__(self, tasks: Iterable[Task] | None = None):
        self._tasks: dict[int, Task] = {}
        self._revisions: dict[int, int] = {}
        self._pending: set[int] = set()
        self._listeners: list[Listener] = []
        if tasks is not None:
            self.load(tasks)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: int) -> Task:
        """Return a copy of the task, or raise TaskNotFound."""
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task.model_copy(deep=True)

    def tasks(self) -> list[Task]:
        return [t.model_copy(deep=True) for t in self._tasks.values()]

    def column_of(self, task_id: int) -> Column:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return column_of(task)

    def columns(self) -> dict[Column, list[Task]]:
        """Column-partitioned view; load order is kept inside each column."""
        view: dict[Column, list[Task]] = {c: [] for c in BOARD_COLUMNS}
        for task in self._tasks.values():
            view[column_of(task)].append(task.model_copy(deep=True))
        return view

    def revision(self, task_id: int) -> int:
        if task_id not in self._tasks:
            raise TaskNotFound(task_id)
        return self._revisions.get(task_id, 0)

    # ------------------------------------------------------------------
    # Pending mutations
    # ------------------------------------------------------------------

    def begin_pending(self, task_id: int) -> None:
        if task_id not in self._tasks:
            raise TaskNotFound(task_id)
        self._pending.add(task_id)

    def end_pending(self, task_id: int) -> None:
        self._pending.discard(task_id)

    def is_pending(self, task_id: int) -> bool:
        return task_id in self._pending

    @property
    def pending_ids(self) -> frozenset[int]:
        return frozenset(self._pending)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def load(self, tasks: Iterable[Task]) -> None:
        """Replace the whole collection (initial fetch)."""
        self._tasks = {}
        self._revisions = {}
        self._pending.clear()
        for task in tasks:
            self._tasks[task.id] = task.model_copy(deep=True)
            self._revisions[task.id] = 0
        self._notify(None)

    def snapshot(self, task_id: int, fields: Iterable[str]) -> MutationSnapshot:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        names = tuple(fields)
        _check_fields(names)
        values = {name: copy.deepcopy(getattr(task, name)) for name in names}
        return MutationSnapshot(
            task_id=task_id,
            values=MappingProxyType(values),
            revision=self._revisions.get(task_id, 0),
            fields=names,
        )

    def write(self, task_id: int, **values: Any) -> int:
        """Apply all *values* to one task as a single change. Returns the new revision."""
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        _check_fields(values)
        update = {name: copy.deepcopy(value) for name, value in values.items()}
        # Swap in a new object so no reader ever sees half the fields updated
        self._tasks[task_id] = task.model_copy(update=update, deep=True)
        rev = self._revisions.get(task_id, 0) + 1
        self._revisions[task_id] = rev
        self._notify(task_id)
        return rev

    def restore(self, snapshot: MutationSnapshot, expected_revision: int | None = None) -> bool:
        """Put the snapshot values back.

        When *expected_revision* is given and the task has been written since,
        the restore is refused and False is returned.
        """
        if snapshot.task_id not in self._tasks:
            logger.warning("Task %s vanished before rollback; nothing restored.", snapshot.task_id)
            return False
        current = self._revisions.get(snapshot.task_id, 0)
        if expected_revision is not None and current != expected_revision:
            logger.warning(
                "Task %s changed since the optimistic write (revision %s, expected %s); rollback skipped.",
                snapshot.task_id,
                current,
                expected_revision,
            )
            return False
        self.write(snapshot.task_id, **dict(snapshot.values))
        return True

    def revisions(self) -> dict[int, int]:
        """Current revision of every task; pass to ``reconcile`` as the baseline."""
        return dict(self._revisions)

    def reconcile(self, server_tasks: Iterable[Task], baseline: Mapping[int, int] | None = None) -> list[int]:
        """Merge a server listing into the model.

        Tasks with a pending mutation are left untouched so a stale listing
        can never overwrite an optimistic value. With *baseline* (revisions
        taken before the listing was requested), tasks written since then are
        left untouched too. Returns the skipped ids.
        """
        incoming = {t.id: t for t in server_tasks}
        merged: dict[int, Task] = {}
        revisions: dict[int, int] = {}
        skipped: list[int] = []
        for task_id, current in self._tasks.items():
            moved = baseline is not None and baseline.get(task_id) != self._revisions.get(task_id, 0)
            if task_id in self._pending or moved:
                merged[task_id] = current
                revisions[task_id] = self._revisions.get(task_id, 0)
                skipped.append(task_id)
                continue
            if task_id in incoming:
                merged[task_id] = incoming[task_id].model_copy(deep=True)
                revisions[task_id] = self._revisions.get(task_id, 0) + 1
        for task_id, task in incoming.items():
            if task_id not in merged:
                merged[task_id] = task.model_copy(deep=True)
                revisions[task_id] = 0
        self._tasks = merged
        self._revisions = revisions
        if skipped:
            logger.debug("Refresh skipped tasks with pending mutations: %s", skipped)
        self._notify(None)
        return skipped

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener(model, task_id)*; task_id is None for bulk changes."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, task_id: int | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, task_id)
            except Exception:
                logger.exception("Task state listener failed")


def _check_fields(names: Iterable[str]) -> None:
    unknown = set(names) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not managed by the sync core: {sorted(unknown)}")
