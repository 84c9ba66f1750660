"""Unit tests for the optimistic mutation executor (apply, commit, rollback, policy)."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from column_policy import ColumnState
from conftest import Gate
from errors import LocalPolicyViolation, TaskNotFound, TransportError, ValidationRejected
from executor import MutationKind

DUE = datetime(2024, 1, 8, tzinfo=timezone.utc)


def test_apply_commits_on_success(executor, model):
    confirm = AsyncMock(return_value={"ok": True})
    outcome = asyncio.run(
        executor.apply(1, MutationKind.COLUMN_STATE, ColumnState(is_completed=False, due_date=DUE), confirm)
    )
    confirm.assert_awaited_once()
    assert outcome.task.due_date == DUE
    assert outcome.result == {"ok": True}
    assert model.get(1).due_date == DUE
    assert executor.pending_count == 0


def test_local_write_is_visible_before_confirmation(executor, model):
    seen = {}

    async def confirm():
        task = model.get(1)
        seen["during"] = (task.is_completed, model.is_pending(1))

    asyncio.run(executor.apply(1, MutationKind.COMPLETION, True, confirm))
    assert seen["during"] == (True, True)


@pytest.mark.parametrize(
    "error",
    [TransportError("offline"), ValidationRejected("nope", status_code=400, payload={"error": "Bad"})],
)
def test_rollback_restores_exact_attributes(executor, model, error):
    before = model.get(2).model_dump()
    confirm = AsyncMock(side_effect=error)
    with pytest.raises(type(error)):
        asyncio.run(
            executor.apply(2, MutationKind.COLUMN_STATE, ColumnState(is_completed=True, due_date=None), confirm)
        )
    assert model.get(2).model_dump() == before
    assert not model.is_pending(2)


def test_unexpected_exception_becomes_transport_failure(executor, model):
    confirm = AsyncMock(side_effect=ConnectionResetError("reset"))
    with pytest.raises(TransportError):
        asyncio.run(executor.apply(1, MutationKind.COMPLETION, True, confirm))
    assert model.get(1).is_completed is False


def test_multi_field_write_is_never_partial(executor, model):
    states = []
    model.subscribe(lambda m, task_id: states.append((m.get(2).is_completed, m.get(2).due_date)))
    original = (False, model.get(2).due_date)
    confirm = AsyncMock(side_effect=TransportError("down"))
    with pytest.raises(TransportError):
        asyncio.run(
            executor.apply(2, MutationKind.COLUMN_STATE, ColumnState(is_completed=True, due_date=None), confirm)
        )
    assert states == [(True, None), original]


def test_second_mutation_on_pending_task_is_rejected(executor, model):
    async def scenario():
        gate = Gate()
        first = asyncio.create_task(executor.apply(1, MutationKind.COMPLETION, True, gate))
        await gate.entered.wait()
        with pytest.raises(LocalPolicyViolation):
            await executor.apply(1, MutationKind.COMPLETION, False, AsyncMock())
        assert model.get(1).is_completed is True
        gate.release()
        await first

    asyncio.run(scenario())
    assert model.get(1).is_completed is True
    assert executor.pending_count == 0


def test_unknown_task_is_rejected_before_confirm(executor):
    confirm = AsyncMock()
    with pytest.raises(TaskNotFound):
        asyncio.run(executor.apply(42, MutationKind.COMPLETION, True, confirm))
    confirm.assert_not_awaited()


def test_value_shape_must_match_kind(executor, model):
    with pytest.raises(ValueError):
        asyncio.run(executor.apply(1, MutationKind.COMPLETION, {"due_date": None}, AsyncMock()))
    with pytest.raises(TypeError):
        asyncio.run(executor.apply(1, MutationKind.COLUMN_STATE, True, AsyncMock()))
    with pytest.raises(TypeError):
        asyncio.run(executor.apply(1, MutationKind.ASSIGNMENTS, ["ana"], AsyncMock()))
    assert not model.is_pending(1)


def test_outcome_survives_task_leaving_the_model(executor, model):
    async def confirm():
        # board closed while the remote call was running
        model.load([])
        return "accepted"

    outcome = asyncio.run(executor.apply(1, MutationKind.COMPLETION, True, confirm))
    assert outcome.task.is_completed is True
    assert outcome.result == "accepted"
    assert executor.pending_count == 0
