"""HttpTaskGateway against a mocked requests session."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from errors import TransportError, ValidationRejected
from gateway import HttpTaskGateway
from schemas import TaskStatePatch

TASK_BODY = {
    "id": 5,
    "title": "Write docs",
    "description": "All of them",
    "priority": 3,
    "isCompleted": False,
    "dueDate": None,
    "categoryId": 2,
    "projectId": 7,
    "assignments": [
        {"id": 11, "assignedTo": {"id": "bo", "displayName": "Bo"}, "assignedAt": "2024-01-02T00:00:00Z"},
        {"id": 10, "assignedTo": {"id": "ana"}, "assignedAt": "2024-01-01T00:00:00Z"},
    ],
}


def _response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    if body is None:
        response.content = b""
        response.json.side_effect = ValueError("no body")
        response.text = ""
    elif isinstance(body, str):
        response.content = body.encode()
        response.json.side_effect = ValueError("not json")
        response.text = body
    else:
        response.content = json.dumps(body).encode()
        response.json.return_value = body
        response.text = json.dumps(body)
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def gw(session):
    return HttpTaskGateway(base_url="http://api.test/api/", token="secret", timeout=3, session=session)


def test_get_task_parses_wire_body(gw, session):
    session.request.return_value = _response(body=TASK_BODY)
    task = asyncio.run(gw.get_task(5))
    method, url = session.request.call_args.args
    assert (method, url) == ("GET", "http://api.test/api/Tasks/5")
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"
    assert session.request.call_args.kwargs["timeout"] == 3
    assert task.priority.value == "High"
    # ordered by assignment time
    assert task.assignee_ids == ["ana", "bo"]


def test_list_tasks_reads_paged_envelope(gw, session):
    session.request.return_value = _response(body={"data": [TASK_BODY, dict(TASK_BODY, id=6)], "totalCount": 2})
    tasks = asyncio.run(gw.list_tasks(page_size=50))
    assert [t.id for t in tasks] == [5, 6]
    assert session.request.call_args.kwargs["params"] == {"page": 1, "pageSize": 50}


def test_update_task_state_puts_full_body(gw, session):
    due = datetime(2024, 1, 8, tzinfo=timezone.utc)
    session.request.side_effect = [_response(body=TASK_BODY), _response(status=204)]
    result = asyncio.run(gw.update_task_state(5, TaskStatePatch(is_completed=False, due_date=due)))
    assert result is None
    put = session.request.call_args_list[1]
    assert put.args == ("PUT", "http://api.test/api/Tasks/5")
    body = put.kwargs["json"]
    assert body["priority"] == 3
    assert body["isCompleted"] is False
    assert body["dueDate"] == due.isoformat()
    assert body["title"] == "Write docs"


def test_set_assignment_posts_editor_permission(gw, session):
    session.request.return_value = _response(status=201, body={"id": 77, "assignedTo": {"id": "cy"}})
    assignment = asyncio.run(gw.set_assignment(5, "cy"))
    assert session.request.call_args.args == ("POST", "http://api.test/api/tasks/5/assignments")
    assert session.request.call_args.kwargs["json"] == {"userIdentifier": "cy", "permission": "Editor"}
    assert (assignment.id, assignment.user_id) == (77, "cy")


def test_clear_assignment_deletes_by_id(gw, session):
    session.request.return_value = _response(status=204)
    asyncio.run(gw.clear_assignment(5, 77))
    assert session.request.call_args.args == ("DELETE", "http://api.test/api/tasks/5/assignments/77")


@pytest.mark.parametrize("status", [429, 500, 503])
def test_retryable_statuses_are_transport_failures(gw, session, status):
    session.request.return_value = _response(status=status, body={"error": "busy"})
    with pytest.raises(TransportError):
        asyncio.run(gw.get_task(5))


def test_client_error_is_validation_rejection_with_payload(gw, session):
    payload = {"errors": {"Title": ["Required"]}}
    session.request.return_value = _response(status=400, body=payload)
    with pytest.raises(ValidationRejected) as info:
        asyncio.run(gw.clear_assignment(5, 1))
    assert info.value.status_code == 400
    assert info.value.payload == payload


def test_network_error_is_transport_failure(gw, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError):
        asyncio.run(gw.get_task(5))


def test_malformed_body_is_transport_failure(gw, session):
    session.request.return_value = _response(body="<html>oops</html>")
    with pytest.raises(TransportError):
        asyncio.run(gw.get_task(5))
    session.request.return_value = _response(body={"title": "no id"})
    with pytest.raises(TransportError, match="Malformed"):
        asyncio.run(gw.get_task(5))


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("TASKBOARD_API_URL", "http://env.test/api")
    monkeypatch.delenv("TASKBOARD_API_TOKEN", raising=False)
    monkeypatch.setenv("TASKBOARD_HTTP_TIMEOUT", "2.5")
    gw = HttpTaskGateway(session=MagicMock())
    assert gw.base_url == "http://env.test/api"
    assert gw.token is None
    assert gw.timeout == 2.5
    assert "Authorization" not in gw._headers()


def test_close_releases_http_session(gw, session):
    gw.close()
    session.close.assert_called_once_with()
