"""Remote task gateway: the only place the sync core talks to the server.

RemoteTaskGateway is the abstract collaborator the executor and coordinators
call. HttpTaskGateway implements it over the task REST API with ``requests``;
blocking calls run in the event loop's default executor so the UI loop never
waits on a socket.

Connection params come from env:
    TASKBOARD_API_URL: API root (default http://localhost:5000/api)
    TASKBOARD_API_TOKEN: bearer token, optional
    TASKBOARD_HTTP_TIMEOUT: seconds per request (default 10)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import requests
from pydantic import ValidationError

from errors import TransportError, ValidationRejected
from models import Task, TaskAssignment
from schemas import TaskStatePatch, assignment_from_wire, task_from_wire, task_to_wire

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class RemoteTaskGateway(ABC):
    """Each operation is a discrete, independently failable remote call.

    Implementations raise TransportError when the call could not complete and
    ValidationRejected when the server refused the change.
    """

    @abstractmethod
    async def update_task_state(self, task_id: int, patch: TaskStatePatch) -> Task | None:
        ...

    @abstractmethod
    async def set_assignment(self, task_id: int, user_id: str) -> TaskAssignment:
        ...

    @abstractmethod
    async def clear_assignment(self, task_id: int, assignment_id: int) -> None:
        ...

    @abstractmethod
    async def list_tasks(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[Task]:
        ...

    @abstractmethod
    async def get_task(self, task_id: int) -> Task:
        ...

    def close(self) -> None:
        """Release any connection resources held by the gateway."""


def _gateway_params() -> dict[str, Any]:
    return {
        "base_url": os.environ.get("TASKBOARD_API_URL", "http://localhost:5000/api"),
        "token": (os.environ.get("TASKBOARD_API_TOKEN") or "").strip() or None,
        "timeout": float(os.environ.get("TASKBOARD_HTTP_TIMEOUT", "10")),
    }


def _response_payload(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpTaskGateway(RemoteTaskGateway):
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        params = _gateway_params()
        self.base_url = (base_url or params["base_url"]).rstrip("/")
        self.token = token if token is not None else params["token"]
        self.timeout = timeout if timeout is not None else params["timeout"]
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Blocking request. Returns decoded JSON (or None for empty bodies)."""
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransportError(f"{method} {path} returned HTTP {status}")
        if status >= 400:
            payload = _response_payload(response)
            raise ValidationRejected(
                f"{method} {path} rejected with HTTP {status}",
                status_code=status,
                payload=payload,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned a non-JSON body") from exc

    def close(self) -> None:
        self.session.close()

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._request, method, path, **kwargs))

    async def get_task(self, task_id: int) -> Task:
        data = await self._call("GET", f"/Tasks/{task_id}")
        return _parse(task_from_wire, data)

    async def list_tasks(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[Task]:
        data = await self._call("GET", "/Tasks/paged", params={"page": 1, "pageSize": page_size})
        rows = (data or {}).get("data", []) if isinstance(data, dict) else data or []
        return [_parse(task_from_wire, row) for row in rows]

    async def update_task_state(self, task_id: int, patch: TaskStatePatch) -> Task | None:
        # The API only accepts full-task PUTs, so read the current body first
        current = await self.get_task(task_id)
        body = task_to_wire(current, patch)
        logger.debug("PUT /Tasks/%s isCompleted=%s dueDate=%s", task_id, body["isCompleted"], body["dueDate"])
        data = await self._call("PUT", f"/Tasks/{task_id}", json=body)
        return _parse(task_from_wire, data) if isinstance(data, dict) else None

    async def set_assignment(self, task_id: int, user_id: str) -> TaskAssignment:
        data = await self._call(
            "POST",
            f"/tasks/{task_id}/assignments",
            json={"userIdentifier": user_id, "permission": "Editor"},
        )
        if not isinstance(data, dict):
            raise TransportError(f"Assigning {user_id} to task {task_id} returned no assignment")
        return _parse(assignment_from_wire, data)

    async def clear_assignment(self, task_id: int, assignment_id: int) -> None:
        await self._call("DELETE", f"/tasks/{task_id}/assignments/{assignment_id}")


def _parse(parser, data):
    try:
        return parser(data)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise TransportError(f"Malformed response: {exc}") from exc
