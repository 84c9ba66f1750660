"""Failure taxonomy for the task-state sync core.

Transport failures and validation rejections come back from the remote gateway
and always trigger a rollback. Local policy violations are raised before
anything is applied, so they never need one.
"""

from __future__ import annotations

import json
from typing import Any

DEFAULT_USER_MESSAGE = "Failed to update task"


class TaskboardError(Exception):
    """Base class for every error raised by this package."""


class GatewayError(TaskboardError):
    """A remote call did not confirm the change."""


class TransportError(GatewayError):
    """The remote call could not complete (network, timeout, 5xx)."""


class ValidationRejected(GatewayError):
    """The remote call completed but the server refused the change."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class LocalPolicyViolation(TaskboardError):
    """Rejected synchronously; nothing was applied."""


class TaskNotFound(LocalPolicyViolation):
    def __init__(self, task_id: int):
        super().__init__(f"No task with id={task_id}")
        self.task_id = task_id


def _format_payload(payload: Any) -> str | None:
    if payload is None or payload == "":
        return None
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, dict) and errors:
            lines = []
            for key, msgs in errors.items():
                if isinstance(msgs, (list, tuple)):
                    lines.append(f"{key}: {', '.join(str(m) for m in msgs)}")
                else:
                    lines.append(f"{key}: {msgs}")
            return "\n".join(lines)
        if payload.get("error"):
            return str(payload["error"])
        if payload.get("message"):
            return str(payload["message"])
    return json.dumps(payload, indent=2, default=str)


def user_message(exc: BaseException) -> str:
    """Render a gateway failure the way the board shows it to the user."""
    if isinstance(exc, ValidationRejected):
        return _format_payload(exc.payload) or str(exc) or DEFAULT_USER_MESSAGE
    return DEFAULT_USER_MESSAGE
