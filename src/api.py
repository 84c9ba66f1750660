"""FastAPI bridge exposing board sessions to the browser UI.

Each board view opens a session, drives it through the drag / toggle /
assignment endpoints, and deletes it when the user navigates away. Sessions
live on ``app.state`` of the app that created them.
"""

import logging
from typing import Any, Callable

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from board_service import BoardSession
from drag_session import Committing, Dragging, DragState
from errors import GatewayError, TransportError, ValidationRejected, user_message
from gateway import HttpTaskGateway, RemoteTaskGateway
from schemas import (
    AssignmentsRequest,
    AssignmentsResponse,
    BeginDragRequest,
    BoardView,
    DropRequest,
    board_view,
)

logger = logging.getLogger(__name__)


def _drag_label(state: DragState) -> str:
    if isinstance(state, Committing):
        return "committing"
    if isinstance(state, Dragging):
        return "dragging"
    return "idle"


def _view(board: BoardSession) -> BoardView:
    return board_view(board.id, board.columns(), board.model.pending_ids, _drag_label(board.drag_state))


def create_app(
    gateway_factory: Callable[[], RemoteTaskGateway] = HttpTaskGateway,
    **session_options: Any,
) -> FastAPI:
    """Build the bridge app. *session_options* are passed to every BoardSession."""
    app = FastAPI(title="taskboard-sync bridge")
    app.state.sessions = {}

    @app.exception_handler(GatewayError)
    def gateway_failure(request: Request, exc: GatewayError):
        """Remote failures arrive here after the board has been rolled back."""
        status = 502 if isinstance(exc, TransportError) else 422
        if isinstance(exc, ValidationRejected) and exc.status_code == 409:
            status = 409
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": user_message(exc)}, status_code=status)

    @app.exception_handler(Exception)
    def log_unhandled_exception(request: Request, exc: Exception):
        """Log every unhandled exception so 500s show up in the terminal."""
        logger.exception("Unhandled exception for %s %s: %s", request.method, request.url.path, exc)
        return PlainTextResponse(f"Internal Server Error\n\n{type(exc).__name__}: {exc}", status_code=500)

    async def get_board(session_id: str) -> BoardSession:
        board = app.state.sessions.get(session_id)
        if board is None:
            raise HTTPException(status_code=404, detail="Board session not found")
        return board

    @app.post("/sessions", response_model=BoardView, status_code=201)
    async def open_session() -> BoardView:
        """Open a board view: fetch tasks into a fresh session."""
        board = BoardSession(gateway_factory(), **session_options)
        await board.open()
        app.state.sessions[board.id] = board
        return _view(board)

    @app.delete("/sessions/{session_id}", status_code=204)
    async def close_session(board: BoardSession = Depends(get_board)) -> None:
        app.state.sessions.pop(board.id, None)
        try:
            await board.close()
        finally:
            # One gateway per session, created by gateway_factory
            board.gateway.close()

    @app.get("/sessions/{session_id}/board", response_model=BoardView)
    async def get_board_view(board: BoardSession = Depends(get_board)) -> BoardView:
        return _view(board)

    @app.post("/sessions/{session_id}/refresh", response_model=BoardView)
    async def refresh_board(board: BoardSession = Depends(get_board)) -> BoardView:
        await board.refresh()
        return _view(board)

    @app.post("/sessions/{session_id}/drag/begin", response_model=BoardView)
    async def begin_drag(body: BeginDragRequest, board: BoardSession = Depends(get_board)) -> BoardView:
        board.begin_drag(body.task_id)
        return _view(board)

    @app.post("/sessions/{session_id}/drag/drop", response_model=BoardView)
    async def drop(body: DropRequest, board: BoardSession = Depends(get_board)) -> BoardView:
        await board.drop(body.column)
        return _view(board)

    @app.post("/sessions/{session_id}/drag/cancel", response_model=BoardView)
    async def cancel_drag(board: BoardSession = Depends(get_board)) -> BoardView:
        board.cancel_drag()
        return _view(board)

    @app.post("/sessions/{session_id}/tasks/{task_id}/toggle", response_model=BoardView)
    async def toggle_completion(task_id: int, board: BoardSession = Depends(get_board)) -> BoardView:
        await board.toggle_completion(task_id)
        return _view(board)

    @app.put("/sessions/{session_id}/tasks/{task_id}/assignments", response_model=AssignmentsResponse)
    async def commit_assignments(
        task_id: int,
        body: AssignmentsRequest,
        board: BoardSession = Depends(get_board),
    ) -> AssignmentsResponse:
        if task_id not in board.model:
            raise HTTPException(status_code=404, detail="Task not found")
        result = await board.commit_assignments(task_id, body.user_ids)
        if result is None:
            raise HTTPException(status_code=409, detail="Task has a pending change")
        return AssignmentsResponse(
            task_id=task_id,
            added=result.added,
            removed=result.removed,
            failed=result.failed_user_ids,
            assignee_ids=board.model.get(task_id).assignee_ids,
        )

    return app


app = create_app()
