"""Collaboration REST API routes and WebSocket endpoint."""

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from schemagrid.collaboration.models import ConflictResolution, EditConflict
from schemagrid.collaboration.realtime import CollaborationEngine
from schemagrid.collaboration.schemas import (
    ActiveUsersResponse,
    SessionCreate,
    SessionListResponse,
    SessionResponse,
)
from schemagrid.dependencies import get_collaboration_engine
from schemagrid.exceptions import SessionNotFoundError

logger = structlog.get_logger()

router = APIRouter(prefix="/collaboration", tags=["collaboration"])
ws_router = APIRouter()


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(engine: CollaborationEngine = Depends(get_collaboration_engine)):
    """List active collaboration sessions."""
    sessions = engine.get_active_sessions()
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: SessionCreate,
    engine: CollaborationEngine = Depends(get_collaboration_engine),
):
    """Create a collaboration session."""
    session = await engine.create_session(request.session_id, request.created_by, request.settings)
    return SessionResponse(session=session, metrics=engine.get_session_metrics(session.id))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, engine: CollaborationEngine = Depends(get_collaboration_engine)):
    session = engine.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session not found: {session_id}")
    return SessionResponse(session=session, metrics=engine.get_session_metrics(session_id))


@router.get("/sessions/{session_id}/users", response_model=ActiveUsersResponse)
async def get_active_users(session_id: str, engine: CollaborationEngine = Depends(get_collaboration_engine)):
    """Online participants of a session (empty for unknown sessions)."""
    users = await engine.get_active_users(session_id)
    return ActiveUsersResponse(session_id=session_id, users=users)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def destroy_session(session_id: str, engine: CollaborationEngine = Depends(get_collaboration_engine)):
    await engine.destroy_session(session_id)


@router.post("/sessions/{session_id}/conflicts", response_model=ConflictResolution)
async def resolve_conflict(
    session_id: str,
    conflict: EditConflict,
    engine: CollaborationEngine = Depends(get_collaboration_engine),
):
    """Resolve an edit conflict with the session's strategy."""
    return await engine.handle_conflict(session_id, conflict)


@ws_router.websocket("/ws/collaboration")
async def collaboration_socket(websocket: WebSocket):
    """Collaboration WebSocket endpoint."""
    manager = websocket.app.state.connection_manager
    connection = await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await manager.handle_message(connection, raw)
    except WebSocketDisconnect:
        logger.debug("Collaboration socket closed by peer", sessions=list(connection.sessions))
    finally:
        await manager.disconnect(connection)
