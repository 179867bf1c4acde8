"""Collaboration API schemas."""

from typing import List, Optional

from pydantic import Field

from schemagrid.collaboration.models import (
    ActiveUser,
    CollaborationSession,
    SessionMetrics,
    SessionSettings,
)
from schemagrid.grid.models import CamelModel


class SessionCreate(CamelModel):
    """Create a collaboration session."""
    session_id: str = Field(..., min_length=1, description="Session id (usually the grid id)")
    created_by: str = Field(..., min_length=1, description="Creating user id")
    settings: Optional[SessionSettings] = None


class SessionResponse(CamelModel):
    session: CollaborationSession
    metrics: SessionMetrics


class SessionListResponse(CamelModel):
    sessions: List[CollaborationSession]
    total: int


class ActiveUsersResponse(CamelModel):
    session_id: str
    users: List[ActiveUser]
