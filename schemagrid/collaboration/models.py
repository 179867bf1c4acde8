"""Collaboration session models."""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import Field

from schemagrid.config import settings
from schemagrid.grid.models import CamelModel, CursorPosition, GridChange, SelectionRange

ConflictStrategyName = Literal["last-write-wins", "first-write-wins", "manual"]
ResolutionType = Literal["accept-local", "accept-remote", "merge", "manual"]

USER_COLORS = [
    "#E6194B", "#3CB44B", "#4363D8", "#F58231",
    "#911EB4", "#42D4F4", "#F032E6", "#9A6324",
]


def now_ms() -> int:
    """Wall-clock milliseconds."""
    return int(time.time() * 1000)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollaborationEventType(str, Enum):
    """Collaboration event types."""
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    USER_DISCONNECTED = "user-disconnected"
    GRID_CHANGE = "grid-change"
    CURSOR_MOVE = "cursor-move"
    SELECTION_CHANGE = "selection-change"
    CONFLICT_DETECTED = "conflict-detected"
    CONFLICT_RESOLVED = "conflict-resolved"
    SESSION_DESTROYED = "session-destroyed"


class SessionSettings(CamelModel):
    """Per-session collaboration settings."""

    max_users: int = Field(default_factory=lambda: settings.max_session_users, ge=1)
    conflict_resolution: ConflictStrategyName = Field(
        default_factory=lambda: settings.default_conflict_strategy,
        description="Strategy used for same-cell edit conflicts",
    )
    conflict_window_ms: int = Field(default_factory=lambda: settings.conflict_window_ms, ge=0)
    enable_cursor_sync: bool = True
    enable_selection_sync: bool = True


class ActiveUser(CamelModel):
    """Participant of a session."""

    id: str
    name: str
    color: str
    is_online: bool = True
    cursor: Optional[CursorPosition] = None
    selection: Optional[SelectionRange] = None
    joined_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


class CollaborationSession(CamelModel):
    """A shared editing session over one grid."""

    id: str
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True
    active_users: List[ActiveUser] = Field(default_factory=list)
    settings: SessionSettings = Field(default_factory=SessionSettings)
    last_activity: datetime = Field(default_factory=utcnow)
    grid_state: Dict[str, Any] = Field(
        default_factory=dict, description='Last-known cell values keyed "row:col"'
    )
    change_count: int = 0
    conflict_count: int = 0

    def find_user(self, user_id: str) -> Optional[ActiveUser]:
        for user in self.active_users:
            if user.id == user_id:
                return user
        return None

    def online_users(self) -> List[ActiveUser]:
        return [user for user in self.active_users if user.is_online]

    def touch(self) -> None:
        self.last_activity = utcnow()


class EditConflict(CamelModel):
    """Concurrent edits of one cell by different participants."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    position: CursorPosition
    conflicting_changes: List[GridChange]
    timestamp: int = Field(default_factory=now_ms)


class ConflictResolution(CamelModel):
    """Outcome of resolving an EditConflict."""

    conflict_id: str
    resolution: ResolutionType
    resolved_value: Any = None
    winning_change_id: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)


class CollaborationEvent(CamelModel):
    """Notification fanned out to session participants."""

    type: CollaborationEventType
    session_id: str
    user_id: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    data: Dict[str, Any] = Field(default_factory=dict)


class SessionMetrics(CamelModel):
    """Session metrics."""

    session_id: str
    total_participants: int
    active_participants: int
    change_count: int
    conflict_count: int
    duration_minutes: float
