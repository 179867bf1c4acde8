"""Real-time collaborative editing of grids.

This module provides the collaboration engine: session lifecycle, participant
presence, change fan-out, and detection and resolution of concurrent edits to
the same cell.

Handler bodies never suspend between reading and writing session state, so
the engine needs no locks on a single event loop. Delivery to a participant
goes through its ``EventSink``, whose ``send_event`` must not block (the
WebSocket transport enqueues into a per-connection outbox).
"""

import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import structlog

from schemagrid.collaboration.models import (
    USER_COLORS,
    ActiveUser,
    CollaborationEvent,
    CollaborationEventType,
    CollaborationSession,
    ConflictResolution,
    EditConflict,
    SessionMetrics,
    SessionSettings,
    utcnow,
)
from schemagrid.collaboration.strategies import ConflictResolutionStrategy, get_strategy
from schemagrid.exceptions import (
    ConflictResolutionError,
    SessionAlreadyExistsError,
    SessionFullError,
    SessionNotFoundError,
)
from schemagrid.grid.models import CursorPosition, GridChange, SelectionRange

logger = structlog.get_logger()

ChangeListener = Callable[[GridChange], None]


class EventSink(Protocol):
    """Receives events for one participant."""

    def send_event(self, event: CollaborationEvent) -> None:
        ...


class CollaborationEngine:
    """Manages collaboration sessions held in process memory."""

    def __init__(self, strategy: Optional[ConflictResolutionStrategy] = None):
        self.logger = logger.bind(component="collaboration_engine")
        self.sessions: Dict[str, CollaborationSession] = {}
        self.default_strategy = strategy
        self.session_strategies: Dict[str, ConflictResolutionStrategy] = {}
        self.sinks: Dict[str, Dict[str, EventSink]] = defaultdict(dict)
        # session id -> cell key -> (arrival monotonic ms, change)
        self.recent_changes: Dict[str, Dict[str, List[Tuple[float, GridChange]]]] = defaultdict(dict)
        self.change_listeners: List[ChangeListener] = []

    # Sessions

    async def create_session(self, session_id: str, created_by: str,
                             settings: Optional[SessionSettings] = None) -> CollaborationSession:
        """Create an empty active session."""
        if session_id in self.sessions:
            raise SessionAlreadyExistsError(f"Session already exists: {session_id}")
        return self._install_session(session_id, created_by, settings)

    def _install_session(self, session_id: str, created_by: str,
                         settings: Optional[SessionSettings] = None) -> CollaborationSession:
        session = CollaborationSession(
            id=session_id,
            created_by=created_by,
            settings=settings or SessionSettings(),
        )
        self.sessions[session_id] = session
        self.logger.info(
            "Created collaboration session",
            session_id=session_id,
            created_by=created_by,
            strategy=session.settings.conflict_resolution,
        )
        return session

    def get_session(self, session_id: str) -> Optional[CollaborationSession]:
        return self.sessions.get(session_id)

    def get_active_sessions(self) -> List[CollaborationSession]:
        return [s for s in self.sessions.values() if s.is_active]

    async def destroy_session(self, session_id: str) -> None:
        """Tear down a session after notifying its online participants."""
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")

        self._fan_out(session, CollaborationEventType.SESSION_DESTROYED, data={"sessionId": session_id})
        session.is_active = False
        for user in session.active_users:
            user.is_online = False

        del self.sessions[session_id]
        self.sinks.pop(session_id, None)
        self.recent_changes.pop(session_id, None)
        self.session_strategies.pop(session_id, None)
        self.logger.info("Destroyed collaboration session", session_id=session_id)

    # Membership

    async def join_session(self, session_id: str, user_id: str, name: Optional[str] = None,
                           sink: Optional[EventSink] = None) -> List[ActiveUser]:
        """Add (or bring back online) a participant; creates the session if absent.

        Returns the online participants after the join.
        """
        session = self.sessions.get(session_id)
        if session is None:
            session = self._install_session(session_id, created_by=user_id)

        user = session.find_user(user_id)
        was_online = user is not None and user.is_online
        if not was_online and len(session.online_users()) >= session.settings.max_users:
            raise SessionFullError(
                f"Session {session_id} is full ({session.settings.max_users} users)"
            )

        if user is None:
            user = ActiveUser(
                id=user_id,
                name=name or user_id,
                color=USER_COLORS[len(session.active_users) % len(USER_COLORS)],
            )
            session.active_users.append(user)
        else:
            user.is_online = True
            user.last_activity = utcnow()
            if name:
                user.name = name

        if sink is not None:
            self.sinks[session_id][user_id] = sink
        session.touch()

        if not was_online:
            self.logger.info("User joined session", session_id=session_id, user_id=user_id)
            self._fan_out(
                session, CollaborationEventType.USER_JOINED,
                user_id=user_id, data={"user": user.to_wire()}, exclude=user_id,
            )
        return self._copy_users(session.online_users())

    async def leave_session(self, session_id: str, user_id: str,
                            reason: CollaborationEventType = CollaborationEventType.USER_LEFT) -> bool:
        """Mark a participant offline. Unknown sessions and users are ignored."""
        session = self.sessions.get(session_id)
        if session is None:
            return False
        user = session.find_user(user_id)
        if user is None:
            return False

        self.sinks.get(session_id, {}).pop(user_id, None)
        if not user.is_online:
            return False

        user.is_online = False
        user.last_activity = utcnow()
        session.touch()
        self.logger.info("User left session", session_id=session_id, user_id=user_id, reason=reason.value)
        self._fan_out(session, reason, user_id=user_id, data={"userId": user_id}, exclude=user_id)
        return True

    async def get_active_users(self, session_id: str) -> List[ActiveUser]:
        session = self.sessions.get(session_id)
        if session is None:
            return []
        return self._copy_users(session.online_users())

    @staticmethod
    def _copy_users(users: List[ActiveUser]) -> List[ActiveUser]:
        return [user.model_copy(deep=True) for user in users]

    # Edits

    async def broadcast_change(self, session_id: str, change: GridChange) -> Optional[ConflictResolution]:
        """Apply a change and fan it out to the other online participants.

        Returns the resolution when the change completed an edit conflict.
        Unknown sessions are ignored.
        """
        session = self.sessions.get(session_id)
        if session is None:
            self.logger.debug("Change for unknown session ignored", session_id=session_id)
            return None
        if change.session_id != session_id:
            change = change.model_copy(update={"session_id": session_id})

        session.change_count += 1
        session.touch()
        user = session.find_user(change.user_id)
        if user is not None:
            user.last_activity = utcnow()

        self._apply_to_state(session, change)
        self._notify_listeners(change)
        self._fan_out(
            session, CollaborationEventType.GRID_CHANGE,
            user_id=change.user_id, data={"change": change.to_wire()}, exclude=change.user_id,
        )

        if change.type != "cell-update":
            return None

        conflict = self._detect_conflict(session, change)
        if conflict is None:
            return None
        return self._settle_conflict(session, conflict)

    def _apply_to_state(self, session: CollaborationSession, change: GridChange) -> None:
        state = session.grid_state
        row = change.position.row
        if change.type == "cell-update":
            state[change.position.key()] = change.new_value
        elif change.type in ("row-insert", "row-delete"):
            shifted: Dict[str, Any] = {}
            for key, value in state.items():
                key_row, key_col = (int(part) for part in key.split(":"))
                if change.type == "row-insert" and key_row >= row:
                    key_row += 1
                elif change.type == "row-delete":
                    if key_row == row:
                        continue
                    if key_row > row:
                        key_row -= 1
                shifted[f"{key_row}:{key_col}"] = value
            session.grid_state = shifted
            self.recent_changes.pop(session.id, None)

    def _detect_conflict(self, session: CollaborationSession, change: GridChange) -> Optional[EditConflict]:
        window = session.settings.conflict_window_ms
        arrived = time.monotonic() * 1000
        key = change.position.key()
        cell_changes = self.recent_changes[session.id]

        # Drop entries that left the window, including cells never edited again
        for cell_key in list(cell_changes):
            fresh = [(at, c) for at, c in cell_changes[cell_key] if arrived - at <= window]
            if fresh:
                cell_changes[cell_key] = fresh
            else:
                del cell_changes[cell_key]

        recent = cell_changes.get(key, []) + [(arrived, change)]
        cell_changes[key] = recent

        # Timestamps are per-client clocks, so compare distance only
        rivals = [
            c for _, c in recent[:-1]
            if c.user_id != change.user_id and abs(c.timestamp - change.timestamp) <= window
        ]
        if not rivals:
            return None

        # Latest change per participant
        latest: Dict[str, GridChange] = {}
        for c in rivals + [change]:
            latest[c.user_id] = c
        return EditConflict(
            session_id=session.id,
            position=change.position,
            conflicting_changes=list(latest.values()),
        )

    def _settle_conflict(self, session: CollaborationSession, conflict: EditConflict) -> ConflictResolution:
        session.conflict_count += 1
        self.logger.info(
            "Edit conflict detected",
            session_id=session.id,
            conflict_id=conflict.id,
            position=conflict.position.key(),
            users=[c.user_id for c in conflict.conflicting_changes],
        )
        self._fan_out(session, CollaborationEventType.CONFLICT_DETECTED, data={"conflict": conflict.to_wire()})

        resolution = self._resolve(session, conflict)
        if resolution.resolution == "manual":
            return resolution

        session.grid_state[conflict.position.key()] = resolution.resolved_value
        winner = next(
            (c for c in conflict.conflicting_changes if c.id == resolution.winning_change_id), None
        )
        if winner is not None:
            self._notify_listeners(winner)

        self.recent_changes[session.id].pop(conflict.position.key(), None)
        self._fan_out(
            session, CollaborationEventType.CONFLICT_RESOLVED,
            data={"resolution": resolution.to_wire(), "position": conflict.position.to_wire()},
        )
        return resolution

    # Conflicts

    def set_session_strategy(self, session_id: str, strategy: ConflictResolutionStrategy) -> None:
        """Override the conflict strategy of one session."""
        if session_id not in self.sessions:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        self.session_strategies[session_id] = strategy

    def get_strategy(self, session: CollaborationSession) -> ConflictResolutionStrategy:
        strategy = self.session_strategies.get(session.id)
        if strategy is not None:
            return strategy
        if self.default_strategy is not None:
            return self.default_strategy
        return get_strategy(session.settings.conflict_resolution)

    async def handle_conflict(self, session_id: str, conflict: EditConflict) -> ConflictResolution:
        """Resolve a conflict with the session's strategy."""
        session = self.sessions.get(session_id)
        if session is None:
            raise ConflictResolutionError(f"Session not found: {session_id}")
        return self._resolve(session, conflict)

    def _resolve(self, session: CollaborationSession, conflict: EditConflict) -> ConflictResolution:
        if len(conflict.conflicting_changes) < 2:
            raise ConflictResolutionError(
                f"Conflict {conflict.id} needs at least two changes, got {len(conflict.conflicting_changes)}"
            )
        strategy = self.get_strategy(session)
        resolution = strategy.resolve(conflict)
        self.logger.info(
            "Edit conflict resolved",
            session_id=session.id,
            conflict_id=conflict.id,
            strategy=strategy.name,
            resolution=resolution.resolution,
            winning_change_id=resolution.winning_change_id,
        )
        return resolution

    # Presence

    async def update_cursor(self, session_id: str, user_id: str, position: CursorPosition) -> bool:
        session = self.sessions.get(session_id)
        user = session.find_user(user_id) if session else None
        if user is None:
            return False
        user.cursor = position
        user.last_activity = utcnow()
        if session.settings.enable_cursor_sync:
            self._fan_out(
                session, CollaborationEventType.CURSOR_MOVE,
                user_id=user_id, data={"position": position.to_wire()}, exclude=user_id,
            )
        return True

    async def update_selection(self, session_id: str, user_id: str, selection: SelectionRange) -> bool:
        session = self.sessions.get(session_id)
        user = session.find_user(user_id) if session else None
        if user is None:
            return False
        user.selection = selection
        user.last_activity = utcnow()
        if session.settings.enable_selection_sync:
            self._fan_out(
                session, CollaborationEventType.SELECTION_CHANGE,
                user_id=user_id, data={"selection": selection.to_wire()}, exclude=user_id,
            )
        return True

    # Listeners and delivery

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback for every applied change."""
        self.change_listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self.change_listeners:
            self.change_listeners.remove(listener)

    def _notify_listeners(self, change: GridChange) -> None:
        for listener in list(self.change_listeners):
            try:
                listener(change)
            except Exception as e:
                self.logger.error(
                    "Change listener failed",
                    session_id=change.session_id,
                    change_id=change.id,
                    error=str(e),
                    exc_info=True,
                )

    def _fan_out(self, session: CollaborationSession, event_type: CollaborationEventType,
                 user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None,
                 exclude: Optional[str] = None) -> int:
        """Deliver an event to online participants, in call order."""
        event = CollaborationEvent(
            type=event_type,
            session_id=session.id,
            user_id=user_id,
            data=data or {},
        )
        sinks = self.sinks.get(session.id, {})
        delivered = 0
        for user in session.online_users():
            if user.id == exclude:
                continue
            sink = sinks.get(user.id)
            if sink is None:
                continue
            sink.send_event(event)
            delivered += 1
        return delivered

    # Metrics

    def get_session_metrics(self, session_id: str) -> SessionMetrics:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        duration = (utcnow() - session.created_at).total_seconds() / 60
        return SessionMetrics(
            session_id=session_id,
            total_participants=len(session.active_users),
            active_participants=len(session.online_users()),
            change_count=session.change_count,
            conflict_count=session.conflict_count,
            duration_minutes=round(duration, 3),
        )
