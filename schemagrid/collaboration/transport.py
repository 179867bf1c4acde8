"""WebSocket transport for collaboration sessions.

Every message is a JSON envelope ``{"event": <name>, "data": {...}}``.

Server side, each socket gets a ``Connection`` with an outbox queue drained by
a writer task; the engine only ever enqueues, so per-participant delivery
order equals the order in which the engine produced the events.
``CollaborationClient`` is the matching client built on ``websockets``.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from websockets import ConnectionClosed, WebSocketException, connect

from schemagrid.collaboration.models import CollaborationEvent, CollaborationEventType
from schemagrid.collaboration.realtime import CollaborationEngine
from schemagrid.config import settings
from schemagrid.exceptions import (
    CollaborationConnectionError,
    CollaborationTimeoutError,
    SchemaGridException,
)
from schemagrid.grid.models import CursorPosition, GridChange, SelectionRange

logger = structlog.get_logger()

# Inbound events
JOIN_SESSION = "join-session"
LEAVE_SESSION = "leave-session"
GRID_CHANGE = "grid-change"
CURSOR_MOVE = "cursor-move"
SELECTION_CHANGE = "selection-change"

# Outbound events
ACTIVE_USERS = "active-users"
COLLABORATION_EVENT = "collaboration-event"
ERROR = "error"

# "Try again later": the peer could not keep up with its outbox
SLOW_PEER_CLOSE_CODE = 1013


def envelope(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


def error_envelope(code: str, message: str, retryable: bool = False,
                   session_id: Optional[str] = None) -> Dict[str, Any]:
    data = {"code": code, "message": message, "retryable": retryable}
    if session_id is not None:
        data["sessionId"] = session_id
    return envelope(ERROR, data)


class Connection:
    """One WebSocket peer: bounded outbox queue plus the sessions joined over it."""

    _CLOSE = object()

    def __init__(self, websocket: Any, max_pending: Optional[int] = None):
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue(
            maxsize=max_pending if max_pending is not None else settings.collaboration_outbox_size
        )
        self.sessions: Dict[str, str] = {}
        self.closed = False
        self.writer_task: Optional[asyncio.Task] = None
        self.abort_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(component="collaboration_connection")

    def start(self) -> None:
        self.writer_task = asyncio.create_task(self._write_loop())

    def send(self, message: Dict[str, Any]) -> None:
        """Enqueue a message; never blocks. A peer whose outbox is full is dropped."""
        if self.closed:
            return
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            self._drop_slow_peer()

    def send_event(self, event: CollaborationEvent) -> None:
        self.send(envelope(COLLABORATION_EVENT, event.to_wire()))

    def _drop_slow_peer(self) -> None:
        self.logger.warning(
            "Outbox full, dropping slow peer",
            limit=self.outbox.maxsize,
            sessions=list(self.sessions),
        )
        self.closed = True
        if self.writer_task is not None:
            self.writer_task.cancel()
        self.abort_task = asyncio.ensure_future(self._abort())

    async def _abort(self) -> None:
        try:
            await self.websocket.close(code=SLOW_PEER_CLOSE_CODE)
        except Exception as e:
            self.logger.warning("Failed to close slow peer", error=str(e))

    async def _write_loop(self) -> None:
        while True:
            message = await self.outbox.get()
            if message is self._CLOSE:
                return
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                # Socket is gone; the reader side will observe the disconnect
                self.logger.warning("Failed to deliver message", error=str(e))
                self.closed = True
                return

    async def close(self) -> None:
        """Flush queued messages and stop the writer, waiting at most the close timeout."""
        self.closed = True
        if self.writer_task is None or self.writer_task.done():
            return
        try:
            self.outbox.put_nowait(self._CLOSE)
        except asyncio.QueueFull:
            self.writer_task.cancel()

        done, _ = await asyncio.wait({self.writer_task}, timeout=settings.collaboration_close_timeout)
        if not done:
            self.logger.warning(
                "Outbox not flushed before close timeout",
                pending=self.outbox.qsize(),
                timeout=settings.collaboration_close_timeout,
            )
            self.writer_task.cancel()


class ConnectionManager:
    """Tracks live connections and routes their messages into the engine."""

    def __init__(self, engine: CollaborationEngine):
        self.engine = engine
        self.connections: List[Connection] = []
        self.logger = logger.bind(component="connection_manager")
        self.handlers: Dict[str, Callable[[Connection, Dict[str, Any]], Awaitable[None]]] = {
            JOIN_SESSION: self._on_join,
            LEAVE_SESSION: self._on_leave,
            GRID_CHANGE: self._on_grid_change,
            CURSOR_MOVE: self._on_cursor_move,
            SELECTION_CHANGE: self._on_selection_change,
        }

    async def connect(self, websocket: Any) -> Connection:
        await websocket.accept()
        connection = Connection(websocket)
        connection.start()
        self.connections.append(connection)
        self.logger.info("Collaboration socket connected", connections=len(self.connections))
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Mark the peer offline in every session it joined, then close it."""
        for session_id, user_id in list(connection.sessions.items()):
            await self.engine.leave_session(
                session_id, user_id, reason=CollaborationEventType.USER_DISCONNECTED
            )
        connection.sessions.clear()
        if connection in self.connections:
            self.connections.remove(connection)
        await connection.close()
        self.logger.info("Collaboration socket disconnected", connections=len(self.connections))

    async def handle_message(self, connection: Connection, raw: str) -> None:
        """Dispatch one inbound envelope; failures are reported to the peer."""
        data: Dict[str, Any] = {}
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("Envelope must be an object")
            event = message.get("event")
            data = message.get("data") or {}
            handler = self.handlers.get(event)
            if handler is None:
                connection.send(error_envelope("unknown_event", f"Unknown event: {event}"))
                return
            await handler(connection, data)
        except SchemaGridException as e:
            session_id = data.get("sessionId") if isinstance(data, dict) else None
            connection.send(error_envelope(e.code, e.message, e.retryable, session_id))
        except (ValueError, KeyError, TypeError, PydanticValidationError) as e:
            self.logger.warning("Invalid collaboration message", error=str(e))
            connection.send(error_envelope("invalid_message", str(e)))

    async def _on_join(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id, user_id = data["sessionId"], data["userId"]
        users = await self.engine.join_session(session_id, user_id, data.get("name"), sink=connection)
        connection.sessions[session_id] = user_id
        connection.send(envelope(ACTIVE_USERS, {
            "sessionId": session_id,
            "users": [user.to_wire() for user in users],
        }))

    async def _on_leave(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = data["sessionId"]
        await self.engine.leave_session(session_id, data["userId"])
        connection.sessions.pop(session_id, None)

    async def _on_grid_change(self, connection: Connection, data: Dict[str, Any]) -> None:
        change = GridChange.model_validate(data["change"])
        await self.engine.broadcast_change(change.session_id, change)

    async def _on_cursor_move(self, connection: Connection, data: Dict[str, Any]) -> None:
        await self.engine.update_cursor(
            data["sessionId"], data["userId"], CursorPosition.model_validate(data["position"])
        )

    async def _on_selection_change(self, connection: Connection, data: Dict[str, Any]) -> None:
        await self.engine.update_selection(
            data["sessionId"], data["userId"], SelectionRange.model_validate(data["selection"])
        )


EventHandler = Callable[[Dict[str, Any]], Any]


class CollaborationClient:
    """Client for the ``/ws/collaboration`` endpoint."""

    def __init__(self, uri: str, user_id: str, name: Optional[str] = None,
                 join_timeout: Optional[float] = None):
        self.uri = uri
        self.user_id = user_id
        self.name = name or user_id
        self.join_timeout = join_timeout if join_timeout is not None else settings.collaboration_join_timeout
        self.logger = logger.bind(component="collaboration_client", user_id=user_id)

        self.websocket = None
        self.is_connected = False
        self.reader_task: Optional[asyncio.Task] = None
        self.pending_joins: Dict[str, asyncio.Future] = {}
        self.handlers: Dict[str, List[EventHandler]] = {}

    async def connect(self) -> None:
        try:
            self.websocket = await connect(self.uri)
        except (OSError, WebSocketException) as e:
            self.logger.error("Failed to connect to collaboration server", uri=self.uri, error=str(e))
            raise CollaborationConnectionError(f"Failed to connect to {self.uri}: {e}")
        self.is_connected = True
        self.reader_task = asyncio.create_task(self._handle_messages())
        self.logger.info("Connected to collaboration server", uri=self.uri)

    async def disconnect(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
        self.is_connected = False
        if self.reader_task is not None:
            self.reader_task.cancel()
            self.reader_task = None

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for a collaboration event type (or ``error``)."""
        self.handlers.setdefault(event_type, []).append(handler)

    async def _send(self, event: str, data: Dict[str, Any]) -> None:
        if not self.is_connected or self.websocket is None:
            raise CollaborationConnectionError("Not connected to collaboration server")
        await self.websocket.send(json.dumps(envelope(event, data)))

    async def join_session(self, session_id: str) -> List[Dict[str, Any]]:
        """Join a session and wait for its active-user list."""
        future = asyncio.get_running_loop().create_future()
        self.pending_joins[session_id] = future
        try:
            await self._send(JOIN_SESSION, {
                "sessionId": session_id, "userId": self.user_id, "name": self.name,
            })
            return await asyncio.wait_for(future, timeout=self.join_timeout)
        except asyncio.TimeoutError:
            raise CollaborationTimeoutError(
                f"No response to join-session {session_id} within {self.join_timeout}s"
            )
        finally:
            self.pending_joins.pop(session_id, None)

    async def leave_session(self, session_id: str) -> None:
        await self._send(LEAVE_SESSION, {"sessionId": session_id, "userId": self.user_id})

    async def send_change(self, change: GridChange) -> None:
        await self._send(GRID_CHANGE, {"change": change.to_wire()})

    async def move_cursor(self, session_id: str, row: int, col: int) -> None:
        await self._send(CURSOR_MOVE, {
            "sessionId": session_id,
            "userId": self.user_id,
            "position": CursorPosition(row=row, col=col).to_wire(),
        })

    async def change_selection(self, session_id: str, selection: SelectionRange) -> None:
        await self._send(SELECTION_CHANGE, {
            "sessionId": session_id, "userId": self.user_id, "selection": selection.to_wire(),
        })

    async def _handle_messages(self) -> None:
        try:
            async for message in self.websocket:
                self._process_message(message)
        except ConnectionClosed:
            self.logger.info("Collaboration connection closed")
        except WebSocketException as e:
            self.logger.error("WebSocket error", error=str(e))
        finally:
            self.is_connected = False
            for future in self.pending_joins.values():
                if not future.done():
                    future.set_exception(CollaborationConnectionError("Connection closed"))

    def _process_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.error("Failed to parse server message", error=str(e))
            return
        if not isinstance(message, dict) or not isinstance(message.get("data") or {}, dict):
            self.logger.warning("Ignoring malformed server message", message=message)
            return

        event, data = message.get("event"), message.get("data") or {}
        if event == ACTIVE_USERS:
            future = self.pending_joins.get(data.get("sessionId"))
            if future is not None and not future.done():
                future.set_result(data.get("users", []))
            self._dispatch(ACTIVE_USERS, data)
        elif event == COLLABORATION_EVENT:
            self._dispatch(data.get("type"), data)
        elif event == ERROR:
            self.logger.warning("Collaboration server error", code=data.get("code"), message=data.get("message"))
            future = self.pending_joins.get(data.get("sessionId"))
            if future is not None and not future.done():
                future.set_exception(SchemaGridException(data.get("message", ""), code=data.get("code")))
            self._dispatch(ERROR, data)
        else:
            self.logger.warning("Unknown message format", message=message)

    def _dispatch(self, event_type: Optional[str], data: Dict[str, Any]) -> None:
        for handler in self.handlers.get(event_type, []):
            try:
                handler(data)
            except Exception as e:
                self.logger.error(
                    "Collaboration event handler failed",
                    event_type=event_type,
                    error=str(e),
                    exc_info=True,
                )
