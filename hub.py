from fastapi import WebSocket
from relay import Outcome, SessionState, dispatch
from sink import ConsultationSink
from backend import redis_backend
from auth import identify
from registry import Connection
import asyncio
import json
from typing import Any, Dict, Optional
from logging_config import get_logger

logger = get_logger(__name__)


class SessionHub:
    """
    Binds live WebSockets to the relay.

    Each connection gets an outbox queue drained by its own writer task, so
    messages reach a socket in the order they were produced and one slow
    socket never holds up the others.
    """

    def __init__(self, sink: ConsultationSink, state: Optional[SessionState] = None):
        self.sink = sink
        self.state = state or SessionState()
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    def connect(self, websocket: WebSocket, token: Optional[str] = None) -> Connection:
        connection = self.state.connections.register(identify(token))
        connection_id = connection.connection_id
        outbox: asyncio.Queue = asyncio.Queue()
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(self._write_loop(connection_id, websocket, outbox))
        outbox.put_nowait({
            "type": "connected",
            "connectionId": connection_id,
            "authenticated": connection.authenticated,
        })
        logger.info(f"User connected: {connection_id} (authenticated={connection.authenticated})")
        return connection

    def handle(self, connection_id: str, message: Dict[str, Any]):
        """Apply one inbound frame. A failing event is logged and has no effect."""
        event = message.get("type")
        try:
            outcome = dispatch(self.state, connection_id, event, message)
        except Exception as e:
            logger.error(f"Error handling {event} from {connection_id}: {e}", exc_info=True)
            return
        self._apply(outcome)

    async def disconnect(self, connection_id: str):
        self._apply(dispatch(self.state, connection_id, "disconnect"))
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    def _apply(self, outcome: Outcome):
        for notification in outcome.notifications:
            outbox = self._outboxes.get(notification.connection_id)
            if outbox is None:
                logger.debug(f"Dropping {notification.event} for closed connection {notification.connection_id}")
                continue
            outbox.put_nowait(notification.to_message())
        for request in outcome.persist:
            self.sink.record(request)

    async def _write_loop(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue):
        while True:
            message = await outbox.get()
            try:
                await websocket.send_text(json.dumps(message))
            except Exception as e:
                # Connection might be closed, the receive loop will clean it up
                logger.warning(f"Error sending to connection {connection_id}: {e}")
                return


session_hub = SessionHub(ConsultationSink(redis_backend))
