from dataclasses import dataclass, field
from pydantic import BaseModel, ValidationError
from schemas.events import ChatMessageEvent, RoomEvent, SignalEvent, TranscriptionUpdateEvent
from registry import ConnectionRegistry, RoomRegistry
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from constants import TRANSCRIPTION_ROLES
from logging_config import get_logger

logger = get_logger(__name__)

# event name -> key the payload travelled under before it was renamed to "payload"
SIGNAL_EVENTS = {
    "webrtc-offer": "offer",
    "webrtc-answer": "answer",
    "webrtc-ice-candidate": "candidate",
}


@dataclass
class Notification:
    connection_id: str
    event: str
    data: Dict[str, Any]

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.event, **self.data}


@dataclass
class PersistRequest:
    room_id: str
    kind: str  # "chat" or "transcription"
    entry: Dict[str, Any]


@dataclass
class Outcome:
    notifications: List[Notification] = field(default_factory=list)
    persist: List[PersistRequest] = field(default_factory=list)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionState:
    """Everything the handlers read and mutate."""

    def __init__(self, connections: Optional[ConnectionRegistry] = None,
                 rooms: Optional[RoomRegistry] = None,
                 clock: Callable[[], str] = utc_timestamp):
        self.connections = connections or ConnectionRegistry()
        self.rooms = rooms or RoomRegistry()
        self.clock = clock


def _parse(model, payload: Any, event: str, connection_id: str) -> Optional[BaseModel]:
    if not isinstance(payload, dict):
        logger.warning(f"Discarding {event} from {connection_id}: payload is not an object")
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Discarding {event} from {connection_id}: {e.error_count()} invalid field(s)")
        return None


def _leave(state: SessionState, room_id: str, connection_id: str) -> List[Notification]:
    remaining = state.rooms.leave(room_id, connection_id)
    connection = state.connections.get(connection_id)
    if connection:
        connection.rooms.discard(room_id)
    if remaining is None:
        return []
    return [Notification(member, "user-left", {"userId": connection_id}) for member in remaining]


def on_join_room(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    """Add the connection to the room and pair it with every member already there.

    The earlier joiner of each pair is the one told to send the offer.
    """
    event = _parse(RoomEvent, payload, "join-room", connection_id)
    if event is None:
        return Outcome()
    connection = state.connections.get(connection_id)
    if connection is None:
        logger.warning(f"Ignoring join-room from unregistered connection {connection_id}")
        return Outcome()
    if state.rooms.is_member(event.room_id, connection_id):
        logger.info(f"Connection {connection_id} is already in room {event.room_id}, ignoring join")
        return Outcome()

    existing = state.rooms.join(event.room_id, connection_id)
    connection.rooms.add(event.room_id)

    outcome = Outcome()
    for member in existing:
        outcome.notifications.append(
            Notification(member, "user-joined", {"userId": connection_id, "isInitiator": True}))
        outcome.notifications.append(
            Notification(connection_id, "user-joined", {"userId": member, "isInitiator": False}))
    if not existing:
        outcome.notifications.append(Notification(connection_id, "room-ready", {"roomId": event.room_id}))
    return outcome


def on_leave_room(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    event = _parse(RoomEvent, payload, "leave-room", connection_id)
    if event is None:
        return Outcome()
    return Outcome(notifications=_leave(state, event.room_id, connection_id))


def on_disconnect(state: SessionState, connection_id: str, payload: Any = None) -> Outcome:
    """Leave every room the connection is in, then forget the connection."""
    connection = state.connections.get(connection_id)
    if connection is None:
        return Outcome()
    outcome = Outcome()
    for room_id in list(connection.rooms):
        outcome.notifications.extend(_leave(state, room_id, connection_id))
    state.connections.remove(connection_id)
    logger.info(f"Connection {connection_id} disconnected")
    return outcome


def _relay_signal(event_name: str, state: SessionState, connection_id: str, payload: Any) -> Outcome:
    event = _parse(SignalEvent, payload, event_name, connection_id)
    if event is None:
        return Outcome()
    legacy_key = SIGNAL_EVENTS[event_name]
    blob = event.payload if event.payload is not None else payload.get(legacy_key)
    data = {"roomId": event.room_id, "payload": blob, legacy_key: blob, "from": connection_id}

    if event.to:
        if event.to not in state.connections:
            logger.debug(f"[{event.room_id}] Dropping {event_name} from {connection_id}: {event.to} is gone")
            return Outcome()
        logger.debug(f"[{event.room_id}] {event_name} sent: {connection_id} -> {event.to}")
        return Outcome(notifications=[Notification(event.to, event_name, data)])

    targets = [member for member in state.rooms.members(event.room_id) if member != connection_id]
    logger.debug(f"[{event.room_id}] {event_name} broadcast: {connection_id} -> {len(targets)} peer(s)")
    return Outcome(notifications=[Notification(target, event_name, dict(data)) for target in targets])


def on_webrtc_offer(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    return _relay_signal("webrtc-offer", state, connection_id, payload)


def on_webrtc_answer(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    return _relay_signal("webrtc-answer", state, connection_id, payload)


def on_webrtc_ice_candidate(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    return _relay_signal("webrtc-ice-candidate", state, connection_id, payload)


def _fan_out(state: SessionState, room_id: str, event_name: str, entry: Dict[str, Any]) -> List[Notification]:
    # sender included
    return [Notification(member, event_name, dict(entry)) for member in state.rooms.members(room_id)]


def on_chat_message(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    event = _parse(ChatMessageEvent, payload, "chat-message", connection_id)
    if event is None:
        return Outcome()
    connection = state.connections.get(connection_id)
    sender_id = event.sender_id
    if not sender_id:
        sender_id = connection.identity.user_id if connection and connection.identity else connection_id
    entry = {
        "senderId": sender_id,
        "senderRole": event.sender_role,
        "message": event.message,
        "timestamp": state.clock(),
    }
    if event.attachment is not None:
        entry["attachment"] = event.attachment
        entry["file"] = event.attachment

    return Outcome(
        notifications=_fan_out(state, event.room_id, "chat-message", entry),
        persist=[PersistRequest(event.room_id, "chat", entry)],
    )


def on_transcription_update(state: SessionState, connection_id: str, payload: Any) -> Outcome:
    event = _parse(TranscriptionUpdateEvent, payload, "transcription-update", connection_id)
    if event is None:
        return Outcome()
    text = event.text.strip()
    if not text:
        logger.warning(f"Discarding transcription-update from {connection_id}: blank text")
        return Outcome()

    connection = state.connections.get(connection_id)
    role = event.sender_role if event.sender_role in TRANSCRIPTION_ROLES else "unknown"
    entry = {
        "senderId": connection.identity.user_id if connection and connection.identity else connection_id,
        "senderRole": role,
        "text": text,
        "timestamp": state.clock(),
    }
    logger.debug(f"[{event.room_id}] Transcription from {role}: {text[:50]}")
    return Outcome(
        notifications=_fan_out(state, event.room_id, "transcription-update", entry),
        persist=[PersistRequest(event.room_id, "transcription", entry)],
    )


# Handlers apply an event to the registries and return what to send and persist.
# They never await, so each event is applied as one step on the event loop.
EVENT_HANDLERS: Dict[str, Callable[[SessionState, str, Any], Outcome]] = {
    "join-room": on_join_room,
    "leave-room": on_leave_room,
    "webrtc-offer": on_webrtc_offer,
    "webrtc-answer": on_webrtc_answer,
    "webrtc-ice-candidate": on_webrtc_ice_candidate,
    "chat-message": on_chat_message,
    "transcription-update": on_transcription_update,
    "disconnect": on_disconnect,
}


def dispatch(state: SessionState, connection_id: str, event: str, payload: Any = None) -> Outcome:
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.warning(f"Discarding unknown event '{event}' from {connection_id}")
        return Outcome()
    return handler(state, connection_id, payload)
