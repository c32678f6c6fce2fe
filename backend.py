import redis
import json
import math
from datetime import datetime, timezone
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_CONSULTATION_KEY, REDIS_CHAT_KEY, REDIS_TRANSCRIPT_KEY, REDIS_APPOINTMENT_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class ConsultationNotFoundError(Exception):
    """Raised when no consultation record exists for a room id."""
    pass


class RedisBackend:
    """Consultation records in Redis: a meta hash plus append-only chat and transcript lists."""

    def __init__(self, redis_client=None):
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
        # redis.Redis connects lazily, so building the client never touches the network
        self.redis_client = redis_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed for {REDIS_HOST}:{REDIS_PORT}: {e}")
            return False

    def create_consultation(self, room_id: str, record: dict):
        logger.info(f"Creating consultation record for room {room_id}")
        key = REDIS_CONSULTATION_KEY.format(room_id=room_id)
        # Convert dict values to strings for Redis hash, skip None values
        record_str = {}
        for k, v in record.items():
            if v is None:
                continue
            if isinstance(v, (dict, list)):
                record_str[k] = json.dumps(v)
            else:
                record_str[k] = str(v)
        self.redis_client.hset(key, mapping=record_str)
        if record_str.get("appointmentId"):
            self.redis_client.set(REDIS_APPOINTMENT_KEY.format(appointment_id=record_str["appointmentId"]), room_id)
        logger.debug(f"Consultation for room {room_id} created with key: {key}")
        return room_id

    def consultation_exists(self, room_id: str) -> bool:
        return bool(self.redis_client.exists(REDIS_CONSULTATION_KEY.format(room_id=room_id)))

    def get_consultation(self, room_id: str):
        logger.debug(f"Fetching consultation for room {room_id}")
        key = REDIS_CONSULTATION_KEY.format(room_id=room_id)
        record = self.redis_client.hgetall(key)
        if not record:
            logger.debug(f"Consultation for room {room_id} not found in Redis")
            return None
        # Convert back from strings
        result = {}
        for k, v in record.items():
            try:
                result[k] = json.loads(v)
            except (json.JSONDecodeError, TypeError):
                result[k] = v
        # Ids and statuses are plain strings even when they look like JSON numbers
        for k in ("roomId", "appointmentId", "status", "createdAt", "startTime", "endTime"):
            if k in record:
                result[k] = record[k]
        return result

    def get_consultation_by_appointment(self, appointment_id: str):
        room_id = self.redis_client.get(REDIS_APPOINTMENT_KEY.format(appointment_id=appointment_id))
        if not room_id:
            logger.debug(f"No consultation indexed for appointment {appointment_id}")
            return None
        return self.get_consultation(room_id)

    def update_consultation(self, room_id: str, fields: dict):
        key = REDIS_CONSULTATION_KEY.format(room_id=room_id)
        self.redis_client.hset(key, mapping={k: str(v) for k, v in fields.items() if v is not None})
        logger.debug(f"Consultation for room {room_id} updated: {sorted(fields)}")

    def start_consultation(self, room_id: str) -> dict:
        record = self.get_consultation(room_id)
        if not record:
            raise ConsultationNotFoundError(f"Consultation for room {room_id} not found")
        if record.get("status") == "active":
            logger.info(f"Consultation for room {room_id} already active")
            return record
        self.update_consultation(room_id, {
            "status": "active",
            "startTime": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"Consultation for room {room_id} started")
        return self.get_consultation(room_id)

    def end_consultation(self, room_id: str) -> dict:
        record = self.get_consultation(room_id)
        if not record:
            raise ConsultationNotFoundError(f"Consultation for room {room_id} not found")
        end_time = datetime.now(timezone.utc)
        fields = {"status": "ended", "endTime": end_time.isoformat()}
        start_time = record.get("startTime")
        if start_time:
            elapsed = end_time - datetime.fromisoformat(start_time)
            minutes = elapsed.total_seconds() / 60
            # half a minute rounds up
            fields["duration"] = math.floor(minutes + 0.5)
        self.update_consultation(room_id, fields)
        logger.info(f"Consultation for room {room_id} ended, duration={fields.get('duration')}")
        return self.get_consultation(room_id)

    def _append(self, key_template: str, room_id: str, entry: dict) -> int:
        """Append one JSON entry to a consultation list.

        RPUSH is atomic, so concurrent appends for the same room never overwrite
        each other the way a fetch-mutate-save cycle would.
        """
        if not self.consultation_exists(room_id):
            raise ConsultationNotFoundError(f"Consultation for room {room_id} not found")
        key = key_template.format(room_id=room_id)
        length = self.redis_client.rpush(key, json.dumps(entry))
        logger.debug(f"Appended entry to {key}, length={length}")
        return length

    def append_chat_message(self, room_id: str, message: dict) -> int:
        return self._append(REDIS_CHAT_KEY, room_id, message)

    def append_transcription(self, room_id: str, entry: dict) -> int:
        return self._append(REDIS_TRANSCRIPT_KEY, room_id, entry)

    def _read_list(self, key_template: str, room_id: str) -> list:
        items = self.redis_client.lrange(key_template.format(room_id=room_id), 0, -1)
        entries = []
        for raw in items:
            try:
                entries.append(json.loads(raw))
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Skipping unreadable entry in {key_template.format(room_id=room_id)}")
        return entries

    def get_chat_messages(self, room_id: str) -> list:
        return self._read_list(REDIS_CHAT_KEY, room_id)

    def get_transcription(self, room_id: str) -> list:
        return self._read_list(REDIS_TRANSCRIPT_KEY, room_id)


redis_backend = RedisBackend()
