import asyncio
from typing import Dict, Set

import redis

from backend import ConsultationNotFoundError, RedisBackend
from logging_config import get_logger
from relay import PersistRequest

logger = get_logger(__name__)


class ConsultationSink:
    """
    Hands chat messages and transcription entries to the consultation record.

    record() returns immediately; the write runs as a detached task so a slow
    or failing database never holds up delivery to peers. Writes for one room
    are applied one at a time in the order they were recorded. Failures are
    logged and dropped, never retried.
    """

    def __init__(self, backend: RedisBackend):
        self.backend = backend
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._room_users: Dict[str, int] = {}
        self._pending: Set[asyncio.Task] = set()

    def record(self, request: PersistRequest) -> asyncio.Task:
        task = asyncio.create_task(self.persist(request))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def persist(self, request: PersistRequest) -> bool:
        room_id = request.room_id
        lock = self._room_locks.setdefault(room_id, asyncio.Lock())
        self._room_users[room_id] = self._room_users.get(room_id, 0) + 1
        try:
            async with lock:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(None, self._write, request)
        finally:
            # drop the lock once no write for this room is running or queued
            self._room_users[room_id] -= 1
            if not self._room_users[room_id]:
                del self._room_users[room_id]
                del self._room_locks[room_id]

    def _write(self, request: PersistRequest) -> bool:
        try:
            if request.kind == "chat":
                self.backend.append_chat_message(request.room_id, request.entry)
            elif request.kind == "transcription":
                self.backend.append_transcription(request.room_id, request.entry)
            else:
                logger.error(f"Unknown persist kind '{request.kind}' for room {request.room_id}")
                return False
        except ConsultationNotFoundError:
            logger.error(f"Consultation not found for roomId: {request.room_id}, {request.kind} entry not saved")
            return False
        except redis.RedisError as e:
            logger.error(f"Error saving {request.kind} entry for room {request.room_id}: {e}", exc_info=True)
            return False
        logger.debug(f"Saved {request.kind} entry for room {request.room_id}")
        return True

    async def drain(self):
        """Wait for every write recorded so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
