"""Detached persistence of chat and transcription entries."""
import asyncio
import threading
import time
from unittest.mock import Mock

import pytest
import redis

from relay import PersistRequest
from sink import ConsultationSink


@pytest.fixture
def consultation(backend):
    backend.create_consultation("r1", {"roomId": "r1", "status": "active"})
    return "r1"


@pytest.mark.asyncio
async def test_chat_and_transcription_are_saved(backend, consultation):
    sink = ConsultationSink(backend)

    assert await sink.persist(PersistRequest("r1", "chat", {"message": "hi"}))
    assert await sink.persist(PersistRequest("r1", "transcription", {"text": "hello"}))

    assert backend.get_chat_messages("r1") == [{"message": "hi"}]
    assert backend.get_transcription("r1") == [{"text": "hello"}]


@pytest.mark.asyncio
async def test_missing_consultation_is_reported_not_raised(backend):
    sink = ConsultationSink(backend)
    assert await sink.persist(PersistRequest("nope", "chat", {"message": "hi"})) is False


@pytest.mark.asyncio
async def test_redis_error_is_reported_not_raised(backend, fake_redis, consultation):
    fake_redis.rpush = Mock(side_effect=redis.ConnectionError("down"))
    sink = ConsultationSink(backend)

    assert await sink.persist(PersistRequest("r1", "chat", {"message": "hi"})) is False


@pytest.mark.asyncio
async def test_unknown_kind_is_rejected(backend, consultation):
    sink = ConsultationSink(backend)
    assert await sink.persist(PersistRequest("r1", "audio", {})) is False


@pytest.mark.asyncio
async def test_record_returns_immediately_and_drain_waits(backend, fake_redis, consultation):
    release = threading.Event()
    original_rpush = fake_redis.rpush

    def slow_rpush(key, *values):
        release.wait(timeout=5)
        return original_rpush(key, *values)

    fake_redis.rpush = slow_rpush
    sink = ConsultationSink(backend)

    task = sink.record(PersistRequest("r1", "chat", {"message": "hi"}))
    assert not task.done()

    release.set()
    await sink.drain()
    assert task.result() is True
    assert backend.get_chat_messages("r1") == [{"message": "hi"}]


@pytest.mark.asyncio
async def test_writes_for_one_room_keep_their_order(backend, fake_redis, consultation):
    original_rpush = fake_redis.rpush
    delays = iter([0.05, 0.0, 0.02, 0.0])

    def jittery_rpush(key, *values):
        # earlier writes are slower, so unordered writes would land reversed
        time.sleep(next(delays))
        return original_rpush(key, *values)

    fake_redis.rpush = jittery_rpush
    sink = ConsultationSink(backend)

    for n in range(4):
        sink.record(PersistRequest("r1", "chat", {"n": n}))
    await sink.drain()

    assert [m["n"] for m in backend.get_chat_messages("r1")] == [0, 1, 2, 3]
    assert sink._room_locks == {}


@pytest.mark.asyncio
async def test_failure_in_one_room_does_not_affect_another(backend, consultation):
    sink = ConsultationSink(backend)
    results = await asyncio.gather(
        sink.persist(PersistRequest("missing", "chat", {"message": "lost"})),
        sink.persist(PersistRequest("r1", "chat", {"message": "kept"})),
    )

    assert results == [False, True]
    assert backend.get_chat_messages("r1") == [{"message": "kept"}]
