"""Consultation records in Redis."""
import json
from datetime import datetime, timedelta, timezone

import pytest

from backend import ConsultationNotFoundError


@pytest.fixture
def consultation(backend):
    backend.create_consultation("room-1", {
        "roomId": "room-1",
        "appointmentId": "12345",
        "status": "scheduled",
        "createdAt": "2026-01-01T09:00:00+00:00",
        "startTime": None,
    })
    return "room-1"


def test_create_and_get(backend, consultation):
    record = backend.get_consultation(consultation)

    assert record["roomId"] == "room-1"
    # numeric-looking ids stay strings
    assert record["appointmentId"] == "12345"
    assert record["status"] == "scheduled"
    assert "startTime" not in record


def test_missing_consultation(backend):
    assert backend.get_consultation("nope") is None
    assert not backend.consultation_exists("nope")


def test_append_keeps_order(backend, fake_redis, consultation):
    backend.append_chat_message(consultation, {"message": "one"})
    backend.append_chat_message(consultation, {"message": "two"})
    backend.append_transcription(consultation, {"text": "hello"})

    assert [m["message"] for m in backend.get_chat_messages(consultation)] == ["one", "two"]
    assert backend.get_transcription(consultation) == [{"text": "hello"}]
    assert json.loads(fake_redis.lists["consultation:chat:room-1"][0]) == {"message": "one"}


def test_append_without_record_raises(backend, fake_redis):
    with pytest.raises(ConsultationNotFoundError):
        backend.append_chat_message("nope", {"message": "lost"})
    assert fake_redis.lists == {}


def test_unreadable_entries_are_skipped(backend, fake_redis, consultation):
    fake_redis.rpush("consultation:chat:room-1", "{broken", json.dumps({"message": "ok"}))
    assert backend.get_chat_messages(consultation) == [{"message": "ok"}]


def test_start_is_idempotent(backend, consultation):
    started = backend.start_consultation(consultation)
    again = backend.start_consultation(consultation)

    assert started["status"] == "active"
    assert again["startTime"] == started["startTime"]


def test_end_records_duration_in_minutes(backend, consultation):
    start = datetime.now(timezone.utc) - timedelta(minutes=25)
    backend.update_consultation(consultation, {"status": "active", "startTime": start.isoformat()})

    ended = backend.end_consultation(consultation)

    assert ended["status"] == "ended"
    assert ended["duration"] == 25
    assert ended["endTime"]


def test_end_without_start_has_no_duration(backend, consultation):
    ended = backend.end_consultation(consultation)
    assert ended["status"] == "ended"
    assert "duration" not in ended


def test_start_and_end_unknown_room(backend):
    with pytest.raises(ConsultationNotFoundError):
        backend.start_consultation("nope")
    with pytest.raises(ConsultationNotFoundError):
        backend.end_consultation("nope")


def test_duration_rounds_half_minutes_up(backend, consultation):
    start = datetime.now(timezone.utc) - timedelta(seconds=150)
    backend.update_consultation(consultation, {"status": "active", "startTime": start.isoformat()})

    assert backend.end_consultation(consultation)["duration"] == 3


def test_lookup_by_appointment(backend, fake_redis, consultation):
    assert fake_redis.strings["consultation:by-appointment:12345"] == "room-1"
    assert backend.get_consultation_by_appointment("12345")["roomId"] == "room-1"
    assert backend.get_consultation_by_appointment("other") is None
