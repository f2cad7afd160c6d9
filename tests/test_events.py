import logging
import threading

import mongomock
import pytest
from bson import ObjectId

from config import QUOTA_WARNING_THRESHOLD
from events import API_REQUEST, EventBus


@pytest.fixture
def db():
    return mongomock.MongoClient()["events_test"]


def make_user(db, used=0, quota=1000):
    user_id = ObjectId()
    db["users"].insert_one({"_id": user_id, "name": "Owner",
                            "api_usage": {"total_requests": 0, "used_this_month": used, "monthly_quota": quota}})
    return user_id


def test_worker_thread_writes_in_background(db):
    bus = EventBus(db)
    bus.start()
    try:
        user_id = ObjectId()
        bus.activity(user_id, "create", "Created table", resource="schema")
        bus.notify(user_id, "Hello", "World")
        bus.drain()
    finally:
        bus.stop()
    assert db["activities"].count_documents({"user_id": user_id}) == 1
    notification = db["notifications"].find_one({"user_id": user_id})
    assert notification["is_read"] is False
    assert notification["type"] == "info"


def test_handler_failure_is_logged_not_raised(db, caplog, monkeypatch):
    bus = EventBus(db, inline=True)

    def boom(**payload):
        raise RuntimeError("disk full")

    monkeypatch.setitem(bus._handlers, "activity", boom)
    with caplog.at_level(logging.ERROR, logger="events"):
        bus.activity(ObjectId(), "create", "x")
    assert "event_failed kind=activity" in caplog.text


def test_full_queue_drops_event(db, caplog):
    bus = EventBus(db, maxsize=1)
    with caplog.at_level(logging.WARNING, logger="events"):
        bus.notify(ObjectId(), "a", "b")
        bus.notify(ObjectId(), "c", "d")
    assert "event_dropped" in caplog.text


def test_unknown_event_kind_is_ignored(db, caplog):
    bus = EventBus(db, inline=True)
    with caplog.at_level(logging.WARNING, logger="events"):
        bus.emit("nope", x=1)
    assert "event_unhandled kind=nope" in caplog.text


def test_api_request_counts_usage(db):
    bus = EventBus(db, inline=True)
    user_id = make_user(db)
    bus.emit(API_REQUEST, user_id=user_id, path="/api/notes", method="GET")
    usage = db["users"].find_one({"_id": user_id})["api_usage"]
    assert usage["total_requests"] == 1
    assert usage["used_this_month"] == 1
    assert usage["last_request"] is not None
    assert db["activities"].find_one({"user_id": user_id})["type"] == "api"


def test_warning_sent_exactly_at_threshold(db):
    bus = EventBus(db, inline=True)
    user_id = make_user(db, used=QUOTA_WARNING_THRESHOLD - 2)
    for _ in range(3):
        bus.emit(API_REQUEST, user_id=user_id, path="/api/notes", method="GET")
    warnings = list(db["notifications"].find({"user_id": user_id, "type": "warning"}))
    assert len(warnings) == 1
    assert warnings[0]["title"] == "API Usage Warning"


def test_limit_notification_when_quota_reached(db):
    bus = EventBus(db, inline=True)
    user_id = make_user(db, used=9, quota=10)
    bus.emit(API_REQUEST, user_id=user_id, path="/api/notes", method="GET")
    assert db["notifications"].find_one({"user_id": user_id, "type": "error"})["title"] == "API Quota Exceeded"


def test_stop_returns_when_queue_is_full(db, caplog, monkeypatch):
    bus = EventBus(db, maxsize=1)
    entered, release = threading.Event(), threading.Event()

    def stuck(**payload):
        entered.set()
        release.wait(5)

    monkeypatch.setitem(bus._handlers, "activity", stuck)
    bus.start()
    try:
        bus.activity(ObjectId(), "create", "first")
        assert entered.wait(5)
        bus.activity(ObjectId(), "create", "second")
        with caplog.at_level(logging.WARNING, logger="events"):
            bus.stop(timeout=0.1)
        assert "stop_signal_dropped" in caplog.text
        assert bus._thread is None
    finally:
        release.set()
