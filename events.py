"""
Fire-and-forget side effects

Request handlers call ``emit`` (a non-blocking enqueue); a daemon worker
thread performs the writes. Failures are logged and never reach the caller.
"""
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, NamedTuple, Optional

from config import DEFAULT_MONTHLY_QUOTA, QUOTA_WARNING_THRESHOLD

logger = logging.getLogger(__name__)

ACTIVITY = "activity"
NOTIFICATION = "notification"
API_REQUEST = "api_request"


class Event(NamedTuple):
    kind: str
    payload: Dict[str, Any]


class EventBus:
    def __init__(self, db, inline: bool = False, maxsize: int = 1000):
        self.db = db
        self.inline = inline
        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._handlers: Dict[str, Callable[..., None]] = {
            ACTIVITY: self.record_activity,
            NOTIFICATION: self.record_notification,
            API_REQUEST: self.record_api_request,
        }

    # -------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------
    def emit(self, kind: str, **payload: Any) -> None:
        event = Event(kind, payload)
        if self.inline:
            self._dispatch(event)
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("event_dropped kind=%s reason=queue_full", kind)

    def activity(self, user_id, type: str, action: str, description: str = "", resource: str = "",
                 resource_id: str = "", metadata: Optional[Dict[str, Any]] = None) -> None:
        self.emit(ACTIVITY, user_id=user_id, type=type, action=action, description=description,
                  resource=resource, resource_id=resource_id, metadata=metadata)

    def notify(self, user_id, title: str, message: str, type: str = "info") -> None:
        self.emit(NOTIFICATION, user_id=user_id, title=title, message=message, type=type)

    # -------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------
    def start(self) -> None:
        if self.inline or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="event-bus", daemon=True)
        self._thread.start()
        logger.info("event_bus started")

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("event_bus stop_signal_dropped pending=%s", self._queue.qsize())
        else:
            self._thread.join(timeout)
        self._thread = None
        logger.info("event_bus stopped")

    def drain(self) -> None:
        self._queue.join()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is None:
                    return
                self._dispatch(event)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Event) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning("event_unhandled kind=%s", event.kind)
            return
        try:
            handler(**event.payload)
        except Exception:
            logger.exception("event_failed kind=%s", event.kind)

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------
    def record_activity(self, user_id, type, action, description="", resource="", resource_id="",
                        metadata=None) -> None:
        doc = {
            "user_id": user_id,
            "type": type,
            "action": action,
            "description": description,
            "resource": resource,
            "resource_id": resource_id,
            "created_at": datetime.now(timezone.utc),
        }
        if metadata:
            doc["metadata"] = metadata
        self.db["activities"].insert_one(doc)

    def record_notification(self, user_id, title, message, type="info") -> None:
        now = datetime.now(timezone.utc)
        self.db["notifications"].insert_one({
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": type,
            "is_read": False,
            "created_at": now,
            "updated_at": now,
        })

    def record_api_request(self, user_id, path, method, user_agent=None) -> None:
        result = self.db["users"].update_one(
            {"_id": user_id},
            {
                "$inc": {"api_usage.total_requests": 1, "api_usage.used_this_month": 1},
                "$set": {"api_usage.last_request": datetime.now(timezone.utc)},
            },
        )
        self.record_activity(user_id, "api", f"API call to {path}", "API endpoint accessed", "api", path,
                             {"method": method, "endpoint": path, "user_agent": user_agent})
        if result.modified_count == 0:
            return

        user = self.db["users"].find_one({"_id": user_id})
        if not user:
            return
        usage = user.get("api_usage") or {}
        used = usage.get("used_this_month", 0)
        quota = usage.get("monthly_quota", DEFAULT_MONTHLY_QUOTA)
        name = user.get("name", "")
        if used == QUOTA_WARNING_THRESHOLD and quota:
            self.record_notification(
                user_id,
                "API Usage Warning",
                f"Hello {name}, you have reached {used} API calls this month "
                f"({used / quota * 100:.1f}% of your quota). You have {quota - used} calls remaining.",
                "warning",
            )
        if quota and used == quota:
            self.record_notification(
                user_id,
                "API Quota Exceeded",
                f"Hello {name}, your free quota is full! You have used all {quota} API calls for this month. "
                "Consider upgrading to a premium plan for higher limits or wait until next month for quota reset.",
                "error",
            )
