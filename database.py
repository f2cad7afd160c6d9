"""
Database access

The platform database holds accounts, schemas, activities and notifications.
Every owner brings their own MongoDB (URI + database name) where dynamic
collections and dynamic-auth user collections live.

Nothing here is a process-wide handle: the ``Context`` is created once by the
server and handed to request handlers through the ``get_context`` dependency.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_URL, DB_TIMEOUT_MS
from errors import DependencyError
from events import EventBus

logger = logging.getLogger(__name__)


class DatabaseNotConfigured(DependencyError):
    status_code = 400


class DatabaseUnavailable(DependencyError):
    status_code = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes unless the client is tz-aware."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def client_options() -> Dict[str, Any]:
    return {
        "serverSelectionTimeoutMS": DB_TIMEOUT_MS,
        "connectTimeoutMS": DB_TIMEOUT_MS,
        "socketTimeoutMS": DB_TIMEOUT_MS,
        "tz_aware": True,
    }


class TenantDatabaseProvider:
    """Routes owners to their own MongoDB, one pooled client per URI."""

    def __init__(self):
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _connect(self, uri: str):
        client = MongoClient(uri, **client_options())
        try:
            client.admin.command("ping")
        except PyMongoError:
            client.close()
            raise
        return client

    def get_database(self, uri: Optional[str], name: Optional[str]) -> Database:
        if not uri or not name:
            raise DatabaseNotConfigured("Please configure your MongoDB connection first")
        client = self._clients.get(uri)
        if client is None:
            # The lock only guards publication, never the ping
            try:
                fresh = self._connect(uri)
            except PyMongoError as e:
                logger.warning("tenant_connect_failed db=%s error=%s", name, e)
                raise DatabaseUnavailable(f"Database connection error: {e}")
            with self._lock:
                client = self._clients.setdefault(uri, fresh)
            if client is not fresh:
                fresh.close()
        return client[name]

    def test_connection(self, uri: str, name: str) -> None:
        """Raises PyMongoError when the URI is unreachable or the database is not listable."""
        client = self._connect(uri)
        try:
            client[name].list_collection_names()
        finally:
            client.close()

    def close(self) -> None:
        with self._lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()


class Context:
    """Per-server collaborators threaded into every request."""

    def __init__(self, db: Database, tenants: TenantDatabaseProvider, events: EventBus):
        self.db = db
        self.tenants = tenants
        self.events = events

    def tenant_database(self, user: Dict[str, Any]) -> Database:
        return self.tenants.get_database(user.get("mongodb_uri"), user.get("database_name"))


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, skip: int = 0) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


_context: Optional[Context] = None
_context_lock = threading.Lock()


def get_context() -> Context:
    global _context
    with _context_lock:
        if _context is None:
            client = MongoClient(DATABASE_URL, **client_options())
            db = client[DATABASE_NAME]
            events = EventBus(db)
            events.start()
            _context = Context(db, TenantDatabaseProvider(), events)
    return _context


def close_context() -> None:
    global _context
    with _context_lock:
        if _context is None:
            return
        _context.events.stop()
        _context.tenants.close()
        _context.db.client.close()
        _context = None
