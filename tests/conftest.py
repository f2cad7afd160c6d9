import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-platform-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

from database import Context, TenantDatabaseProvider, get_context
from events import EventBus
from main import app

TENANT_URI = "mongodb://tenant.example:27017"
TENANT_DB = "tenant_db"


class InMemoryTenants(TenantDatabaseProvider):
    """Routes every tenant URI to one mongomock client; URIs containing "unreachable" fail."""

    def __init__(self, client):
        super().__init__()
        self.client = client

    def _connect(self, uri):
        if "unreachable" in uri:
            raise ServerSelectionTimeoutError("No servers found yet")
        return self.client


@pytest.fixture
def mongo():
    return mongomock.MongoClient()


@pytest.fixture
def ctx(mongo):
    db = mongo["schemacraft_test"]
    return Context(db, InMemoryTenants(mongo), EventBus(db, inline=True))


@pytest.fixture
def tenant_db(mongo):
    return mongo[TENANT_DB]


@pytest.fixture
def client(ctx):
    app.dependency_overrides[get_context] = lambda: ctx
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, email="owner@example.com", name="Owner", connect=True):
    res = client.post("/auth/signup", json={"name": name, "email": email, "password": "secret123"})
    assert res.status_code == 201, res.text
    body = res.json()
    owner = {
        "id": body["user"]["id"],
        "token": body["token"],
        "api_key": body["user"]["api_key"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
        "api": {"X-API-Key": body["user"]["api_key"]},
    }
    if connect:
        res = client.put("/auth/mongodb-uri", json={"mongodb_uri": TENANT_URI, "database_name": TENANT_DB},
                         headers=owner["headers"])
        assert res.status_code == 200, res.text
    return owner


@pytest.fixture
def owner(client):
    return register(client)


def create_schema(client, owner, name, fields, **extra):
    res = client.post("/schemas", json={"collection_name": name, "fields": fields, **extra},
                      headers=owner["headers"])
    assert res.status_code == 201, res.text
    return res.json()


def accounts_auth(**overrides):
    config = {
        "enabled": True,
        "login_fields": {"email_field": "email"},
        "password_field": "pwd",
        "allow_signup": True,
    }
    config.update(overrides)
    return config


ACCOUNT_FIELDS = [
    {"name": "email", "type": "string", "required": True},
    {"name": "pwd", "type": "string", "required": True},
    {"name": "nickname", "type": "string"},
    {"name": "internal_note", "type": "string", "visibility": "private"},
]
