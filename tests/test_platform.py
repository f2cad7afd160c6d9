from datetime import timedelta

from bson import ObjectId

from conftest import create_schema, register
from database import utcnow
from errors import QuotaExceededError


def test_signup_and_signin(client):
    owner = register(client, connect=False)
    res = client.post("/auth/signin", json={"email": "owner@example.com", "password": "secret123"})
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["id"] == owner["id"]
    assert user["has_password"] is True
    assert "password" not in user
    assert len(user["api_key"]) == 64
    assert user["api_usage"]["monthly_quota"] == 1000


def test_duplicate_signup_conflicts(client):
    register(client, connect=False)
    res = client.post("/auth/signup", json={"name": "X", "email": "owner@example.com", "password": "secret123"})
    assert res.status_code == 409


def test_signup_validation_renders_as_error_body(client):
    res = client.post("/auth/signup", json={"name": "X", "email": "not-an-email", "password": "secret123"})
    assert res.status_code == 400
    assert "email" in res.json()["error"]


def test_signin_failure_is_uniform(client):
    register(client, connect=False)
    wrong = client.post("/auth/signin", json={"email": "owner@example.com", "password": "nope"})
    missing = client.post("/auth/signin", json={"email": "ghost@example.com", "password": "nope"})
    assert wrong.status_code == missing.status_code == 401
    assert wrong.json() == missing.json() == {"error": "Invalid credentials"}


def test_me(client, owner):
    res = client.get("/auth/me", headers=owner["headers"])
    assert res.status_code == 200
    assert res.json()["user"]["database_name"] == "tenant_db"


def test_mongodb_uri_failure_is_not_saved(client, ctx):
    owner = register(client, connect=False)
    res = client.put("/auth/mongodb-uri", json={"mongodb_uri": "mongodb://unreachable", "database_name": "x"},
                     headers=owner["headers"])
    assert res.status_code == 400
    assert ctx.db["users"].find_one({"_id": ObjectId(owner["id"])}).get("mongodb_uri") is None
    assert ctx.db["notifications"].find_one({"user_id": ObjectId(owner["id"]), "type": "error"})


def test_test_mongodb_endpoint(client, owner):
    ok = client.post("/auth/test-mongodb", json={"mongodb_uri": "mongodb://tenant", "database_name": "x"},
                     headers=owner["headers"])
    assert ok.json() == {"message": "MongoDB connection successful", "connected": True}
    bad = client.post("/auth/test-mongodb", json={"mongodb_uri": "mongodb://unreachable", "database_name": "x"},
                      headers=owner["headers"])
    assert bad.status_code == 400
    assert bad.json()["connected"] is False


def test_tenant_database_not_configured(client, ctx):
    owner = register(client, connect=False)
    now = utcnow()
    ctx.db["schemas"].insert_one({"user_id": ObjectId(owner["id"]), "collection_name": "notes",
                                  "fields": [{"name": "body", "type": "string"}],
                                  "created_at": now, "updated_at": now, "is_active": True})
    res = client.get("/api/notes", headers=owner["api"])
    assert res.status_code == 400
    assert res.json() == {"error": "Please configure your MongoDB connection first"}


def test_regenerated_api_key_replaces_old_one(client, owner):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    res = client.post("/user/regenerate-api-key", headers=owner["headers"])
    new_key = res.json()["api_key"]
    assert new_key != owner["api_key"]
    assert client.get("/api/notes", headers=owner["api"]).status_code == 401
    assert client.get("/api/notes", headers={"X-API-Key": new_key}).status_code == 200


def test_api_calls_are_counted(client, owner):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    for _ in range(3):
        client.get("/api/notes", headers=owner["api"])
    usage = client.get("/user/api-usage", headers=owner["headers"]).json()
    assert usage["used_this_month"] == 3
    assert usage["total_requests"] == 3
    assert usage["remaining"] == 997


def test_quota_exceeded(client, owner, ctx):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    ctx.db["users"].update_one({"_id": ObjectId(owner["id"])},
                               {"$set": {"api_usage.used_this_month": 1000}})
    res = client.get("/api/notes", headers=owner["api"])
    assert res.status_code == 429
    body = res.json()
    assert body["error"] == "API quota exceeded"
    assert body["quota_info"] == {"used": 1000, "limit": 1000}
    assert body["message"].startswith("You have reached your monthly API quota limit")
    assert set(body) == {"error", "message", "quota_info"}


def test_quota_resets_when_due(client, owner, ctx):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    ctx.db["users"].update_one({"_id": ObjectId(owner["id"])}, {"$set": {
        "api_usage.used_this_month": 1000,
        "api_usage.quota_reset_at": utcnow() - timedelta(days=1),
    }})
    assert client.get("/api/notes", headers=owner["api"]).status_code == 200
    usage = ctx.db["users"].find_one({"_id": ObjectId(owner["id"])})["api_usage"]
    assert usage["used_this_month"] == 1


def test_missing_monthly_quota_falls_back_to_default(client, owner, ctx):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    ctx.db["users"].update_one({"_id": ObjectId(owner["id"])}, {"$unset": {"api_usage.monthly_quota": ""}})
    assert client.get("/api/notes", headers=owner["api"]).status_code == 200
    usage = client.get("/user/api-usage", headers=owner["headers"]).json()
    assert usage["remaining"] == 999


def test_api_error_extra_keys_render_beside_error():
    err = QuotaExceededError("API quota exceeded", message="details", quota_info={"used": 1, "limit": 1})
    assert err.status_code == 429
    assert err.to_body() == {"error": "API quota exceeded", "message": "details",
                             "quota_info": {"used": 1, "limit": 1}}


def test_dashboard(client, owner):
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}])
    res = client.get("/user/dashboard", headers=owner["headers"])
    assert res.status_code == 200
    body = res.json()
    assert body["user"]["id"] == owner["id"]
    assert body["user"]["mongodb_uri"] is True
    assert body["stats"]["total_schemas"] == 1
    assert body["stats"]["has_custom_db"] is True
    assert body["stats"]["api_usage"]["monthly_quota"] == 1000
    assert [s["collection_name"] for s in body["schemas"]] == ["notes"]
    assert "jwt_secret" not in str(body["schemas"])
    assert 0 < len(body["recent_activities"]) <= 5
    assert client.get("/user/dashboard").status_code == 401


def test_activities_and_notifications(client, owner):
    res = client.get("/activities", headers=owner["headers"])
    assert res.status_code == 200
    assert res.json()["pagination"]["total"] >= 2

    notes = client.get("/notifications", headers=owner["headers"]).json()["notifications"]
    assert notes
    assert client.get("/notifications/unread-count", headers=owner["headers"]).json()["unread_count"] == len(notes)

    res = client.put(f"/notifications/{notes[0]['id']}/read", headers=owner["headers"])
    assert res.status_code == 200
    count = client.get("/notifications/unread-count", headers=owner["headers"]).json()["unread_count"]
    assert count == len(notes) - 1

    client.put("/notifications/read-all", headers=owner["headers"])
    assert client.get("/notifications/unread-count", headers=owner["headers"]).json()["unread_count"] == 0

    res = client.put(f"/notifications/{ObjectId()}/read", headers=owner["headers"])
    assert res.status_code == 404


def test_health_endpoints(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/test").json()["backend"] == "✅ Running"
