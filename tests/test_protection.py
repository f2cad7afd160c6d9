from datetime import timedelta

from bson import ObjectId

from conftest import ACCOUNT_FIELDS, accounts_auth, create_schema, register
from database import utcnow

NOTE_FIELDS = [{"name": "body", "type": "string"}]


def bearer(owner, token):
    return {**owner["api"], "Authorization": f"Bearer {token}"}


def signup_token(client, owner, collection="accounts", email="a@x.com"):
    res = client.post(f"/api/{collection}/auth/signup", json={"data": {"email": email, "pwd": "secret"}},
                      headers=owner["api"])
    assert res.status_code == 201, res.text
    return res.json()["token"]


def test_unprotected_verb_open_even_with_auth_enabled(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth(),
                  endpoint_protection={"get": False, "post": True})
    assert client.get("/api/accounts", headers=owner["api"]).status_code == 200


def test_protected_verb_needs_bearer(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    create_schema(client, owner, "notes", NOTE_FIELDS, endpoint_protection={"post": True})

    res = client.post("/api/notes", json={"body": "hi"}, headers=owner["api"])
    assert res.status_code == 401
    assert res.json() == {"error": "Authorization header required"}

    res = client.post("/api/notes", json={"body": "hi"}, headers=bearer(owner, "garbage"))
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid token"}

    token = signup_token(client, owner)
    assert client.post("/api/notes", json={"body": "hi"}, headers=bearer(owner, token)).status_code == 201
    # GET stays open
    assert client.get("/api/notes", headers=owner["api"]).status_code == 200


def test_protection_without_any_auth_system(client, owner):
    create_schema(client, owner, "notes", NOTE_FIELDS, endpoint_protection={"get": True})
    res = client.get("/api/notes", headers=bearer(owner, "whatever"))
    assert res.status_code == 401
    assert res.json() == {"error": "Authentication required but no auth system configured"}


def test_schema_with_own_auth_uses_its_own_secret(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth(),
                  endpoint_protection={"delete": True})
    token = signup_token(client, owner)
    doc_id = client.post("/api/accounts", json={"email": "x@x.com", "pwd": "p"}, headers=owner["api"]).json()["id"]
    assert client.delete(f"/api/accounts/{doc_id}", headers=owner["api"]).status_code == 401
    assert client.delete(f"/api/accounts/{doc_id}", headers=bearer(owner, token)).status_code == 200


def test_oldest_auth_schema_is_borrowed(client, owner, ctx):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    staff = create_schema(client, owner, "staff", ACCOUNT_FIELDS, auth_config=accounts_auth())
    ctx.db["schemas"].update_one({"_id": ObjectId(staff["id"])},
                                 {"$set": {"created_at": utcnow() + timedelta(minutes=5)}})
    create_schema(client, owner, "notes", NOTE_FIELDS, endpoint_protection={"get": True})

    accounts_token = signup_token(client, owner, "accounts")
    staff_token = signup_token(client, owner, "staff")

    assert client.get("/api/notes", headers=bearer(owner, accounts_token)).status_code == 200
    res = client.get("/api/notes", headers=bearer(owner, staff_token))
    assert res.status_code == 401


def test_token_of_other_owner_rejected(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    create_schema(client, owner, "notes", NOTE_FIELDS, endpoint_protection={"get": True})
    other = register(client, email="other@example.com")
    create_schema(client, other, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    other_token = signup_token(client, other, email="o@x.com")

    assert client.get("/api/notes", headers=bearer(owner, other_token)).status_code == 401


def test_auth_routes_are_never_gated(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth(),
                  endpoint_protection={"get": True, "post": True, "put": True, "delete": True})
    signup_token(client, owner)
    res = client.post("/api/accounts/auth/login", json={"identifier": "a@x.com", "password": "secret"},
                      headers=owner["api"])
    assert res.status_code == 200


def test_deleting_auth_schema_reopens_protected_collections(client, owner):
    accounts = create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    create_schema(client, owner, "notes", NOTE_FIELDS, endpoint_protection={"get": True})
    assert client.get("/api/notes", headers=owner["api"]).status_code == 401

    client.delete(f"/schemas/{accounts['id']}", headers=owner["headers"])
    assert client.get("/api/notes", headers=owner["api"]).status_code == 200
