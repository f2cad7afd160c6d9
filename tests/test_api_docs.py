from conftest import ACCOUNT_FIELDS, accounts_auth, create_schema

VALID_SWAGGER_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


def get_docs(client, owner, **params):
    res = client.get("/user/api-docs", headers=owner["headers"], params=params)
    assert res.status_code == 200, res.text
    return res.json()


def test_docs_without_schemas(client, owner):
    docs = get_docs(client, owner)
    assert docs["swagger"] == "2.0"
    assert docs["basePath"] == "/api"
    assert docs["paths"] == {}
    assert set(docs["securityDefinitions"]) == {"ApiKeyAuth"}
    assert {"LoginRequest", "AuthResponse"} <= set(docs["definitions"])


def test_docs_reflect_schemas(client, owner):
    create_schema(client, owner, "customers", [
        {"name": "name", "type": "string", "required": True},
        {"name": "secret", "type": "string", "visibility": "private"},
        {"name": "born", "type": "date"},
        {"name": "tags", "type": "array"},
    ])
    create_schema(client, owner, "orders", [
        {"name": "amount", "type": "number", "required": True},
        {"name": "customer", "type": "relation", "target": "customers"},
    ])
    docs = get_docs(client, owner)

    assert {"/customers", "/customers/{id}", "/orders", "/orders/{id}"} <= set(docs["paths"])
    assert "/customers/auth/signup" not in docs["paths"]

    customers = docs["definitions"]["customers"]
    assert customers["required"] == ["name"]
    assert customers["properties"]["born"] == {"type": "string", "format": "date-time"}
    assert customers["properties"]["tags"]["type"] == "array"
    assert "secret" not in docs["definitions"]["customersResponse"]["properties"]

    relation = docs["definitions"]["orders"]["properties"]["customer"]
    assert relation["type"] == "string"
    assert relation["x-relation"] == "customers"

    for definition in docs["definitions"].values():
        for prop in definition.get("properties", {}).values():
            assert prop["type"] in VALID_SWAGGER_TYPES


def test_docs_security_for_auth_and_protection(client, owner):
    create_schema(client, owner, "accounts", ACCOUNT_FIELDS, auth_config=accounts_auth())
    create_schema(client, owner, "notes", [{"name": "body", "type": "string"}],
                  endpoint_protection={"get": True})
    docs = get_docs(client, owner)

    assert "BearerAuth" in docs["securityDefinitions"]
    assert {"/accounts/auth/signup", "/accounts/auth/login", "/accounts/auth/validate"} <= set(docs["paths"])

    signup_props = docs["paths"]["/accounts/auth/signup"]["post"]["parameters"][0]["schema"]["properties"]
    assert signup_props["data"]["properties"]["pwd"]["format"] == "password"

    notes = docs["paths"]["/notes"]
    assert notes["get"]["security"] == [{"ApiKeyAuth": [], "BearerAuth": []}]
    assert notes["post"]["security"] == [{"ApiKeyAuth": []}]


def test_docs_accept_query_token(client, owner):
    res = client.get("/user/api-docs", params={"token": owner["token"]})
    assert res.status_code == 200
    assert client.get("/user/api-docs").status_code == 401


def test_docs_scheme_follows_forwarded_proto(client, owner):
    res = client.get("/user/api-docs", headers={**owner["headers"], "X-Forwarded-Proto": "https"})
    assert res.json()["schemes"] == ["https"]


def test_swagger_ui_page(client, owner):
    res = client.get("/user/swagger-ui", params={"token": owner["token"]})
    assert res.status_code == 200
    assert "text/html" in res.headers["content-type"]
    assert f"/user/api-docs?token={owner['token']}" in res.text
