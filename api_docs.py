"""
Swagger 2.0 document for an owner's generated API, rebuilt from the
registry on every request.
"""
from typing import Any, Dict, List

from fastapi import Request

from config import FORCE_HTTPS
from schemas import FieldType, Schema, SchemaField

_SWAGGER_TYPES = {
    FieldType.STRING: {"type": "string"},
    FieldType.NUMBER: {"type": "number"},
    FieldType.BOOLEAN: {"type": "boolean"},
    FieldType.DATE: {"type": "string", "format": "date-time"},
    FieldType.OBJECT: {"type": "object"},
    FieldType.ARRAY: {"type": "array", "items": {}},
    FieldType.RELATION: {"type": "string"},
}

ID_PARAM = {"name": "id", "in": "path", "required": True, "type": "string", "description": "Document ID"}


def request_scheme(request: Request) -> str:
    if FORCE_HTTPS:
        return "https"
    forwarded = request.headers.get("X-Forwarded-Proto")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.url.scheme


def field_property(field: SchemaField) -> Dict[str, Any]:
    prop = dict(_SWAGGER_TYPES[field.type])
    if field.description:
        prop["description"] = field.description
    if field.default is not None:
        prop["default"] = field.default
    if field.type == FieldType.RELATION:
        prop["x-relation"] = field.target
        prop.setdefault("description", f"ID of a {field.target} document")
    return prop


def input_definition(schema: Schema) -> Dict[str, Any]:
    definition: Dict[str, Any] = {
        "type": "object",
        "properties": {f.name: field_property(f) for f in schema.fields},
    }
    required = [f.name for f in schema.fields if f.required]
    if required:
        definition["required"] = required
    return definition


def response_definition(schema: Schema) -> Dict[str, Any]:
    properties = {"id": {"type": "string"}}
    for field in schema.fields:
        if field.is_public:
            properties[field.name] = field_property(field)
    properties["created_at"] = {"type": "string", "format": "date-time"}
    properties["updated_at"] = {"type": "string", "format": "date-time"}
    return {"type": "object", "properties": properties}


def signup_properties(schema: Schema) -> Dict[str, Any]:
    auth = schema.auth_config
    properties = {f.name: field_property(f) for f in schema.fields}
    properties[auth.login_fields.email_field] = {"type": "string", "format": "email", "description": "Email address"}
    if auth.login_fields.username_field:
        properties[auth.login_fields.username_field] = {"type": "string", "description": "Username"}
    properties[auth.password_field] = {"type": "string", "format": "password", "description": "Password"}
    return properties


def _security(schema: Schema, method: str) -> List[Dict[str, List[str]]]:
    if schema.endpoint_protection and schema.endpoint_protection.requires(method):
        return [{"ApiKeyAuth": [], "BearerAuth": []}]
    return [{"ApiKeyAuth": []}]


def _responses(*codes: str) -> Dict[str, Any]:
    descriptions = {
        "200": "Success",
        "201": "Created",
        "400": "Bad Request",
        "401": "Unauthorized",
        "403": "Forbidden",
        "404": "Not Found",
        "409": "Conflict",
        "429": "API quota exceeded",
        "500": "Internal Server Error",
    }
    return {code: {"description": descriptions[code]} for code in codes}


def auth_paths(schema: Schema) -> Dict[str, Any]:
    name = schema.collection_name
    tags = [f"{name} Auth"]
    return {
        f"/{name}/auth/signup": {"post": {
            "summary": f"Sign up for {name}",
            "tags": tags,
            "parameters": [{
                "name": "body", "in": "body", "required": True,
                "schema": {
                    "type": "object",
                    "properties": {"data": {"type": "object", "properties": signup_properties(schema)}},
                    "required": ["data"],
                },
            }],
            "responses": {**_responses("400", "403", "409", "429"),
                          "201": {"description": "User created", "schema": {"$ref": "#/definitions/AuthResponse"}}},
        }},
        f"/{name}/auth/login": {"post": {
            "summary": f"Login to {name}",
            "tags": tags,
            "parameters": [{"name": "body", "in": "body", "required": True,
                            "schema": {"$ref": "#/definitions/LoginRequest"}}],
            "responses": {**_responses("400", "401", "429"),
                          "200": {"description": "Authenticated", "schema": {"$ref": "#/definitions/AuthResponse"}}},
        }},
        f"/{name}/auth/validate": {"get": {
            "summary": f"Validate a {name} token",
            "tags": tags,
            "security": [{"ApiKeyAuth": [], "BearerAuth": []}],
            "responses": {**_responses("401", "429"), "200": {
                "description": "Token is valid",
                "schema": {"type": "object", "properties": {
                    "valid": {"type": "boolean"},
                    "user_id": {"type": "string"},
                    "collection": {"type": "string"},
                    "expires_at": {"type": "string", "format": "date-time"},
                }},
            }},
        }},
    }


def crud_paths(schema: Schema) -> Dict[str, Any]:
    name = schema.collection_name
    tags = [name]
    item = {"$ref": f"#/definitions/{name}Response"}
    return {
        f"/{name}": {
            "get": {
                "summary": f"Get all {name}",
                "tags": tags,
                "parameters": [
                    {"name": "page", "in": "query", "type": "integer", "description": "Page number (default: 1)"},
                    {"name": "limit", "in": "query", "type": "integer",
                     "description": "Items per page (default: 10, max: 100)"},
                ],
                "security": _security(schema, "get"),
                "responses": {**_responses("401", "429"), "200": {"description": "Success", "schema": {
                    "type": "object",
                    "properties": {"data": {"type": "array", "items": item}, "pagination": {"type": "object"}},
                }}},
            },
            "post": {
                "summary": f"Create {name}",
                "tags": tags,
                "parameters": [{"name": "body", "in": "body", "required": True,
                                "schema": {"$ref": f"#/definitions/{name}"}}],
                "security": _security(schema, "post"),
                "responses": {**_responses("400", "401", "429"), "201": {"description": "Created", "schema": item}},
            },
        },
        f"/{name}/{{id}}": {
            "get": {
                "summary": f"Get {name} by ID",
                "tags": tags,
                "parameters": [ID_PARAM],
                "security": _security(schema, "get"),
                "responses": {**_responses("400", "401", "404", "429"), "200": {"description": "Success", "schema": item}},
            },
            "put": {
                "summary": f"Update {name}",
                "tags": tags,
                "parameters": [ID_PARAM, {"name": "body", "in": "body", "required": True,
                                          "schema": {"$ref": f"#/definitions/{name}"}}],
                "security": _security(schema, "put"),
                "responses": _responses("200", "400", "401", "404", "429"),
            },
            "delete": {
                "summary": f"Delete {name}",
                "tags": tags,
                "parameters": [ID_PARAM],
                "security": _security(schema, "delete"),
                "responses": _responses("200", "400", "401", "404", "429"),
            },
        },
    }


def common_definitions() -> Dict[str, Any]:
    return {
        "LoginRequest": {
            "type": "object",
            "properties": {
                "identifier": {"type": "string", "description": "Email or username"},
                "password": {"type": "string", "description": "Password"},
            },
            "required": ["identifier", "password"],
        },
        "AuthResponse": {
            "type": "object",
            "properties": {
                "token": {"type": "string", "description": "JWT access token"},
                "user": {"type": "object", "description": "User data"},
                "expires_at": {"type": "string", "format": "date-time", "description": "Token expiration time"},
            },
        },
    }


def build_api_docs(owner: Dict[str, Any], schemas: List[Schema], host: str, scheme: str) -> Dict[str, Any]:
    paths: Dict[str, Any] = {}
    definitions = common_definitions()
    needs_bearer = False

    for schema in schemas:
        definitions[schema.collection_name] = input_definition(schema)
        definitions[f"{schema.collection_name}Response"] = response_definition(schema)
        if schema.auth_enabled:
            paths.update(auth_paths(schema))
            needs_bearer = True
        if schema.endpoint_protection and schema.endpoint_protection.any():
            needs_bearer = True
        paths.update(crud_paths(schema))

    security_definitions = {
        "ApiKeyAuth": {"type": "apiKey", "name": "X-API-Key", "in": "header",
                       "description": "Your personal API key"},
    }
    if needs_bearer:
        security_definitions["BearerAuth"] = {
            "type": "apiKey", "name": "Authorization", "in": "header",
            "description": "Bearer token for authenticated requests. Format: Bearer {token}",
        }

    return {
        "swagger": "2.0",
        "info": {
            "title": "Your SchemaCraft API",
            "description": "Personal API documentation for your dynamic schemas",
            "version": "1.0",
            "contact": {"name": owner.get("name"), "email": owner.get("email")},
        },
        "host": host,
        "basePath": "/api",
        "schemes": [scheme],
        "consumes": ["application/json"],
        "produces": ["application/json"],
        "security": [{"ApiKeyAuth": []}],
        "securityDefinitions": security_definitions,
        "paths": paths,
        "definitions": definitions,
    }
