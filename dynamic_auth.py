"""
Per-collection authentication for end users of the generated API

Tokens are signed with the schema's own secret and scoped to one owner and
one collection. Rotating the schema secret revokes every token it issued.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId

from database import Context, utcnow
from errors import AuthError, ConflictError, DependencyError, ForbiddenError, NotFoundError, ValidationError
from registry import ensure_secret, require_collection_schema
from relations import existence_checker, plan_relations
from schemas import Schema
from security import create_jwt, decode_jwt, hash_password, verify_password
from shaping import shape
from visibility import flat_record_view, jsonable


def auth_schema(ctx: Context, owner: Dict[str, Any], collection: str) -> Schema:
    schema = require_collection_schema(ctx.db, owner["_id"], collection)
    if not schema.auth_enabled:
        raise NotFoundError("Authentication not configured for this collection")
    return schema


def require_secret(schema: Schema) -> str:
    if not schema.auth_config.jwt_secret:
        raise DependencyError("JWT secret not configured")
    return schema.auth_config.jwt_secret


def issue_token(schema: Schema, owner_id: ObjectId, record_id: ObjectId, secret: str):
    claims = {
        "user_id": str(owner_id),
        "schema_user_id": str(record_id),
        "collection": schema.collection_name,
        "schema_id": schema.id,
    }
    return create_jwt(claims, secret=secret, minutes=schema.auth_config.token_expiration_hours * 60)


def response_user(record: Dict[str, Any], schema: Schema) -> Dict[str, Any]:
    """Only ``response_fields`` when configured, otherwise every public non-password field."""
    auth = schema.auth_config
    if not auth.response_fields:
        return jsonable(flat_record_view(record, schema))
    user = {"id": record.get("_id")}
    for name in auth.response_fields:
        if name == auth.password_field or name not in record:
            continue
        user[name] = record[name]
    return jsonable(user)


def _required_string(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Required field missing: {name}")
    return value


def signup(ctx: Context, owner: Dict[str, Any], collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    schema = auth_schema(ctx, owner, collection)
    auth = schema.auth_config
    if not auth.allow_signup:
        raise ForbiddenError("Signup is not allowed for this collection")

    email_field = auth.login_fields.email_field
    username_field = auth.login_fields.username_field
    email = _required_string(payload, email_field)
    password = _required_string(payload, auth.password_field)

    tenant = ctx.tenant_database(owner)
    users = tenant[schema.user_collection]
    if users.find_one({email_field: email}, {"_id": 1}):
        raise ConflictError("User with this email already exists")
    username = payload.get(username_field) if username_field else None
    if username and users.find_one({username_field: username}, {"_id": 1}):
        raise ConflictError("User with this username already exists")

    targets = plan_relations(ctx.db, owner["_id"], schema)
    record = shape(schema, payload, exists=existence_checker(tenant, owner["_id"], targets))
    record[auth.password_field] = hash_password(password)
    secret = ensure_secret(ctx.db, schema)

    now = utcnow()
    record["_id"] = ObjectId()
    record["created_at"] = now
    record["updated_at"] = now
    users.insert_one(record)

    token, expires_at = issue_token(schema, owner["_id"], record["_id"], secret)
    ctx.events.activity(owner["_id"], "auth", f'New user signed up in "{collection}"',
                        "Dynamic auth signup", "auth", str(record["_id"]), {"collection": collection})
    return {"token": token, "user": response_user(record, schema), "expires_at": expires_at}


def login(ctx: Context, owner: Dict[str, Any], collection: str, identifier: str, password: str) -> Dict[str, Any]:
    schema = auth_schema(ctx, owner, collection)
    auth = schema.auth_config
    secret = require_secret(schema)

    login_fields = auth.login_fields
    if login_fields.allow_both and login_fields.username_field:
        query = {"$or": [{login_fields.email_field: identifier}, {login_fields.username_field: identifier}]}
    else:
        query = {login_fields.email_field: identifier}

    record = ctx.tenant_database(owner)[schema.user_collection].find_one(query)
    if not record or not verify_password(password, record.get(auth.password_field)):
        raise AuthError("Invalid credentials")

    token, expires_at = issue_token(schema, owner["_id"], record["_id"], secret)
    return {"token": token, "user": response_user(record, schema), "expires_at": expires_at}


def verify_token(schema: Schema, owner_id: ObjectId, token: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """Decodes a dynamic-auth token and checks it was minted for this owner and collection."""
    claims = decode_jwt(token, secret or require_secret(schema))
    if claims.get("user_id") != str(owner_id):
        raise AuthError("Token not valid for this user")
    if claims.get("collection") != schema.collection_name:
        raise AuthError("Token not valid for this collection")
    return claims


def validate_token(ctx: Context, owner: Dict[str, Any], collection: str, token: str) -> Dict[str, Any]:
    schema = auth_schema(ctx, owner, collection)
    claims = verify_token(schema, owner["_id"], token)
    return {
        "valid": True,
        "user_id": claims.get("schema_user_id"),
        "collection": claims.get("collection"),
        "expires_at": datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    }
