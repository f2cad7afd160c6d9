"""
Endpoint protection for dynamic CRUD routes

Each schema may require a dynamic-auth bearer token per HTTP verb. A schema
without its own auth borrows the owner's oldest auth-enabled schema.
"""
from typing import Any, Dict, NamedTuple, Optional

from fastapi import Depends, Request

from database import Context, get_context
from dynamic_auth import require_secret, verify_token
from errors import AuthError
from registry import find_auth_source, require_collection_schema
from schemas import Schema
from security import api_user, bearer_token


class CollectionAccess(NamedTuple):
    owner: Dict[str, Any]
    schema: Schema
    identity: Optional[Dict[str, Any]]


def auth_source_for(ctx: Context, owner_id, schema: Schema) -> Optional[Schema]:
    if schema.auth_enabled:
        return schema
    return find_auth_source(ctx.db, owner_id)


def check_protection(ctx: Context, owner: Dict[str, Any], schema: Schema, request: Request) -> Optional[Dict[str, Any]]:
    """Returns the token claims when the verb is protected, ``None`` when it is open."""
    protection = schema.endpoint_protection
    if protection is None or not protection.requires(request.method):
        return None

    source = auth_source_for(ctx, owner["_id"], schema)
    if source is None:
        raise AuthError("Authentication required but no auth system configured")
    token = bearer_token(request)
    return verify_token(source, owner["_id"], token, require_secret(source))


def collection_access(collection: str, request: Request,
                      owner: Dict[str, Any] = Depends(api_user),
                      ctx: Context = Depends(get_context)) -> CollectionAccess:
    schema = require_collection_schema(ctx.db, owner["_id"], collection)
    identity = check_protection(ctx, owner, schema, request)
    if identity is not None:
        request.state.schema_user_id = identity.get("schema_user_id")
        request.state.schema_id = identity.get("schema_id")
    return CollectionAccess(owner, schema, identity)
