"""
Schema registry

Owns the "schemas" collection: validation of schema mutations, soft delete
with reactivation on re-create, and the per-schema dynamic-auth secret.
At most one active schema exists per (user_id, collection_name).
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import Context, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import AuthConfig, FieldType, Schema, SchemaField, SchemaIn
from security import generate_secret, parse_object_id

logger = logging.getLogger(__name__)

SCHEMAS = "schemas"
DEFAULT_TOKEN_EXPIRATION_HOURS = 24


# -------------------------------------------------------------------
# Lookups
# -------------------------------------------------------------------
def get_active_schema(db: Database, owner_id: ObjectId, collection_name: str) -> Optional[Schema]:
    doc = db[SCHEMAS].find_one({"user_id": owner_id, "collection_name": collection_name, "is_active": True})
    return Schema.from_doc(doc) if doc else None


def require_collection_schema(db: Database, owner_id: ObjectId, collection_name: str) -> Schema:
    schema = get_active_schema(db, owner_id, collection_name)
    if schema is None:
        raise NotFoundError(f"Schema not found for collection: {collection_name}")
    return schema


def list_schemas(db: Database, owner_id: ObjectId) -> List[Schema]:
    cursor = db[SCHEMAS].find({"user_id": owner_id, "is_active": True}).sort("created_at", ASCENDING)
    return [Schema.from_doc(doc) for doc in cursor]


def get_schema(db: Database, owner_id: ObjectId, schema_id: str) -> Schema:
    oid = parse_object_id(schema_id)
    if oid is None:
        raise ValidationError("Invalid schema ID")
    doc = db[SCHEMAS].find_one({"_id": oid, "user_id": owner_id, "is_active": True})
    if not doc:
        raise NotFoundError("Schema not found")
    return Schema.from_doc(doc)


def find_auth_source(db: Database, owner_id: ObjectId) -> Optional[Schema]:
    """Oldest active auth-enabled schema of the owner, used to protect collections without their own auth."""
    cursor = db[SCHEMAS].find(
        {"user_id": owner_id, "is_active": True, "auth_config.enabled": True}
    ).sort("created_at", ASCENDING).limit(1)
    for doc in cursor:
        return Schema.from_doc(doc)
    return None


# -------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------
RESERVED_FIELD_NAMES = ("_id", "id", "created_at", "updated_at")


def _validate_fields(db: Database, owner_id: ObjectId, fields: List[SchemaField]) -> List[SchemaField]:
    seen = set()
    for field in fields:
        if field.name in RESERVED_FIELD_NAMES:
            raise ValidationError(f"Field name is reserved: {field.name}")
        if field.name in seen:
            raise ValidationError(f"Duplicate field name: {field.name}")
        seen.add(field.name)

        if field.type != FieldType.RELATION:
            field.target = None
            continue
        if not field.target:
            raise ValidationError(f"Target collection is required for relation field: {field.name}")
        if get_active_schema(db, owner_id, field.target) is None:
            raise NotFoundError(f"Target collection '{field.target}' not found for relation field: {field.name}")
    return fields


def _validate_auth(auth: Optional[AuthConfig], collection_name: str,
                   fields: List[SchemaField]) -> Optional[AuthConfig]:
    if auth is None or not auth.enabled:
        return None

    by_name = {f.name: f for f in fields}
    login = auth.login_fields
    if not login.email_field:
        raise ValidationError("Email field is required for authentication")
    if not auth.password_field:
        raise ValidationError("Password field is required for authentication")

    checks = [("Email", login.email_field), ("Password", auth.password_field)]
    if login.username_field:
        checks.append(("Username", login.username_field))
    for label, name in checks:
        field = by_name.get(name)
        if field is None:
            raise ValidationError(f"{label} field '{name}' not found in schema")
        if field.type != FieldType.STRING:
            raise ValidationError(f"{label} field '{name}' must be of type string")

    if not auth.user_collection:
        auth.user_collection = f"{collection_name}_users"
    if not auth.token_expiration_hours:
        auth.token_expiration_hours = DEFAULT_TOKEN_EXPIRATION_HOURS
    return auth


def validate_schema(db: Database, owner_id: ObjectId, payload: SchemaIn) -> Tuple[List[SchemaField], Optional[AuthConfig]]:
    fields = _validate_fields(db, owner_id, payload.fields)
    auth = _validate_auth(payload.auth_config, payload.collection_name, fields)
    return fields, auth


def _require_tenant_database(owner: Dict[str, Any]) -> None:
    if not owner.get("mongodb_uri") or not owner.get("database_name"):
        raise ValidationError("Please first add a MongoDB connection")


def _encode_auth(auth: Optional[AuthConfig], previous_secret: Optional[str]) -> Optional[Dict[str, Any]]:
    if auth is None:
        return None
    doc = auth.model_dump(mode="json")
    doc["jwt_secret"] = previous_secret or generate_secret()
    return doc


def _previous_secret(doc: Dict[str, Any]) -> Optional[str]:
    return ((doc or {}).get("auth_config") or {}).get("jwt_secret")


# -------------------------------------------------------------------
# Mutations
# -------------------------------------------------------------------
def create_schema(ctx: Context, owner: Dict[str, Any], payload: SchemaIn) -> Tuple[Schema, bool]:
    """Returns the schema and whether an inactive one was reactivated."""
    _require_tenant_database(owner)
    owner_id = owner["_id"]
    fields, auth = validate_schema(ctx.db, owner_id, payload)
    name = payload.collection_name

    if ctx.db[SCHEMAS].find_one({"user_id": owner_id, "collection_name": name, "is_active": True}):
        raise ConflictError("Schema already exists for this collection")

    metadata = {"collection_name": name, "field_count": len(fields), "has_auth": auth is not None}
    fields_doc = [f.model_dump(mode="json") for f in fields]
    protection = payload.endpoint_protection.model_dump() if payload.endpoint_protection else None
    now = utcnow()

    inactive = ctx.db[SCHEMAS].find_one({"user_id": owner_id, "collection_name": name, "is_active": False})
    if inactive:
        ctx.db[SCHEMAS].update_one({"_id": inactive["_id"]}, {"$set": {
            "fields": fields_doc,
            "auth_config": _encode_auth(auth, _previous_secret(inactive)),
            "endpoint_protection": protection,
            "updated_at": now,
            "is_active": True,
        }})
        doc = ctx.db[SCHEMAS].find_one({"_id": inactive["_id"]})
        ctx.events.activity(owner_id, "update", f'Reactivated table "{name}"', "Database table schema reactivated",
                            "schema", str(doc["_id"]), {**metadata, "action": "reactivated"})
        return Schema.from_doc(doc), True

    doc = {
        "_id": ObjectId(),
        "user_id": owner_id,
        "collection_name": name,
        "fields": fields_doc,
        "auth_config": _encode_auth(auth, None),
        "endpoint_protection": protection,
        "created_at": now,
        "updated_at": now,
        "is_active": True,
    }
    ctx.db[SCHEMAS].insert_one(doc)
    ctx.events.activity(owner_id, "create", f'Created table "{name}"', "New database table schema created",
                        "schema", str(doc["_id"]), metadata)
    return Schema.from_doc(doc), False


def update_schema(ctx: Context, owner: Dict[str, Any], schema_id: str, payload: SchemaIn) -> Schema:
    _require_tenant_database(owner)
    owner_id = owner["_id"]
    existing = get_schema(ctx.db, owner_id, schema_id)
    fields, auth = validate_schema(ctx.db, owner_id, payload)
    name = payload.collection_name

    if name != existing.collection_name and ctx.db[SCHEMAS].find_one(
            {"user_id": owner_id, "collection_name": name, "is_active": True}):
        raise ConflictError("Schema already exists for this collection name")

    previous = existing.auth_config.jwt_secret if existing.auth_config else None
    result = ctx.db[SCHEMAS].update_one({"_id": existing.oid, "is_active": True}, {"$set": {
        "collection_name": name,
        "fields": [f.model_dump(mode="json") for f in fields],
        "auth_config": _encode_auth(auth, previous),
        "endpoint_protection": payload.endpoint_protection.model_dump() if payload.endpoint_protection else None,
        "updated_at": utcnow(),
    }})
    if result.matched_count == 0:
        raise NotFoundError("Schema not found")

    updated = get_schema(ctx.db, owner_id, schema_id)
    ctx.events.activity(owner_id, "update", f'Updated table "{name}"', "Database table schema updated",
                        "schema", updated.id, {"collection_name": name, "field_count": len(fields),
                                               "has_auth": auth is not None, "action": "updated"})
    return updated


def delete_schema(ctx: Context, owner: Dict[str, Any], schema_id: str) -> None:
    owner_id = owner["_id"]
    schema = get_schema(ctx.db, owner_id, schema_id)
    result = ctx.db[SCHEMAS].update_one(
        {"_id": schema.oid, "is_active": True},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Schema not found")

    if schema.auth_enabled:
        # Other collections were protected by this auth system
        try:
            ctx.db[SCHEMAS].update_many(
                {
                    "user_id": owner_id,
                    "is_active": True,
                    "_id": {"$ne": schema.oid},
                    "$or": [
                        {"endpoint_protection.get": True},
                        {"endpoint_protection.post": True},
                        {"endpoint_protection.put": True},
                        {"endpoint_protection.delete": True},
                    ],
                },
                {"$set": {"endpoint_protection": None, "updated_at": utcnow()}},
            )
        except PyMongoError as e:
            logger.warning("protection_cascade_failed schema=%s error=%s", schema.id, e)

    ctx.events.activity(owner_id, "delete", f'Deleted table "{schema.collection_name}"',
                        "Database table schema deleted", "schema", schema.id,
                        {"collection_name": schema.collection_name})


def rotate_secret(ctx: Context, owner: Dict[str, Any], schema_id: str) -> Schema:
    """Invalidates every outstanding dynamic-auth token of the schema."""
    schema = get_schema(ctx.db, owner["_id"], schema_id)
    if not schema.auth_enabled:
        raise ValidationError("Authentication is not enabled for this schema")
    ctx.db[SCHEMAS].update_one(
        {"_id": schema.oid},
        {"$set": {"auth_config.jwt_secret": generate_secret(), "updated_at": utcnow()}},
    )
    ctx.events.activity(owner["_id"], "security", f'Rotated auth secret of "{schema.collection_name}"',
                        "All issued tokens for this collection were invalidated", "schema", schema.id)
    return get_schema(ctx.db, owner["_id"], schema_id)


def ensure_secret(db: Database, schema: Schema) -> str:
    """Schemas written before secrets were generated eagerly get one here, at most once."""
    if schema.auth_config.jwt_secret:
        return schema.auth_config.jwt_secret
    db[SCHEMAS].update_one(
        {"_id": schema.oid, "auth_config.jwt_secret": {"$in": [None, ""]}},
        {"$set": {"auth_config.jwt_secret": generate_secret()}},
    )
    doc = db[SCHEMAS].find_one({"_id": schema.oid})
    secret = _previous_secret(doc)
    schema.auth_config.jwt_secret = secret
    return secret
