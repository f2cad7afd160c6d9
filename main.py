import logging
import math
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

import dynamic_auth
import registry
from api_docs import build_api_docs, request_scheme
from config import DEFAULT_MONTHLY_QUOTA, LOG_LEVEL, PORT
from database import Context, close_context, create_document, get_context, get_documents, utcnow
from errors import APIError, AuthError, ConflictError, NotFoundError, ValidationError
from protection import CollectionAccess, collection_access
from relations import build_population_pipeline, existence_checker, plan_relations
from schemas import (APIUsage, DynamicLoginIn, DynamicSignupIn, MongoURIIn, SchemaIn, SigninIn, SignupIn,
                     ToggleStatusIn, User)
from security import (admin_user, api_user, bearer_token, current_user, current_user_or_query_token,
                      generate_api_key, hash_password, issue_platform_token, next_month_start, parse_object_id,
                      reset_quota_if_due, verify_password)
from shaping import shape, update_set
from visibility import jsonable, project, public_fields

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_context()


app = FastAPI(title="SchemaCraft API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------
# Error rendering
# -------------------------------------------------------------------
@app.exception_handler(APIError)
def handle_api_error(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error("request_failed path=%s status=%s error=%s", request.url.path, exc.status_code, exc.error)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request data"
    if errors:
        first = errors[0]
        location = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(PyMongoError)
def handle_database_error(request: Request, exc: PyMongoError):
    logger.exception("database_error path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Database error"})


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def user_out(user: Dict[str, Any]) -> Dict[str, Any]:
    return jsonable({
        "id": user["_id"],
        "name": user.get("name"),
        "email": user.get("email"),
        "api_key": user.get("api_key"),
        "mongodb_uri": user.get("mongodb_uri"),
        "database_name": user.get("database_name"),
        "is_admin": user.get("is_admin", False),
        "is_active": user.get("is_active", True),
        "has_password": bool(user.get("password")),
        "api_usage": user.get("api_usage") or {},
        "last_login": user.get("last_login"),
        "created_at": user.get("created_at"),
    })


def record_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return jsonable(doc)


def page_params(page: int, limit: int, default_limit: int = 10):
    page = max(page, 1)
    if limit < 1:
        limit = default_limit
    return page, min(limit, 100)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if total else 0}


def document_id(value: str) -> ObjectId:
    oid = parse_object_id(value)
    if oid is None:
        raise ValidationError("Invalid document ID")
    return oid


# -------------------------------------------------------------------
# Root + health
# -------------------------------------------------------------------
@app.get("/")
def root():
    return {"app": "SchemaCraft API", "status": "ok", "version": app.version}


@app.head("/")
def root_head():
    return {}


@app.get("/health")
def health():
    return {"status": "healthy", "time": utcnow()}


# -------------------------------------------------------------------
# Platform accounts
# -------------------------------------------------------------------
@app.post("/auth/signup", status_code=201)
def signup(data: SignupIn, ctx: Context = Depends(get_context)):
    if ctx.db["users"].find_one({"email": data.email}):
        raise ConflictError("User with this email already exists")

    user = User(
        name=data.name,
        email=data.email,
        password=hash_password(data.password),
        api_key=generate_api_key(),
        api_usage=APIUsage(monthly_quota=DEFAULT_MONTHLY_QUOTA, quota_reset_at=next_month_start(utcnow())),
    )
    user_id = ObjectId(create_document(ctx.db, "users", user))
    doc = ctx.db["users"].find_one({"_id": user_id})

    ctx.events.activity(user_id, "auth", "Account created", "New platform account registered", "user", str(user_id))
    ctx.events.notify(user_id, "Welcome to SchemaCraft",
                      f"Hello {data.name}, connect your MongoDB database to start creating tables.", "success")
    return {"user": user_out(doc), "token": issue_platform_token(doc)}


@app.post("/auth/signin")
def signin(data: SigninIn, ctx: Context = Depends(get_context)):
    user = ctx.db["users"].find_one({"email": data.email, "is_active": True})
    if not user or not verify_password(data.password, user.get("password")):
        raise AuthError("Invalid credentials")

    now = utcnow()
    ctx.db["users"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    ctx.events.activity(user["_id"], "login", "Signed in", "User signed in with email and password", "user",
                        str(user["_id"]))
    return {"user": user_out(user), "token": issue_platform_token(user)}


@app.get("/auth/me")
def me(user: Dict[str, Any] = Depends(current_user)):
    return {"user": user_out(user)}


@app.put("/auth/mongodb-uri")
def update_mongodb_uri(data: MongoURIIn, user: Dict[str, Any] = Depends(current_user),
                       ctx: Context = Depends(get_context)):
    try:
        ctx.tenants.test_connection(data.mongodb_uri, data.database_name)
    except PyMongoError as e:
        logger.warning("mongodb_uri_rejected user=%s error=%s", user["_id"], e)
        ctx.events.notify(user["_id"], "MongoDB Connection Failed",
                          f"Could not connect to database '{data.database_name}'.", "error")
        raise ValidationError(f"Failed to connect to MongoDB: {e}")

    ctx.db["users"].update_one({"_id": user["_id"]}, {"$set": {
        "mongodb_uri": data.mongodb_uri,
        "database_name": data.database_name,
        "updated_at": utcnow(),
    }})
    ctx.events.activity(user["_id"], "connect", "Connected MongoDB", f"Database '{data.database_name}' connected",
                        "database", data.database_name)
    ctx.events.notify(user["_id"], "MongoDB Connected",
                      f"Your database '{data.database_name}' is connected and ready.", "success")
    return {"message": "MongoDB URI updated successfully"}


@app.post("/auth/test-mongodb")
def test_mongodb(data: MongoURIIn, user: Dict[str, Any] = Depends(current_user),
                 ctx: Context = Depends(get_context)):
    try:
        ctx.tenants.test_connection(data.mongodb_uri, data.database_name)
    except PyMongoError as e:
        raise ValidationError(f"Failed to connect to MongoDB: {e}", connected=False)
    return {"message": "MongoDB connection successful", "connected": True}


@app.post("/user/regenerate-api-key")
def regenerate_api_key(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    api_key = generate_api_key()
    ctx.db["users"].update_one({"_id": user["_id"]}, {"$set": {"api_key": api_key, "updated_at": utcnow()}})
    ctx.events.activity(user["_id"], "security", "Regenerated API key", "Previous API key is no longer valid",
                        "user", str(user["_id"]))
    return {"message": "API key regenerated successfully", "api_key": api_key}


@app.get("/user/api-usage")
def api_usage(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    reset_quota_if_due(ctx, user)
    usage = user["api_usage"]
    used = usage.get("used_this_month", 0)
    quota = usage.get("monthly_quota", DEFAULT_MONTHLY_QUOTA)
    return jsonable({
        **usage,
        "remaining": max(quota - used, 0),
        "usage_percent": round(used / quota * 100, 1) if quota else 0,
    })


@app.get("/user/dashboard")
def dashboard(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    schemas = registry.list_schemas(ctx.db, user["_id"])
    activities = get_documents(ctx.db, "activities", {"user_id": user["_id"]}, limit=5)
    summary = user_out(user)
    summary["mongodb_uri"] = bool(user.get("mongodb_uri"))
    return {
        "user": summary,
        "stats": {
            "total_schemas": len(schemas),
            "api_usage": jsonable(user.get("api_usage") or {}),
            "has_custom_db": bool(user.get("mongodb_uri")),
        },
        "schemas": [s.model_dump(mode="json") for s in schemas],
        "recent_activities": [record_out(a) for a in activities],
    }


# -------------------------------------------------------------------
# Activities + notifications
# -------------------------------------------------------------------
@app.get("/activities")
def list_activities(page: int = 1, limit: int = 20, user: Dict[str, Any] = Depends(current_user),
                    ctx: Context = Depends(get_context)):
    page, limit = page_params(page, limit, 20)
    query = {"user_id": user["_id"]}
    items = get_documents(ctx.db, "activities", query, limit=limit, skip=(page - 1) * limit)
    total = ctx.db["activities"].count_documents(query)
    return {"activities": [record_out(a) for a in items], "pagination": pagination(page, limit, total)}


@app.get("/notifications")
def list_notifications(page: int = 1, limit: int = 20, user: Dict[str, Any] = Depends(current_user),
                       ctx: Context = Depends(get_context)):
    page, limit = page_params(page, limit, 20)
    query = {"user_id": user["_id"]}
    items = get_documents(ctx.db, "notifications", query, limit=limit, skip=(page - 1) * limit)
    total = ctx.db["notifications"].count_documents(query)
    return {"notifications": [record_out(n) for n in items], "pagination": pagination(page, limit, total)}


@app.get("/notifications/unread-count")
def unread_count(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    return {"unread_count": ctx.db["notifications"].count_documents({"user_id": user["_id"], "is_read": False})}


@app.put("/notifications/read-all")
def mark_all_read(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    ctx.db["notifications"].update_many({"user_id": user["_id"], "is_read": False},
                                        {"$set": {"is_read": True, "updated_at": utcnow()}})
    return {"message": "All notifications marked as read"}


@app.put("/notifications/{notification_id}/read")
def mark_read(notification_id: str, user: Dict[str, Any] = Depends(current_user),
              ctx: Context = Depends(get_context)):
    oid = parse_object_id(notification_id)
    if oid is None:
        raise ValidationError("Invalid notification ID")
    result = ctx.db["notifications"].update_one({"_id": oid, "user_id": user["_id"]},
                                                {"$set": {"is_read": True, "updated_at": utcnow()}})
    if result.matched_count == 0:
        raise NotFoundError("Notification not found")
    return {"message": "Notification marked as read"}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, user: Dict[str, Any] = Depends(current_user),
                        ctx: Context = Depends(get_context)):
    oid = parse_object_id(notification_id)
    if oid is None:
        raise ValidationError("Invalid notification ID")
    if ctx.db["notifications"].delete_one({"_id": oid, "user_id": user["_id"]}).deleted_count == 0:
        raise NotFoundError("Notification not found")
    return {"message": "Notification deleted successfully"}


# -------------------------------------------------------------------
# Schema registry
# -------------------------------------------------------------------
@app.post("/schemas", status_code=201)
def create_schema(data: SchemaIn, user: Dict[str, Any] = Depends(current_user),
                  ctx: Context = Depends(get_context)):
    schema, _ = registry.create_schema(ctx, user, data)
    return schema.model_dump(mode="json")


@app.get("/schemas")
def list_schemas(user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    return [s.model_dump(mode="json") for s in registry.list_schemas(ctx.db, user["_id"])]


@app.get("/schemas/{schema_id}")
def get_schema(schema_id: str, user: Dict[str, Any] = Depends(current_user), ctx: Context = Depends(get_context)):
    return registry.get_schema(ctx.db, user["_id"], schema_id).model_dump(mode="json")


@app.put("/schemas/{schema_id}")
def update_schema(schema_id: str, data: SchemaIn, user: Dict[str, Any] = Depends(current_user),
                  ctx: Context = Depends(get_context)):
    return registry.update_schema(ctx, user, schema_id, data).model_dump(mode="json")


@app.delete("/schemas/{schema_id}")
def delete_schema(schema_id: str, user: Dict[str, Any] = Depends(current_user),
                  ctx: Context = Depends(get_context)):
    registry.delete_schema(ctx, user, schema_id)
    return {"message": "Schema deleted successfully"}


@app.post("/schemas/{schema_id}/rotate-secret")
def rotate_schema_secret(schema_id: str, user: Dict[str, Any] = Depends(current_user),
                         ctx: Context = Depends(get_context)):
    schema = registry.rotate_secret(ctx, user, schema_id)
    return {"message": "Secret rotated, existing tokens are no longer valid", "schema": schema.model_dump(mode="json")}


# -------------------------------------------------------------------
# Administration
# -------------------------------------------------------------------
def admin_target(ctx: Context, user_id: str) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    if oid is None:
        raise ValidationError("Invalid user ID")
    target = ctx.db["users"].find_one({"_id": oid})
    if not target:
        raise NotFoundError("User not found")
    return target


def quota_reset() -> Dict[str, Any]:
    return {"api_usage.used_this_month": 0, "api_usage.quota_reset_at": next_month_start(utcnow())}


@app.get("/admin/users")
def admin_list_users(page: int = 1, limit: int = 20, admin: Dict[str, Any] = Depends(admin_user),
                     ctx: Context = Depends(get_context)):
    page, limit = page_params(page, limit, 20)
    users = get_documents(ctx.db, "users", limit=limit, skip=(page - 1) * limit)
    total = ctx.db["users"].count_documents({})
    return {"users": [user_out(u) for u in users], "pagination": pagination(page, limit, total)}


@app.get("/admin/users/{user_id}")
def admin_get_user(user_id: str, admin: Dict[str, Any] = Depends(admin_user), ctx: Context = Depends(get_context)):
    target = admin_target(ctx, user_id)
    schemas = registry.list_schemas(ctx.db, target["_id"])
    return {"user": user_out(target), "schemas": [s.model_dump(mode="json") for s in schemas]}


@app.put("/admin/users/{user_id}/toggle-status")
def admin_toggle_status(user_id: str, data: ToggleStatusIn, admin: Dict[str, Any] = Depends(admin_user),
                        ctx: Context = Depends(get_context)):
    target = admin_target(ctx, user_id)
    if target["_id"] == admin["_id"]:
        raise ValidationError("You cannot change the status of your own account")
    ctx.db["users"].update_one({"_id": target["_id"]},
                               {"$set": {"is_active": data.is_active, "updated_at": utcnow()}})
    status = "activated" if data.is_active else "deactivated"
    ctx.events.activity(admin["_id"], "admin", f"User {status}", f"Account {target.get('email')} {status}",
                        "user", str(target["_id"]))
    return {"message": f"User {status} successfully"}


@app.post("/admin/users/{user_id}/revoke-api-key")
def admin_revoke_api_key(user_id: str, admin: Dict[str, Any] = Depends(admin_user),
                         ctx: Context = Depends(get_context)):
    target = admin_target(ctx, user_id)
    ctx.db["users"].update_one({"_id": target["_id"]}, {"$unset": {"api_key": ""}, "$set": {"updated_at": utcnow()}})
    ctx.events.activity(admin["_id"], "admin", "Revoked API key", f"API key of {target.get('email')} revoked",
                        "user", str(target["_id"]))
    ctx.events.notify(target["_id"], "API Key Revoked",
                      "Your API key was revoked by an administrator. Generate a new one to keep using the API.",
                      "warning")
    return {"message": "API key revoked successfully"}


@app.post("/admin/users/{user_id}/reset-quota")
def admin_reset_quota(user_id: str, admin: Dict[str, Any] = Depends(admin_user),
                      ctx: Context = Depends(get_context)):
    target = admin_target(ctx, user_id)
    ctx.db["users"].update_one({"_id": target["_id"]}, {"$set": quota_reset()})
    ctx.events.activity(admin["_id"], "admin", "Reset API quota", f"Monthly quota of {target.get('email')} reset",
                        "user", str(target["_id"]))
    return {"message": "User quota reset successfully"}


@app.post("/admin/reset-all-quota")
def admin_reset_all_quota(admin: Dict[str, Any] = Depends(admin_user), ctx: Context = Depends(get_context)):
    result = ctx.db["users"].update_many({}, {"$set": quota_reset()})
    logger.info("quota_reset_all admin=%s modified=%s", admin["_id"], result.modified_count)
    ctx.events.activity(admin["_id"], "admin", "Reset all API quotas", f"{result.modified_count} accounts reset",
                        "user")
    return {"message": "All user quotas reset successfully", "modified": result.modified_count}


@app.get("/admin/stats")
def admin_stats(admin: Dict[str, Any] = Depends(admin_user), ctx: Context = Depends(get_context)):
    total_users = ctx.db["users"].count_documents({})
    active_users = ctx.db["users"].count_documents({"is_active": True})
    totals = list(ctx.db["users"].aggregate([
        {"$group": {"_id": None, "requests": {"$sum": "$api_usage.total_requests"}}},
    ]))
    return {
        "total_users": total_users,
        "active_users": active_users,
        "inactive_users": total_users - active_users,
        "total_schemas": ctx.db[registry.SCHEMAS].count_documents({"is_active": True}),
        "total_api_requests": totals[0]["requests"] if totals else 0,
    }


@app.get("/admin/api-usage")
def admin_api_usage(threshold: int = 80, admin: Dict[str, Any] = Depends(admin_user),
                    ctx: Context = Depends(get_context)):
    if not 0 <= threshold <= 100:
        threshold = 80

    high_usage, exceeded = [], []
    total_usage = total_quota = users = 0
    for user in ctx.db["users"].find({"is_active": True}):
        users += 1
        usage = user.get("api_usage") or {}
        used = usage.get("used_this_month", 0)
        quota = usage.get("monthly_quota", DEFAULT_MONTHLY_QUOTA)
        percent = round(used / quota * 100, 1) if quota else 100.0
        info = jsonable({
            "id": user["_id"],
            "name": user.get("name"),
            "email": user.get("email"),
            "used_this_month": used,
            "monthly_quota": quota,
            "usage_percentage": percent,
            "last_request": usage.get("last_request"),
        })
        total_usage += used
        total_quota += quota
        if used >= quota:
            exceeded.append(info)
        elif percent >= threshold:
            high_usage.append(info)

    return {
        "overall_stats": {
            "total_usage": total_usage,
            "total_quota": total_quota,
            "usage_percentage": round(total_usage / total_quota * 100, 1) if total_quota else 0,
            "total_users": users,
            "high_usage_users": len(high_usage),
            "quota_exceeded_users": len(exceeded),
        },
        "high_usage_users": high_usage,
        "quota_exceeded_users": exceeded,
        "threshold_percentage": threshold,
    }


# -------------------------------------------------------------------
# API documentation
# -------------------------------------------------------------------
@app.get("/user/api-docs")
def api_docs(request: Request, user: Dict[str, Any] = Depends(current_user_or_query_token),
             ctx: Context = Depends(get_context)):
    schemas = registry.list_schemas(ctx.db, user["_id"])
    host = request.headers.get("host") or request.url.netloc
    return build_api_docs(user, schemas, host, request_scheme(request))


@app.get("/user/swagger-ui")
def swagger_ui(token: Optional[str] = Query(None), user: Dict[str, Any] = Depends(current_user_or_query_token)):
    url = "/user/api-docs" + (f"?token={token}" if token else "")
    return get_swagger_ui_html(openapi_url=url, title=f"{user.get('name') or 'SchemaCraft'} API Documentation")


# -------------------------------------------------------------------
# Dynamic auth (always open, API key only)
# -------------------------------------------------------------------
@app.post("/api/{collection}/auth/signup", status_code=201)
def dynamic_signup(collection: str, data: DynamicSignupIn, owner: Dict[str, Any] = Depends(api_user),
                   ctx: Context = Depends(get_context)):
    return dynamic_auth.signup(ctx, owner, collection, data.data)


@app.post("/api/{collection}/auth/login")
def dynamic_login(collection: str, data: DynamicLoginIn, owner: Dict[str, Any] = Depends(api_user),
                  ctx: Context = Depends(get_context)):
    return dynamic_auth.login(ctx, owner, collection, data.identifier, data.password)


@app.get("/api/{collection}/auth/validate")
def dynamic_validate(collection: str, request: Request, owner: Dict[str, Any] = Depends(api_user),
                     ctx: Context = Depends(get_context)):
    return dynamic_auth.validate_token(ctx, owner, collection, bearer_token(request))


# -------------------------------------------------------------------
# Dynamic CRUD
# -------------------------------------------------------------------
@app.post("/api/{collection}", status_code=201)
def create_item(payload: Dict[str, Any] = Body(...), access: CollectionAccess = Depends(collection_access),
                ctx: Context = Depends(get_context)):
    owner, schema = access.owner, access.schema
    tenant = ctx.tenant_database(owner)
    targets = plan_relations(ctx.db, owner["_id"], schema)
    data = shape(schema, payload, exists=existence_checker(tenant, owner["_id"], targets))

    now = utcnow()
    doc_id = create_document(tenant, schema.collection_name, {
        "user_id": owner["_id"],
        "data": data,
        "created_at": now,
        "updated_at": now,
    })
    return {
        "message": "Document created successfully",
        "id": doc_id,
        "created_at": now,
        "updated_at": now,
        **public_fields(schema, data),
    }


@app.get("/api/{collection}")
def list_items(page: int = 1, limit: int = 10, access: CollectionAccess = Depends(collection_access),
               ctx: Context = Depends(get_context)):
    owner, schema = access.owner, access.schema
    page, limit = page_params(page, limit)
    tenant = ctx.tenant_database(owner)
    targets = plan_relations(ctx.db, owner["_id"], schema)

    match = {"user_id": owner["_id"]}
    pipeline = build_population_pipeline(match, targets, sort={"created_at": DESCENDING},
                                         skip=(page - 1) * limit, limit=limit)
    rows = tenant[schema.collection_name].aggregate(pipeline)
    total = tenant[schema.collection_name].count_documents(match)
    return {
        "data": [project(row, schema, targets) for row in rows],
        "pagination": pagination(page, limit, total),
    }


@app.get("/api/{collection}/{item_id}")
def get_item(item_id: str, access: CollectionAccess = Depends(collection_access),
             ctx: Context = Depends(get_context)):
    owner, schema = access.owner, access.schema
    oid = document_id(item_id)
    tenant = ctx.tenant_database(owner)
    targets = plan_relations(ctx.db, owner["_id"], schema)

    pipeline = build_population_pipeline({"_id": oid, "user_id": owner["_id"]}, targets)
    rows: List[Dict[str, Any]] = list(tenant[schema.collection_name].aggregate(pipeline))
    if not rows:
        raise NotFoundError("Document not found")
    return project(rows[0], schema, targets)


@app.put("/api/{collection}/{item_id}")
def update_item(item_id: str, payload: Dict[str, Any] = Body(...),
                access: CollectionAccess = Depends(collection_access), ctx: Context = Depends(get_context)):
    owner, schema = access.owner, access.schema
    oid = document_id(item_id)
    tenant = ctx.tenant_database(owner)
    targets = plan_relations(ctx.db, owner["_id"], schema)
    data = shape(schema, payload, exists=existence_checker(tenant, owner["_id"], targets), partial=True)

    now = utcnow()
    result = tenant[schema.collection_name].update_one(
        {"_id": oid, "user_id": owner["_id"]},
        {"$set": {**update_set(data), "updated_at": now}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Document not found")
    return {"message": "Document updated successfully", "updated_at": now}


@app.delete("/api/{collection}/{item_id}")
def delete_item(item_id: str, access: CollectionAccess = Depends(collection_access),
                ctx: Context = Depends(get_context)):
    owner, schema = access.owner, access.schema
    oid = document_id(item_id)
    tenant = ctx.tenant_database(owner)
    if tenant[schema.collection_name].delete_one({"_id": oid, "user_id": owner["_id"]}).deleted_count == 0:
        raise NotFoundError("Document not found")
    return {"message": "Document deleted successfully"}


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
@app.get("/test")
def test_database(ctx: Context = Depends(get_context)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database_name"] = ctx.db.name
        collections = ctx.db.list_collection_names()
        response["collections"] = collections[:10]
        response["connection_status"] = "Connected"
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["event_queue"] = "✅ Inline" if ctx.events.inline else "✅ Worker"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
