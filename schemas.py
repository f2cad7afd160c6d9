"""
Database Schemas for SchemaCraft

Platform collections:
- "users": platform accounts (owners), API keys, tenant database settings
- "schemas": user-defined collection definitions driving the dynamic API
- "activities" / "notifications": written by the event bus

Dynamic collections live in each owner's own database and are described
at runtime by ``Schema`` documents, not by classes in this module.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, EmailStr, Field


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"
    RELATION = "relation"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class SchemaField(BaseModel):
    name: str = Field(..., min_length=1, description="Field name, unique within the schema")
    type: FieldType
    visibility: Visibility = Visibility.PUBLIC
    required: bool = False
    default: Any = None
    description: Optional[str] = None
    target: Optional[str] = Field(None, description="Target collection, only for relation fields")

    @property
    def is_relation(self) -> bool:
        return self.type == FieldType.RELATION and bool(self.target)

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC


class AuthFieldConfig(BaseModel):
    email_field: str = ""
    username_field: Optional[str] = None
    allow_both: bool = False


class AuthConfig(BaseModel):
    enabled: bool = False
    user_collection: str = ""
    login_fields: AuthFieldConfig = Field(default_factory=AuthFieldConfig)
    password_field: str = ""
    response_fields: List[str] = Field(default_factory=list)
    token_expiration_hours: int = Field(24, ge=0)
    allow_signup: bool = True
    # Persisted on the schema document, never serialized to clients
    jwt_secret: Optional[str] = Field(None, exclude=True)

    def user_collection_for(self, collection_name: str) -> str:
        return self.user_collection or f"{collection_name}_users"


class EndpointProtection(BaseModel):
    get: bool = False
    post: bool = False
    put: bool = False
    delete: bool = False

    def requires(self, method: str) -> bool:
        return bool(getattr(self, method.lower(), False))

    def any(self) -> bool:
        return self.get or self.post or self.put or self.delete


class SchemaIn(BaseModel):
    collection_name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_-]*$", max_length=64)
    fields: List[SchemaField] = Field(..., min_length=1)
    auth_config: Optional[AuthConfig] = None
    endpoint_protection: Optional[EndpointProtection] = None


class Schema(BaseModel):
    """
    Collection: "schemas"
    """
    id: str
    user_id: str
    collection_name: str
    fields: List[SchemaField]
    auth_config: Optional[AuthConfig] = None
    endpoint_protection: Optional[EndpointProtection] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Schema":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user_id"]),
            collection_name=doc["collection_name"],
            fields=doc.get("fields") or [],
            auth_config=doc.get("auth_config"),
            endpoint_protection=doc.get("endpoint_protection"),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
            is_active=doc.get("is_active", True),
        )

    @property
    def oid(self) -> ObjectId:
        return ObjectId(self.id)

    @property
    def auth_enabled(self) -> bool:
        return self.auth_config is not None and self.auth_config.enabled

    @property
    def user_collection(self) -> str:
        return self.auth_config.user_collection_for(self.collection_name)


class APIUsage(BaseModel):
    total_requests: int = 0
    last_request: Optional[datetime] = None
    monthly_quota: int = 1000
    used_this_month: int = 0
    quota_reset_at: Optional[datetime] = None


class User(BaseModel):
    """
    Collection: "users"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    password: str = Field("", description="Password hash (bcrypt)")
    api_key: str = Field(..., description="Key for the X-API-Key header")
    mongodb_uri: Optional[str] = Field(None, description="Tenant MongoDB URI")
    database_name: Optional[str] = Field(None, description="Tenant database name")
    is_admin: bool = False
    is_active: bool = True
    last_login: Optional[datetime] = None
    api_usage: APIUsage = Field(default_factory=APIUsage)


ActivityType = Literal["create", "update", "delete", "api", "auth", "connect", "security", "login", "logout"]
NotificationType = Literal["info", "warning", "error", "success"]


# -------------------------------------------------------------------
# Request bodies
# -------------------------------------------------------------------
class SignupIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class SigninIn(BaseModel):
    email: EmailStr
    password: str


class MongoURIIn(BaseModel):
    mongodb_uri: str = Field(..., min_length=1)
    database_name: str = Field(..., min_length=1)


class DynamicSignupIn(BaseModel):
    data: Dict[str, Any]


class DynamicLoginIn(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email or username")
    password: str = Field(..., min_length=1)


class ToggleStatusIn(BaseModel):
    is_active: bool
