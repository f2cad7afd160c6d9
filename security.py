"""
Platform identity: password hashing, platform JWTs, API keys and quota.

FastAPI dependencies resolving the caller:
- ``current_user``: platform bearer token (dashboard / schema management)
- ``admin_user``: ``current_user`` restricted to ``is_admin`` accounts
- ``api_user``: ``X-API-Key`` header (dynamic API), with monthly quota
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt  # PyJWT
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import bcrypt as _bcrypt

from config import BCRYPT_ROUNDS, DEFAULT_MONTHLY_QUOTA, JWT_EXPIRE_MIN, JWT_SECRET
from database import Context, as_utc, get_context
from errors import AuthError, ForbiddenError, QuotaExceededError

security = HTTPBearer(auto_error=False)
bcrypt_hasher = _bcrypt.using(rounds=BCRYPT_ROUNDS)


# -------------------------------------------------------------------
# Hashing
# -------------------------------------------------------------------
def hash_password(password: str) -> str:
    return bcrypt_hasher.hash(password)


def verify_password(password: str, pwd_hash: Optional[str]) -> bool:
    if not pwd_hash:
        return False
    try:
        return bcrypt_hasher.verify(password, pwd_hash)
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def generate_secret() -> str:
    return secrets.token_hex(32)


generate_api_key = generate_secret


# -------------------------------------------------------------------
# JWT
# -------------------------------------------------------------------
def create_jwt(payload: dict, secret: str = JWT_SECRET, minutes: int = JWT_EXPIRE_MIN):
    """Returns ``(token, expires_at)``."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=minutes)
    to_encode = {**payload, "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    token = jwt.encode(to_encode, secret, algorithm="HS256")
    return token, exp


def decode_jwt(token: str, secret: str = JWT_SECRET) -> dict:
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")


def bearer_token(request: Request) -> str:
    """Extracts the raw token from ``Authorization: Bearer <token>``."""
    header = request.headers.get("Authorization")
    if not header:
        raise AuthError("Authorization header required")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Bearer token required")
    return token.strip()


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def issue_platform_token(user: Dict[str, Any]) -> str:
    token, _ = create_jwt({
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
    })
    return token


def _user_from_token(token: str, ctx: Context) -> Dict[str, Any]:
    data = decode_jwt(token)
    user_id = parse_object_id(data.get("sub"))
    if user_id is None:
        raise AuthError("Invalid token")
    user = ctx.db["users"].find_one({"_id": user_id, "is_active": True})
    if not user:
        raise AuthError("Unauthorized")
    return user


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                 ctx: Context = Depends(get_context)) -> Dict[str, Any]:
    if credentials is None:
        raise AuthError("Authorization header required")
    return _user_from_token(credentials.credentials, ctx)


def current_user_or_query_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                                token: Optional[str] = Query(None),
                                ctx: Context = Depends(get_context)) -> Dict[str, Any]:
    """Docs pages are opened directly in a browser, so ``?token=`` is accepted too."""
    if credentials is not None:
        return _user_from_token(credentials.credentials, ctx)
    if token:
        return _user_from_token(token, ctx)
    raise AuthError("Unauthorized")


def admin_user(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    if not user.get("is_admin", False):
        raise ForbiddenError("Admin access required")
    return user


# -------------------------------------------------------------------
# API key + monthly quota
# -------------------------------------------------------------------
def next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def reset_quota_if_due(ctx: Context, user: Dict[str, Any]) -> bool:
    usage = user.setdefault("api_usage", {})
    now = datetime.now(timezone.utc)
    reset_at = as_utc(usage.get("quota_reset_at"))
    if reset_at is not None and now < reset_at:
        return False
    next_reset = next_month_start(now)
    ctx.db["users"].update_one(
        {"_id": user["_id"]},
        {"$set": {"api_usage.used_this_month": 0, "api_usage.quota_reset_at": next_reset}},
    )
    usage["used_this_month"] = 0
    usage["quota_reset_at"] = next_reset
    return True


def api_user(request: Request,
             x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
             ctx: Context = Depends(get_context)) -> Dict[str, Any]:
    if not x_api_key:
        raise AuthError("API key required")
    user = ctx.db["users"].find_one({"api_key": x_api_key, "is_active": True})
    if not user:
        raise AuthError("Invalid API key")

    reset_quota_if_due(ctx, user)
    usage = user["api_usage"]
    used = usage.get("used_this_month", 0)
    limit = usage.get("monthly_quota", DEFAULT_MONTHLY_QUOTA)
    if used >= limit:
        raise QuotaExceededError(
            "API quota exceeded",
            message="You have reached your monthly API quota limit. Please upgrade your plan "
                    "or wait until next month for quota reset.",
            quota_info={"used": used, "limit": limit},
        )

    ctx.events.emit("api_request", user_id=user["_id"], path=request.url.path, method=request.method,
                    user_agent=request.headers.get("User-Agent"))
    return user
