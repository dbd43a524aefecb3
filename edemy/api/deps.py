"""Shared route dependencies: current user, role gates and the auth rate limit."""
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request

from edemy.config import settings
from edemy.core.errors import ForbiddenError, TooManyRequestsError, UnauthorizedError
from edemy.repositories.redis_repository import RedisRepository
from edemy.repositories.user_repository import UserRepository
from edemy.utils.security import utc_timestamp

users = UserRepository()
limiter = RedisRepository()


def _load_user(request: Request) -> Optional[Dict[str, Any]]:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        return None
    user = users.find_one(user_id)
    if not user:
        raise UnauthorizedError("User no longer exists", "USER_NOT_FOUND")
    if not user.get("isActive", True):
        raise UnauthorizedError("Your account has been deactivated", "ACCOUNT_DEACTIVATED")
    changed_at = (user.get("security") or {}).get("passwordChangedAt")
    claims = request.state.token_claims or {}
    if changed_at and int(claims.get("iat", 0)) < utc_timestamp(changed_at):
        raise UnauthorizedError("Password recently changed, please log in again", "PASSWORD_CHANGED")
    return user


def get_current_user(request: Request) -> Dict[str, Any]:
    user = _load_user(request)
    if user is None:
        message, code = getattr(request.state, "auth_error", None) or ("Not authorized, no token", "NO_TOKEN")
        raise UnauthorizedError(message, code)
    return user


def get_optional_user(request: Request) -> Optional[Dict[str, Any]]:
    try:
        return _load_user(request)
    except UnauthorizedError:
        return None


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise ForbiddenError(
                f"Role '{user.get('role')}' is not authorized to access this resource", "INSUFFICIENT_ROLE"
            )
        return user

    return checker


require_instructor = require_roles("instructor", "admin")
require_admin = require_roles("admin")


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def auth_rate_limit(request: Request) -> None:
    """Ventana fija por IP sobre los endpoints de autenticación."""
    bucket = f"auth:{client_ip(request)}"
    count = limiter.hit(bucket, settings.AUTH_RATE_WINDOW_SECONDS)
    if count > settings.AUTH_RATE_LIMIT:
        raise TooManyRequestsError(
            "Too many authentication attempts, please try again later",
            "RATE_LIMITED",
            retryAfter=limiter.ttl(bucket),
        )
