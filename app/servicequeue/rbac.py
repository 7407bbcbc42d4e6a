from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.servicequeue.auth import resolve_user
from app.servicequeue.constants import ALL_ROLES, MANAGER_ROLES
from app.servicequeue.models import User


def is_manager(user: User | None) -> bool:
    return bool(user and user.role in MANAGER_ROLES)


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Admit callers whose role is in ``roles``.
    No valid token -> 401; valid token for another role -> 403.
    """
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user, authenticated = resolve_user(roles)
            if user is None:
                if authenticated:
                    abort(403, description="Insufficient permissions")
                abort(401, description="Authentication required")
            g.current_user = user
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_role(*ALL_ROLES)(fn)


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u
