from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from flask import Blueprint, abort, current_app, g, jsonify, request
from jose import JWTError, jwt
from werkzeug.security import check_password_hash

from app.servicequeue.constants import (
    AGENT_ROLES,
    ALL_AUTH_COOKIES,
    COOKIE_GENERIC,
    ROLE_COOKIES,
)
from app.servicequeue.db import db_session
from app.servicequeue.models import User
from app.servicequeue.serializers import serialize_user

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _attempts() -> dict[str, list[datetime]]:
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    attempts = _attempts()
    cutoff = datetime.utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    for key in list(attempts):
        recent = [t for t in attempts[key] if t > cutoff]
        if recent:
            attempts[key] = recent
        else:
            attempts.pop(key)
    return len(attempts.get(ip, ())) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _attempts()[ip].append(datetime.utcnow())


def cookie_name_for_role(role: str) -> str:
    return ROLE_COOKIES.get(role, COOKIE_GENERIC)


def issue_token(user: User) -> str:
    ttl = int(current_app.config.get("AUTH_TOKEN_TTL_HOURS") or 24)
    claims = {
        "userId": user.id,
        "role": user.role,
        "companyId": user.company_id,
        "email": user.email,
        "exp": datetime.utcnow() + timedelta(hours=ttl),
    }
    return jwt.encode(claims, current_app.config["SECRET_KEY"], algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"))


def decode_token(token: str | None) -> dict | None:
    if not token:
        return None
    try:
        return jwt.decode(
            token,
            current_app.config["SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except JWTError:
        return None


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def _user_from_claims(claims: dict | None) -> User | None:
    if not claims or claims.get("userId") is None:
        return None
    user = db_session().get(User, int(claims["userId"]))
    if not user or not user.is_active:
        return None
    return user


def resolve_user(roles: "Iterable[str] | None" = None) -> tuple[User | None, bool]:
    """
    Find the caller for an endpoint that admits ``roles`` (None = any role).

    Role-specific cookies are tried first, then the generic cookie and the bearer
    header. Returns (user, authenticated); authenticated is True when some valid
    token was presented even if its role is not admitted.
    """
    allowed = tuple(roles) if roles is not None else None
    candidates: list[str | None] = []
    if allowed is None:
        candidates.extend(request.cookies.get(name) for name in ALL_AUTH_COOKIES)
    else:
        for role in allowed:
            candidates.append(request.cookies.get(cookie_name_for_role(role)))
        candidates.append(request.cookies.get(COOKIE_GENERIC))
    candidates.append(_bearer_token())

    seen: set[str] = set()
    authenticated = False
    for token in candidates:
        if not token or token in seen:
            continue
        seen.add(token)
        user = _user_from_claims(decode_token(token))
        if user is None:
            continue
        authenticated = True
        if allowed is None or user.role in allowed:
            return user, True

    if not authenticated and allowed is not None:
        # A valid token held under another role's cookie still means "authenticated".
        for name in ALL_AUTH_COOKIES:
            token = request.cookies.get(name)
            if token and token not in seen and _user_from_claims(decode_token(token)):
                authenticated = True
                break
    return None, authenticated


def load_current_user() -> None:
    """
    Assigns a per-request request_id and resolves g.current_user from any auth cookie.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    try:
        g.current_user, _ = resolve_user(None)
    except Exception as e:
        current_app.logger.error("load_current_user DB error: %s", e)
        g.current_user = None


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _find_user(s, *, email: str | None = None, login_code: str | None = None) -> User | None:
    q = s.query(User)
    if email is not None:
        q = q.filter(User.email == email)
    if login_code is not None:
        q = q.filter(User.login_code == login_code)
    return q.one_or_none()


def _authenticate(s, payload: dict) -> tuple[User | None, str]:
    email = (payload.get("email") or "").strip().lower() or None
    password = payload.get("password") or None
    login_code = (payload.get("loginCode") or "").strip().upper() or None
    is_agent = bool(payload.get("isAgent"))

    if login_code and is_agent:
        user = _find_user(s, login_code=login_code)
        if not user or not user.is_active or user.role not in AGENT_ROLES or user.agent is None:
            return None, "Invalid agent login code"
        return user, ""
    if email and password:
        user = _find_user(s, email=email)
        if not user or not user.is_active or not user.password_hash or not check_password_hash(user.password_hash, password):
            return None, "Invalid email or password"
        return user, ""
    if email and login_code:
        user = _find_user(s, email=email, login_code=login_code)
        if not user or not user.is_active:
            return None, "Invalid email or login code"
        return user, ""
    if login_code:
        user = _find_user(s, login_code=login_code)
        if not user or not user.is_active:
            return None, "Invalid login code"
        return user, ""
    return None, ""


@bp.post("/login")
def login_post():
    payload = _json_body()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "Too many login attempts. Please wait 5 minutes."}), 429

    has_mode = payload.get("loginCode") or (payload.get("email") and (payload.get("password") or payload.get("loginCode")))
    if not has_mode:
        return (
            jsonify(
                {
                    "error": "Invalid request data",
                    "details": ["Either loginCode, email+password, or email+loginCode is required"],
                }
            ),
            400,
        )

    _record_attempt(ip)
    s = db_session()
    user, error = _authenticate(s, payload)
    if user is None:
        logger.info("Login failed (%s) ip=%s request_id=%s", error, ip, getattr(g, "request_id", None))
        return jsonify({"error": error or "Authentication failed"}), 401

    _attempts().pop(ip, None)
    cookie_name = cookie_name_for_role(user.role)
    resp = jsonify({"success": True, "user": serialize_user(user), "cookieName": cookie_name})
    resp.set_cookie(
        cookie_name,
        issue_token(user),
        max_age=int(current_app.config.get("AUTH_TOKEN_TTL_HOURS") or 24) * 3600,
        httponly=True,
        secure=bool(current_app.config.get("AUTH_COOKIE_SECURE")),
        samesite=current_app.config.get("AUTH_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    logger.info("Login ok user_id=%s role=%s", user.id, user.role)
    return resp


@bp.post("/logout")
def logout():
    role = (_json_body().get("role") or request.args.get("role") or "").strip()
    names = (cookie_name_for_role(role),) if role else ALL_AUTH_COOKIES
    resp = jsonify({"success": True, "message": "Logged out successfully"})
    for name in names:
        resp.delete_cookie(name, path="/")
    return resp


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if user is None:
        abort(401, description="Authentication required")
    data = serialize_user(user)
    data["company"] = {"id": user.company.id, "companyName": user.company.company_name} if user.company else None
    return jsonify({"user": data})
