from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash

from app.servicequeue.accounts import email_taken, has_created_requests, normalize_email
from app.servicequeue.constants import MIN_PASSWORD_LENGTH, ROLE_SUPER_ADMIN
from app.servicequeue.models import Notification, User
from app.servicequeue.utils import is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class SettingsError(ValueError):
    pass


def validate_details_payload(payload: dict) -> list[str]:
    errors = []
    if not str(payload.get("firstName") or "").strip():
        errors.append("First name is required")
    if not str(payload.get("lastName") or "").strip():
        errors.append("Last name is required")
    if not is_valid_email(payload.get("email")):
        errors.append("Invalid email address")
    return errors


def validate_super_admin_payload(payload: dict) -> list[str]:
    errors = validate_details_payload(payload)
    if len(str(payload.get("password") or "")) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return errors


def create_super_admin(s: "Session", payload: dict) -> User:
    email = normalize_email(payload.get("email"))
    if email_taken(s, email):
        raise SettingsError("Email already in use")
    user = User(
        first_name=str(payload.get("firstName")).strip(),
        last_name=str(payload.get("lastName")).strip(),
        email=email,
        password_hash=generate_password_hash(str(payload.get("password"))),
        role=ROLE_SUPER_ADMIN,
        is_active=True,
    )
    s.add(user)
    s.flush()
    logger.info("Created super admin user_id=%s", user.id)
    return user


def delete_super_admin(s: "Session", user: User, actor: User) -> None:
    if user.id == actor.id:
        raise SettingsError("Cannot delete your own account")
    if user.role != ROLE_SUPER_ADMIN:
        raise SettingsError("User is not a super admin")
    if has_created_requests(s, user.id):
        raise SettingsError("Cannot delete a super admin who has created service requests.")
    s.query(Notification).filter(Notification.user_id == user.id).delete(synchronize_session=False)
    s.delete(user)
    s.flush()
    logger.info("Deleted super admin user_id=%s by user_id=%s", user.id, actor.id)


def change_password(actor: User, target: User, *, current_password: str, new_password: str) -> None:
    """``current_password`` is always checked against the caller's own password."""
    if not actor.password_hash or not check_password_hash(actor.password_hash, current_password or ""):
        raise SettingsError("Current password is incorrect")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise SettingsError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
    target.password_hash = generate_password_hash(new_password)
    target.updated_at = datetime.utcnow()


def update_own_details(s: "Session", user: User, payload: dict) -> None:
    email = normalize_email(payload.get("email"))
    if email != user.email and email_taken(s, email, exclude_user_id=user.id):
        raise SettingsError("Email already in use")
    user.first_name = str(payload.get("firstName")).strip()
    user.last_name = str(payload.get("lastName")).strip()
    user.email = email
    user.updated_at = datetime.utcnow()
    s.flush()
