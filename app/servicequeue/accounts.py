"""
Account helpers shared by the admin, customer-admin and settings handlers:
uniqueness checks and generated login/company codes.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from app.servicequeue.models import Company, User
from app.servicequeue.utils import generate_unique_code

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_code(value: str | None) -> str:
    return (value or "").strip().upper()


def email_taken(s: "Session", email: str, *, exclude_user_id: int | None = None) -> bool:
    q = s.query(User.id).filter(User.email == normalize_email(email))
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.first() is not None


def login_code_taken(s: "Session", code: str, *, exclude_user_id: int | None = None) -> bool:
    q = s.query(User.id).filter(User.login_code == normalize_code(code))
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.first() is not None


def company_code_taken(s: "Session", code: str) -> bool:
    # company codes double as the primary customer_admin's login code
    code = normalize_code(code)
    if s.query(Company.id).filter(Company.company_code == code).first() is not None:
        return True
    return login_code_taken(s, code)


def new_login_code(s: "Session") -> str:
    return generate_unique_code(lambda c: login_code_taken(s, c))


def new_company_code(s: "Session") -> str:
    return generate_unique_code(lambda c: company_code_taken(s, c))


def has_created_requests(s: "Session", user_id: int) -> bool:
    from app.servicequeue.modules.service_requests.models import ServiceRequest

    return s.query(ServiceRequest.id).filter(ServiceRequest.assigned_by_id == user_id).first() is not None
