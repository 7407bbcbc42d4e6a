from __future__ import annotations

from typing import TYPE_CHECKING

from app.servicequeue.utils import iso

if TYPE_CHECKING:
    from app.servicequeue.models import Company, User


def user_brief(user: "User | None") -> dict | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "role": user.role,
    }


def serialize_user(user: "User", *, include_login_code: bool = False) -> dict:
    data = {
        **(user_brief(user) or {}),
        "companyId": user.company_id,
        "isActive": user.is_active,
        "timezone": user.timezone,
        "createdAt": iso(user.created_at),
        "updatedAt": iso(user.updated_at),
    }
    if include_login_code:
        data["loginCode"] = user.login_code
    return data


def serialize_company(company: "Company", *, include_users: bool = False) -> dict:
    data = {
        "id": company.id,
        "companyName": company.company_name,
        "companyCode": company.company_code,
        "primaryContact": company.primary_contact,
        "phone": company.phone,
        "email": company.email,
        "createdAt": iso(company.created_at),
        "updatedAt": iso(company.updated_at),
    }
    if include_users:
        data["users"] = [serialize_user(u, include_login_code=True) for u in company.users]
    return data
