from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.servicequeue.accounts import (
    email_taken,
    has_created_requests,
    login_code_taken,
    new_company_code,
    new_login_code,
    normalize_code,
    normalize_email,
)
from app.servicequeue.constants import (
    CODE_LENGTH,
    CUSTOMER_ROLES,
    ROLE_CUSTOMER,
    ROLE_CUSTOMER_ADMIN,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_NEW,
    STATUS_OPEN,
)
from app.servicequeue.models import ActivityLog, Company, Notification, User
from app.servicequeue.modules.customers.models import InsuredAccount
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.serializers import serialize_company
from app.servicequeue.utils import iso, is_valid_email, parse_int, split_name

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

INSURED_FIELDS = {
    "insuredName": "insured_name",
    "primaryContactName": "primary_contact_name",
    "contactEmail": "contact_email",
    "phone": "phone",
    "street": "street",
    "city": "city",
    "state": "state",
    "zipcode": "zipcode",
}


class CustomerError(ValueError):
    pass


def _s(payload: dict, name: str) -> str:
    return str(payload.get(name) or "").strip()


# ---------- Companies ----------
def validate_company_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "companyName" in payload:
        if not _s(payload, "companyName"):
            errors.append("Company name is required.")
    if not partial or "primaryContact" in payload:
        if not _s(payload, "primaryContact"):
            errors.append("Primary contact is required.")
    if not partial or "email" in payload:
        if not is_valid_email(payload.get("email")):
            errors.append("Invalid email address.")
    return errors


def primary_admin(company: Company) -> User | None:
    """The customer_admin holding the company code, else the oldest customer_admin."""
    admins = sorted((u for u in company.users if u.role == ROLE_CUSTOMER_ADMIN), key=lambda u: u.id)
    for u in admins:
        if u.login_code == company.company_code:
            return u
    return admins[0] if admins else None


def create_company(s: "Session", payload: dict) -> tuple[Company, User]:
    """
    Create a company and its first customer_admin; the admin signs in with the company code.
    """
    name = _s(payload, "companyName")
    email = normalize_email(payload.get("email"))
    if s.query(Company.id).filter(func.lower(Company.company_name) == name.lower()).first() is not None:
        raise CustomerError("A company with this name already exists")
    if s.query(Company.id).filter(Company.email == email).first() is not None:
        raise CustomerError("A company with this email already exists")
    if email_taken(s, email):
        raise CustomerError("A user with this email already exists")

    code = new_company_code(s)
    primary_contact = _s(payload, "primaryContact")
    company = Company(
        company_name=name,
        company_code=code,
        primary_contact=primary_contact,
        phone=_s(payload, "phone") or None,
        email=email,
    )
    first, last = split_name(primary_contact)
    admin = User(
        first_name=first or primary_contact,
        last_name=last,
        email=email,
        login_code=code,
        role=ROLE_CUSTOMER_ADMIN,
        company=company,
        is_active=True,
    )
    s.add_all([company, admin])
    s.flush()
    logger.info("Created company id=%s code=%s", company.id, code)
    return company, admin


def reset_company_code(s: "Session", company: Company) -> tuple[str, str, User, bool]:
    """
    Issue a new company code and move the primary customer_admin onto it.
    Returns (old_code, new_code, admin, admin_created).
    """
    old_code = company.company_code
    new_code = new_company_code(s)
    now = datetime.utcnow()
    company.company_code = new_code
    company.updated_at = now

    admin = primary_admin(company)
    created = False
    if admin is None:
        if email_taken(s, company.email):
            raise CustomerError("Company email is already used by another user; add a customer admin first.")
        first, last = split_name(company.primary_contact)
        admin = User(
            first_name=first or company.primary_contact,
            last_name=last,
            email=company.email,
            role=ROLE_CUSTOMER_ADMIN,
            company=company,
            is_active=True,
        )
        s.add(admin)
        created = True
    admin.login_code = new_code
    admin.updated_at = now
    s.flush()
    logger.info("Reset company code company_id=%s", company.id)
    return old_code, new_code, admin, created


def update_company(s: "Session", company: Company, payload: dict) -> dict[str, Any]:
    """Update company fields and keep the primary customer_admin's name/email in sync."""
    changes: dict[str, Any] = {}
    admin = primary_admin(company)

    email = normalize_email(payload.get("email")) if "email" in payload else company.email
    if email != company.email:
        if s.query(Company.id).filter(Company.email == email, Company.id != company.id).first() is not None:
            raise CustomerError("A company with this email already exists")
        if email_taken(s, email, exclude_user_id=admin.id if admin else None):
            raise CustomerError("A user with this email already exists")
    name = _s(payload, "companyName") or company.company_name
    if name != company.company_name:
        dup = (
            s.query(Company.id)
            .filter(func.lower(Company.company_name) == name.lower(), Company.id != company.id)
            .first()
        )
        if dup is not None:
            raise CustomerError("A company with this name already exists")

    for key, attr, value in (
        ("companyName", "company_name", name),
        ("primaryContact", "primary_contact", _s(payload, "primaryContact") or company.primary_contact),
        ("email", "email", email),
        ("phone", "phone", _s(payload, "phone") if "phone" in payload else company.phone),
    ):
        if getattr(company, attr) != value:
            changes[key] = {"old": getattr(company, attr), "new": value}
            setattr(company, attr, value)

    if changes:
        now = datetime.utcnow()
        company.updated_at = now
        if admin is not None:
            first, last = split_name(company.primary_contact)
            admin.first_name = first or admin.first_name
            admin.last_name = last
            admin.email = company.email
            admin.updated_at = now
    s.flush()
    return changes


def delete_company(s: "Session", company: Company) -> None:
    if s.query(ServiceRequest.id).filter(ServiceRequest.company_id == company.id).first() is not None:
        raise CustomerError(
            "Cannot delete customer with active service requests. Please close or transfer all service requests first."
        )
    user_ids = [u.id for u in company.users]
    if user_ids:
        s.query(Notification).filter(Notification.user_id.in_(user_ids)).delete(synchronize_session=False)
        s.query(ActivityLog).filter(ActivityLog.user_id.in_(user_ids)).delete(synchronize_session=False)
    s.query(ActivityLog).filter(ActivityLog.company_id == company.id).delete(synchronize_session=False)
    s.query(InsuredAccount).filter(InsuredAccount.company_id == company.id).delete(synchronize_session=False)
    for u in list(company.users):
        s.delete(u)
    s.delete(company)
    s.flush()
    logger.info("Deleted company id=%s with %s users", company.id, len(user_ids))


def request_counts(s: "Session", company_id: int) -> dict[str, int]:
    rows = (
        s.query(ServiceRequest.task_status, func.count(ServiceRequest.id))
        .filter(ServiceRequest.company_id == company_id)
        .group_by(ServiceRequest.task_status)
        .all()
    )
    by_status = {status: int(n) for status, n in rows}
    return {
        "openTickets": by_status.get(STATUS_NEW, 0) + by_status.get(STATUS_OPEN, 0),
        "wipTickets": by_status.get(STATUS_IN_PROGRESS, 0),
        "closedTickets": by_status.get(STATUS_CLOSED, 0),
        "totalTickets": sum(by_status.values()),
    }


def activity_status(days_since_last_request: int | None) -> str:
    if days_since_last_request is None:
        return "inactive"
    if days_since_last_request <= 7:
        return "very_active"
    if days_since_last_request <= 30:
        return "active"
    if days_since_last_request <= 90:
        return "moderate"
    return "low_activity"


def company_overview(s: "Session", company: Company, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    counts = request_counts(s, company.id)
    last_request = (
        s.query(func.max(ServiceRequest.created_at)).filter(ServiceRequest.company_id == company.id).scalar()
    )
    days = (now - last_request).days if last_request else None
    total = counts["totalTickets"]
    users = list(company.users)
    return {
        **serialize_company(company),
        **counts,
        "activeTickets": counts["openTickets"] + counts["wipTickets"],
        "activeUsers": sum(1 for u in users if u.is_active),
        "totalUsers": len(users),
        "completionRate": round(counts["closedTickets"] * 100 / total) if total else 0,
        "hasRecentActivity": last_request is not None,
        "lastRequestDate": iso(last_request),
        "daysSinceLastActivity": days,
        "status": activity_status(days),
    }


def overview_summary(rows: list[dict]) -> dict:
    n = len(rows)
    return {
        "totalCustomers": n,
        "activeCustomers": sum(1 for r in rows if r["status"] in ("very_active", "active")),
        "totalTickets": sum(r["totalTickets"] for r in rows),
        "totalOpenTickets": sum(r["openTickets"] for r in rows),
        "totalWipTickets": sum(r["wipTickets"] for r in rows),
        "totalClosedTickets": sum(r["closedTickets"] for r in rows),
        "totalUsers": sum(r["totalUsers"] for r in rows),
        "totalActiveUsers": sum(r["activeUsers"] for r in rows),
        "averageCompletionRate": round(sum(r["completionRate"] for r in rows) / n) if n else 0,
    }


# ---------- Company users ----------
def validate_user_payload(payload: dict, *, require_login_code: bool = False) -> list[str]:
    errors = []
    if not _s(payload, "firstName"):
        errors.append("First name is required.")
    if not _s(payload, "lastName"):
        errors.append("Last name is required.")
    if not is_valid_email(payload.get("email")):
        errors.append("Invalid email address.")
    if require_login_code and len(normalize_code(payload.get("loginCode"))) < CODE_LENGTH:
        errors.append(f"Login code must be at least {CODE_LENGTH} characters.")
    role = _s(payload, "role")
    if role and role not in CUSTOMER_ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(CUSTOMER_ROLES)}")
    return errors


def create_company_user(
    s: "Session", company: Company, payload: dict, *, role: str = ROLE_CUSTOMER, login_code: str | None = None
) -> User:
    email = normalize_email(payload.get("email"))
    if email_taken(s, email):
        raise CustomerError("A user with this email already exists")
    code = normalize_code(login_code) if login_code else new_login_code(s)
    if login_code and login_code_taken(s, code):
        raise CustomerError("This login code is already in use")
    user = User(
        first_name=_s(payload, "firstName"),
        last_name=_s(payload, "lastName"),
        email=email,
        login_code=code,
        role=role,
        company=company,
        is_active=True,
    )
    s.add(user)
    s.flush()
    logger.info("Created %s user_id=%s company_id=%s", role, user.id, company.id)
    return user


def update_company_user(s: "Session", user: User, payload: dict) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if email != user.email and email_taken(s, email, exclude_user_id=user.id):
            raise CustomerError("A user with this email already exists")
    if payload.get("loginCode"):
        code = normalize_code(payload.get("loginCode"))
        if code != user.login_code and login_code_taken(s, code, exclude_user_id=user.id):
            raise CustomerError("This login code is already in use")

    updates = {
        "first_name": _s(payload, "firstName") or None,
        "last_name": _s(payload, "lastName") or None,
        "email": normalize_email(payload.get("email")) or None,
        "login_code": normalize_code(payload.get("loginCode")) or None,
        "role": _s(payload, "role") or None,
    }
    if "isActive" in payload:
        active = payload.get("isActive")
        updates["is_active"] = active.strip().lower() in ("1", "true", "yes", "on") if isinstance(active, str) else bool(active)
    for attr, value in updates.items():
        if value is None:
            continue
        if getattr(user, attr) != value:
            changes[attr] = {"old": getattr(user, attr), "new": value}
            setattr(user, attr, value)
    if changes:
        user.updated_at = datetime.utcnow()
    s.flush()
    return changes


def update_details(s: "Session", company: Company, payload: dict) -> tuple[User, bool, dict[str, Any]]:
    """
    Rename the company and update (or create) one of its users in a single step.
    Returns (user, created, changes).
    """
    user: User | None = None
    user_id = parse_int(payload.get("userId"))
    if user_id is not None:
        user = s.get(User, user_id)
        if user is None or user.company_id != company.id:
            raise LookupError("User not found")
    else:
        user = primary_admin(company) or next(iter(sorted(company.users, key=lambda u: u.id)), None)

    changes: dict[str, Any] = {}
    name = _s(payload, "companyName")
    if name and name != company.company_name:
        changes["companyName"] = {"old": company.company_name, "new": name}
        company.company_name = name
    contact = f"{_s(payload, 'firstName')} {_s(payload, 'lastName')}".strip()
    if contact and contact != company.primary_contact:
        changes["primaryContact"] = {"old": company.primary_contact, "new": contact}
        company.primary_contact = contact
    company.updated_at = datetime.utcnow()

    role = _s(payload, "role") or (user.role if user is not None else ROLE_CUSTOMER)
    if user is None:
        user = create_company_user(s, company, payload, role=role, login_code=_s(payload, "loginCode"))
        return user, True, changes
    changes.update(update_company_user(s, user, {**payload, "role": role}))
    return user, False, changes


def delete_company_user(s: "Session", user: User) -> None:
    if has_created_requests(s, user.id):
        raise CustomerError("Cannot delete a user who has created service requests. Deactivate the user instead.")
    s.query(Notification).filter(Notification.user_id == user.id).delete(synchronize_session=False)
    s.delete(user)
    s.flush()


def serialize_company_activity(entry: ActivityLog) -> dict:
    user = entry.user
    return {
        "id": entry.id,
        "type": entry.type,
        "description": entry.description,
        "createdBy": user.full_name if user else "Unknown User",
        "createdAt": iso(entry.created_at),
        "userInitials": f"{user.first_name[:1]}{user.last_name[:1]}".upper() if user else "UN",
    }


# ---------- Insured accounts ----------
def validate_insured_payload(payload: dict) -> list[str]:
    if any(not _s(payload, key) for key in INSURED_FIELDS):
        return ["All fields are required"]
    if not is_valid_email(payload.get("contactEmail")):
        return ["Invalid contact email address."]
    return []


def apply_insured(account: InsuredAccount, payload: dict) -> None:
    for key, attr in INSURED_FIELDS.items():
        setattr(account, attr, _s(payload, key))
    account.contact_email = normalize_email(account.contact_email)
    account.updated_at = datetime.utcnow()


def create_insured(s: "Session", company_id: int, payload: dict) -> InsuredAccount:
    account = InsuredAccount(company_id=company_id)
    apply_insured(account, payload)
    s.add(account)
    s.flush()
    return account


def serialize_insured(account: InsuredAccount) -> dict:
    data = {key: getattr(account, attr) for key, attr in INSURED_FIELDS.items()}
    data.update(
        {
            "id": account.id,
            "companyId": account.company_id,
            "createdAt": iso(account.created_at),
            "updatedAt": iso(account.updated_at),
        }
    )
    return data
