from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.servicequeue.accounts import (
    email_taken,
    has_created_requests,
    login_code_taken,
    new_login_code,
    normalize_code,
    normalize_email,
)
from app.servicequeue.constants import AGENT_ROLES, CODE_LENGTH, ROLE_AGENT, ROLE_AGENT_MANAGER
from app.servicequeue.models import Agent, Company, User
from app.servicequeue.utils import iso, is_valid_email, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class AgentError(ValueError):
    pass


def parse_company_ids(raw: Any) -> list[int]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, (list, tuple)):
        raw = str(raw).split(",")
    out: list[int] = []
    for v in raw:
        cid = parse_int(v)
        if cid is None:
            raise AgentError("assignedCompanyIds must be a list of company ids.")
        if cid not in out:
            out.append(cid)
    return out


def validate_agent_payload(payload: dict, *, require_login_code: bool = False) -> list[str]:
    errors = []
    if not str(payload.get("firstName") or "").strip():
        errors.append("First name is required.")
    if not str(payload.get("lastName") or "").strip():
        errors.append("Last name is required.")
    if not is_valid_email(payload.get("email")):
        errors.append("Invalid email address.")
    if require_login_code:
        code = normalize_code(payload.get("loginCode"))
        if not code:
            errors.append("Login code is required.")
        elif len(code) > CODE_LENGTH:
            errors.append(f"Login code must be at most {CODE_LENGTH} characters.")
    try:
        parse_company_ids(payload.get("assignedCompanyIds"))
    except AgentError as e:
        errors.append(str(e))
    return errors


def _check_companies(s: "Session", company_ids: list[int]) -> None:
    if not company_ids:
        return
    found = {cid for (cid,) in s.query(Company.id).filter(Company.id.in_(company_ids)).all()}
    missing = [cid for cid in company_ids if cid not in found]
    if missing:
        raise AgentError(f"Unknown company ids: {', '.join(str(m) for m in missing)}")


def create_agent(s: "Session", payload: dict) -> Agent:
    email = normalize_email(payload.get("email"))
    if email_taken(s, email):
        raise AgentError("A user with this email already exists")
    company_ids = parse_company_ids(payload.get("assignedCompanyIds"))
    _check_companies(s, company_ids)

    user = User(
        first_name=str(payload.get("firstName")).strip(),
        last_name=str(payload.get("lastName")).strip(),
        email=email,
        login_code=new_login_code(s),
        role=ROLE_AGENT,
        is_active=True,
    )
    agent = Agent(user=user, assigned_company_ids=company_ids, is_active=True)
    s.add_all([user, agent])
    s.flush()
    logger.info("Created agent user_id=%s agent_id=%s", user.id, agent.id)
    return agent


def update_agent(s: "Session", agent: Agent, payload: dict) -> Agent:
    user = agent.user
    email = normalize_email(payload.get("email"))
    code = normalize_code(payload.get("loginCode"))
    if email != user.email and email_taken(s, email, exclude_user_id=user.id):
        raise AgentError("A user with this email already exists")
    if code != user.login_code and login_code_taken(s, code, exclude_user_id=user.id):
        raise AgentError("This login code is already in use")
    company_ids = parse_company_ids(payload.get("assignedCompanyIds"))
    _check_companies(s, company_ids)

    now = datetime.utcnow()
    user.first_name = str(payload.get("firstName")).strip()
    user.last_name = str(payload.get("lastName")).strip()
    user.email = email
    user.login_code = code
    user.updated_at = now
    agent.assigned_company_ids = company_ids
    if "isActive" in payload:
        active = payload.get("isActive")
        active = active.strip().lower() in ("1", "true", "yes", "on") if isinstance(active, str) else bool(active)
        agent.is_active = active
        user.is_active = active
    agent.updated_at = now
    s.flush()
    return agent


def delete_agent(s: "Session", agent: Agent) -> None:
    user = agent.user
    if has_created_requests(s, user.id):
        raise AgentError("Cannot delete an agent who has created service requests.")
    s.delete(agent)
    s.delete(user)
    s.flush()
    logger.info("Deleted agent agent_id=%s user_id=%s", agent.id, user.id)


def change_agent_role(s: "Session", user: User, role: str) -> str:
    """Promote/demote between agent and agent_manager. Returns the previous role."""
    if role not in AGENT_ROLES:
        raise AgentError('Invalid role. Must be "agent" or "agent_manager"')
    if user.role not in AGENT_ROLES:
        raise AgentError("Can only promote/demote agent roles")
    old_role = user.role
    user.role = role
    user.updated_at = datetime.utcnow()
    s.flush()
    return old_role


def reset_agent_code(s: "Session", agent: Agent) -> tuple[str | None, str]:
    user = agent.user
    old_code = user.login_code
    user.login_code = new_login_code(s)
    user.updated_at = datetime.utcnow()
    s.flush()
    return old_code, user.login_code


def serialize_agent_row(agent: Agent, companies: dict[int, Company], *, with_role_flags: bool = False) -> dict:
    user = agent.user
    ids = list(agent.assigned_company_ids or [])
    data = {
        "id": user.id,
        "agentId": agent.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "loginCode": user.login_code or "",
        "role": user.role,
        "isActive": user.is_active and agent.is_active,
        "assignedCompanyIds": ids,
        "assignedCompanies": [
            {"id": cid, "companyName": companies[cid].company_name} for cid in ids if cid in companies
        ],
        "createdAt": iso(user.created_at),
    }
    if with_role_flags:
        data["canPromote"] = user.role == ROLE_AGENT
        data["canDemote"] = user.role == ROLE_AGENT_MANAGER
    return data


def companies_by_id(s: "Session") -> dict[int, Company]:
    return {c.id: c for c in s.query(Company).all()}
