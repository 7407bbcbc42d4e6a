from __future__ import annotations

import logging

from flask import Blueprint, abort, jsonify, request

from app.servicequeue import emails
from app.servicequeue.api import int_field, invalid, request_payload, text
from app.servicequeue.constants import AGENT_ROLES, MANAGER_ROLES, ROLE_AGENT, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN
from app.servicequeue.db import db_session
from app.servicequeue.models import Agent, User
from app.servicequeue.modules.agents.service import (
    AgentError,
    change_agent_role,
    companies_by_id,
    create_agent,
    delete_agent,
    reset_agent_code,
    serialize_agent_row,
    update_agent,
    validate_agent_payload,
)
from app.servicequeue.modules.notifications.service import (
    notify_login_code_reset,
    notify_user_created,
    notify_user_role_changed,
)
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("agents_admin", __name__)


def _get_agent(s, agent_id: int | None) -> Agent:
    if agent_id is None:
        abort(400, description="Agent ID is required")
    agent = s.get(Agent, agent_id)
    if agent is None:
        abort(404, description="Agent not found")
    return agent


@bp.get("/agents")
@require_role(ROLE_SUPER_ADMIN)
def agents_list():
    s = db_session()
    rows = s.query(Agent).order_by(Agent.created_at.desc(), Agent.id.desc()).all()
    companies = companies_by_id(s)
    return jsonify({"agents": [serialize_agent_row(a, companies) for a in rows]})


@bp.post("/agents")
@require_role(ROLE_SUPER_ADMIN)
def agents_create():
    s = db_session()
    u = current_user()
    payload = request_payload()
    errors = validate_agent_payload(payload)
    if errors:
        return invalid(errors)
    try:
        agent = create_agent(s, payload)
    except AgentError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    user = agent.user
    notify_user_created(s, user, u)
    s.commit()
    emails.send_agent_welcome(user.email, first_name=user.first_name, login_code=user.login_code)
    return (
        jsonify(
            {
                "success": True,
                "agent": serialize_agent_row(agent, companies_by_id(s)),
                "message": f'Agent "{user.full_name}" created successfully with login code: {user.login_code}',
            }
        ),
        201,
    )


@bp.put("/agents")
@bp.put("/agents/<int:agent_id>")
@require_role(ROLE_SUPER_ADMIN)
def agents_update(agent_id: int | None = None):
    s = db_session()
    payload = request_payload()
    agent = _get_agent(s, agent_id if agent_id is not None else parse_int(payload.get("agentId")))
    errors = validate_agent_payload(payload, require_login_code=True)
    if errors:
        return invalid(errors)
    try:
        update_agent(s, agent, payload)
    except AgentError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify(
        {
            "success": True,
            "agent": serialize_agent_row(agent, companies_by_id(s)),
            "message": f'Agent "{agent.user.full_name}" updated successfully',
        }
    )


@bp.delete("/agents")
@bp.delete("/agents/<int:agent_id>")
@require_role(ROLE_SUPER_ADMIN)
def agents_delete(agent_id: int | None = None):
    s = db_session()
    if agent_id is None:
        agent_id = parse_int(request.args.get("agentId"))
    if agent_id is None:
        agent_id = parse_int(request_payload().get("agentId"))
    agent = _get_agent(s, agent_id)
    name = agent.user.full_name
    try:
        delete_agent(s, agent)
    except AgentError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "message": f'Agent "{name}" deleted successfully'})


@bp.get("/agents/list")
@require_role(*MANAGER_ROLES)
def agents_roster():
    """Agents and agent managers with promote/demote flags."""
    s = db_session()
    rows = (
        s.query(Agent)
        .join(User, Agent.user_id == User.id)
        .filter(User.role.in_(AGENT_ROLES))
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    companies = companies_by_id(s)
    agents = [serialize_agent_row(a, companies, with_role_flags=True) for a in rows]
    return jsonify(
        {
            "agents": agents,
            "totalAgents": sum(1 for a in agents if a["role"] == ROLE_AGENT),
            "totalManagers": sum(1 for a in agents if a["role"] == ROLE_AGENT_MANAGER),
        }
    )


@bp.post("/agents/<int:user_id>/promote")
@require_role(ROLE_SUPER_ADMIN)
def agents_promote(user_id: int):
    s = db_session()
    u = current_user()
    role = text(request_payload(), "role")
    target = s.get(User, user_id)
    if target is None:
        abort(404, description="Agent not found")
    try:
        old_role = change_agent_role(s, target, role)
    except AgentError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_user_role_changed(s, target, u, old_role=old_role)
    s.commit()
    action = "promoted to" if role == ROLE_AGENT_MANAGER else "demoted from"
    label = "Agent Manager" if role == ROLE_AGENT_MANAGER else "Agent"
    return jsonify(
        {
            "success": True,
            "message": f"Agent {action} {label} successfully",
            "agent": {
                "id": target.id,
                "firstName": target.first_name,
                "lastName": target.last_name,
                "email": target.email,
                "previousRole": old_role,
                "newRole": target.role,
            },
        }
    )


@bp.post("/agents/reset-code")
@require_role(ROLE_SUPER_ADMIN)
def agents_reset_code():
    s = db_session()
    u = current_user()
    agent = _get_agent(s, int_field(request_payload(), "agentId", label="Agent ID"))
    old_code, new_code = reset_agent_code(s, agent)
    s.commit()

    user = agent.user
    notify_login_code_reset(s, user, u)
    s.commit()
    emails.send_agent_code_reset(user.email, first_name=user.first_name, login_code=new_code)
    logger.info("Reset login code for agent_id=%s", agent.id)
    return jsonify({"success": True, "oldCode": old_code, "newCode": new_code, "message": "Login code reset successfully"})
