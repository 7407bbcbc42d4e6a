from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.servicequeue.constants import AGENT_ROLES, CHANGE_APPROVED, CHANGE_PENDING, CHANGE_REJECTED
from app.servicequeue.models import User
from app.servicequeue.modules.assignments.models import AssignmentChangeRequest
from app.servicequeue.serializers import user_brief
from app.servicequeue.utils import iso, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.servicequeue.modules.service_requests.models import ServiceRequest

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = {"approve": CHANGE_APPROVED, "reject": CHANGE_REJECTED}


class AssignmentChangeError(ValueError):
    pass


def pending_change_for(s: "Session", request_id: int) -> AssignmentChangeRequest | None:
    return (
        s.query(AssignmentChangeRequest)
        .filter(AssignmentChangeRequest.request_id == request_id, AssignmentChangeRequest.status == CHANGE_PENDING)
        .first()
    )


def request_change(
    s: "Session", req: "ServiceRequest", actor: User, *, requested_assignee_id, reason: str
) -> AssignmentChangeRequest:
    """
    Open a pending reassignment proposal. A missing ``requested_assignee_id`` proposes unassigning.
    """
    if not reason:
        raise AssignmentChangeError("Reason is required.")
    if pending_change_for(s, req.id) is not None:
        raise AssignmentChangeError("A pending assignment change request already exists for this request.")

    requested: User | None = None
    if requested_assignee_id not in (None, ""):
        requested = s.get(User, parse_int(requested_assignee_id) or 0)
        if requested is None or not requested.is_active or requested.role not in AGENT_ROLES:
            raise AssignmentChangeError("Requested assignee must be an active agent or agent manager.")

    change = AssignmentChangeRequest(
        request=req,
        requested_by=actor,
        current_assignee=req.assigned_to,
        requested_assignee=requested,
        reason=reason,
        status=CHANGE_PENDING,
    )
    s.add(change)
    s.flush()
    logger.info("Assignment change %s requested for %s by user_id=%s", change.id, req.service_queue_id, actor.id)
    return change


def review_change(
    s: "Session", change: AssignmentChangeRequest, reviewer: User, *, action: str, comment: str | None
) -> AssignmentChangeRequest:
    status = REVIEW_ACTIONS.get(action)
    if status is None:
        raise AssignmentChangeError("Action must be 'approve' or 'reject'.")
    if change.status != CHANGE_PENDING:
        raise AssignmentChangeError(f"Assignment change request has already been {change.status}.")

    now = datetime.utcnow()
    change.status = status
    change.reviewed_by = reviewer
    change.review_comment = comment or None
    change.reviewed_at = now
    if status == CHANGE_APPROVED:
        req = change.request
        req.assigned_to = change.requested_assignee
        req.modified_by = reviewer
        req.updated_at = now
    s.flush()
    logger.info("Assignment change %s %s by user_id=%s", change.id, status, reviewer.id)
    return change


def serialize_change(change: AssignmentChangeRequest) -> dict:
    req = change.request
    return {
        "id": change.id,
        "requestId": change.request_id,
        "request": {
            "id": req.id,
            "serviceQueueId": req.service_queue_id,
            "insured": req.insured,
            "taskStatus": req.task_status,
        }
        if req
        else None,
        "requestedBy": user_brief(change.requested_by),
        "currentAssignee": user_brief(change.current_assignee),
        "requestedAssignee": user_brief(change.requested_assignee),
        "reason": change.reason,
        "status": change.status,
        "reviewedBy": user_brief(change.reviewed_by),
        "reviewComment": change.review_comment,
        "reviewedAt": iso(change.reviewed_at),
        "createdAt": iso(change.created_at),
        "updatedAt": iso(change.updated_at),
    }
