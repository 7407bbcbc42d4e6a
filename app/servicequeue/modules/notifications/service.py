"""
In-app notifications and the event fan-out used by every request/account handler.

notify_* helpers are meant to run after the primary change has been committed:
each one catches and logs its own failure (rolling back only its own rows) so a
broken notification or email never changes the handler's response.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date
from functools import wraps
from typing import TYPE_CHECKING, Any

from app.servicequeue import emails
from app.servicequeue.activity import record_activity
from app.servicequeue.constants import (
    ROLE_AGENT,
    ROLE_AGENT_MANAGER,
    ROLE_CUSTOMER_ADMIN,
    STATUS_CLOSED,
)
from app.servicequeue.models import Agent, Notification, User
from app.servicequeue.utils import display_timestamp, iso, json_dumps_sorted, json_loads_safe, truncate

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.servicequeue.models import Company
    from app.servicequeue.modules.assignments.models import AssignmentChangeRequest
    from app.servicequeue.modules.service_requests.models import ServiceRequest
    from app.servicequeue.modules.subtasks.models import SubTask

logger = logging.getLogger(__name__)


def create_notification(
    s: "Session",
    *,
    user_id: int,
    title: str,
    message: str,
    type: str = "info",
    metadata: dict[str, Any] | None = None,
) -> Notification:
    n = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        read=False,
        metadata_json=json_dumps_sorted(metadata),
    )
    s.add(n)
    return n


def notify_users(s: "Session", users: Iterable[User], **kwargs: Any) -> int:
    count = 0
    for u in users:
        create_notification(s, user_id=u.id, **kwargs)
        count += 1
    return count


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "read": n.read,
        "createdAt": iso(n.created_at),
        "timestamp": display_timestamp(n.created_at),
        "metadata": json_loads_safe(n.metadata_json),
    }


def _swallow(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(s: "Session", *args: Any, **kwargs: Any) -> Any:
        try:
            result = fn(s, *args, **kwargs)
            s.flush()
            return result
        except Exception:
            logger.exception("%s failed", fn.__name__)
            s.rollback()
            return None

    return wrapped


def _dedupe(users: Iterable[User | None], *, exclude: Iterable[int | None] = ()) -> list[User]:
    skip = {uid for uid in exclude if uid is not None}
    out: list[User] = []
    seen: set[int] = set()
    for u in users:
        if u is None or u.id in seen or u.id in skip or not u.is_active:
            continue
        seen.add(u.id)
        out.append(u)
    return out


def agent_managers(s: "Session") -> list[User]:
    return (
        s.query(User)
        .filter(User.role == ROLE_AGENT_MANAGER, User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )


def company_customer_admins(s: "Session", company_id: int) -> list[User]:
    return (
        s.query(User)
        .filter(User.company_id == company_id, User.role == ROLE_CUSTOMER_ADMIN, User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )


def company_agents(s: "Session", company_id: int) -> list[User]:
    """Active agents whose assigned company list covers ``company_id``."""
    rows = (
        s.query(Agent)
        .join(User, Agent.user_id == User.id)
        .filter(Agent.is_active.is_(True), User.is_active.is_(True), User.role == ROLE_AGENT)
        .all()
    )
    return [a.user for a in rows if a.covers_company(company_id)]


def request_recipients(
    s: "Session",
    req: "ServiceRequest",
    *,
    assignee: bool = True,
    creator: bool = True,
    customer_admins: bool = False,
    managers: bool = False,
    agents: bool = False,
    exclude: Iterable[int | None] = (),
) -> list[User]:
    users: list[User | None] = []
    if assignee:
        users.append(req.assigned_to)
    if creator:
        users.append(req.assigned_by)
    if customer_admins:
        users.extend(company_customer_admins(s, req.company_id))
    if managers:
        users.extend(agent_managers(s))
    if agents:
        users.extend(company_agents(s, req.company_id))
    return _dedupe(users, exclude=exclude)


def _request_meta(req: "ServiceRequest", **extra: Any) -> dict[str, Any]:
    return {"requestId": req.id, "serviceQueueId": req.service_queue_id, **extra}


# ---------- Request events ----------
@_swallow
def notify_request_created(s: "Session", req: "ServiceRequest", actor: User) -> None:
    record_activity(
        s,
        actor=actor,
        type="request_created",
        description=f"Created new service request {req.service_queue_id} for {req.insured}",
        company_id=req.company_id,
        request_id=req.id,
        metadata={"insured": req.insured, "category": req.service_queue_category, "assignedToId": req.assigned_to_id},
    )
    if req.assigned_to is not None:
        create_notification(
            s,
            user_id=req.assigned_to.id,
            type="request_created",
            title="New Request Assigned",
            message=f"New service request {req.service_queue_id} has been assigned to you",
            metadata=_request_meta(req, insured=req.insured),
        )
    notify_users(
        s,
        _dedupe([*agent_managers(s), *company_customer_admins(s, req.company_id)], exclude=(actor.id, req.assigned_to_id)),
        type="request_created",
        title="New Service Request",
        message=f"New service request {req.service_queue_id} created for {req.insured}",
        metadata=_request_meta(req, insured=req.insured, category=req.service_queue_category),
    )
    if req.assigned_to is not None:
        emails.send_new_request(req.assigned_to.email, request=req, created_by=actor.full_name)


@_swallow
def notify_request_assigned(s: "Session", req: "ServiceRequest", actor: User) -> None:
    assignee = req.assigned_to
    if assignee is None:
        return
    record_activity(
        s,
        actor=actor,
        type="request_assigned",
        description=f"Assigned request {req.service_queue_id} to {assignee.full_name}",
        company_id=req.company_id,
        request_id=req.id,
        metadata={"assignedToId": assignee.id},
    )
    if assignee.id != actor.id:
        create_notification(
            s,
            user_id=assignee.id,
            type="request_assigned",
            title="Request Assigned",
            message=f"Service request {req.service_queue_id} has been assigned to you by {actor.full_name}",
            metadata=_request_meta(req),
        )
    emails.send_request_assigned(assignee.email, request=req, assigned_by=actor.full_name)


@_swallow
def notify_request_updated(s: "Session", req: "ServiceRequest", actor: User, changes: dict[str, dict]) -> None:
    if not changes:
        return
    status_change = changes.get("taskStatus")
    if status_change:
        old, new = status_change["old"], status_change["new"]
        activity_type = "status_changed"
        description = f"Changed status of {req.service_queue_id} from {old} to {new}"
        title = "Request Status Updated"
        message = f"Service request {req.service_queue_id} status changed to {new.replace('_', ' ')}"
    else:
        activity_type = "request_updated"
        description = f"Updated request {req.service_queue_id} ({', '.join(sorted(changes))})"
        title = "Request Updated"
        message = f"Service request {req.service_queue_id} has been updated by {actor.full_name}"

    record_activity(
        s,
        actor=actor,
        type=activity_type,
        description=description,
        company_id=req.company_id,
        request_id=req.id,
        metadata={"changes": changes},
    )
    recipients = request_recipients(s, req, exclude=(actor.id,))
    notify_users(s, recipients, type=activity_type, title=title, message=message, metadata=_request_meta(req, changes=changes))
    if status_change:
        for u in recipients:
            emails.send_status_update(
                u.email,
                request=req,
                old_status=status_change["old"],
                new_status=status_change["new"],
                updated_by=actor.full_name,
            )


@_swallow
def notify_note_added(
    s: "Session", req: "ServiceRequest", actor: User, note_content: str, *, is_internal: bool, send_emails: bool = True
) -> None:
    preview = truncate(note_content, 100)
    record_activity(
        s,
        actor=actor,
        type="note_added",
        description=f"Added {'internal ' if is_internal else ''}note to request {req.service_queue_id}: {preview}",
        company_id=req.company_id,
        request_id=req.id,
        metadata={"isInternal": is_internal},
    )
    if is_internal:
        recipients = request_recipients(s, req, creator=False, managers=True, agents=True, exclude=(actor.id,))
        recipients = [u for u in recipients if u.role in (ROLE_AGENT, ROLE_AGENT_MANAGER)]
    else:
        recipients = request_recipients(s, req, exclude=(actor.id,))
    notify_users(
        s,
        recipients,
        type="note_added",
        title="Internal Note Added" if is_internal else "New Note Added",
        message=f"{actor.full_name} added a note to {req.service_queue_id}: {preview}",
        metadata=_request_meta(req, isInternal=is_internal),
    )
    if send_emails and not is_internal:
        for u in recipients:
            emails.send_note_added(u.email, request=req, note_content=note_content, author_name=actor.full_name)


@_swallow
def notify_attachment_uploaded(
    s: "Session", req: "ServiceRequest", actor: User, *, file_name: str, file_size: int, mime_type: str | None
) -> None:
    create_notification(
        s,
        user_id=actor.id,
        type="attachment_uploaded",
        title="File Uploaded",
        message=f'File "{file_name}" uploaded successfully to request {req.service_queue_id}',
        metadata=_request_meta(req, fileName=file_name, fileSize=file_size),
    )
    record_activity(
        s,
        actor=actor,
        type="attachment_uploaded",
        description=f'Uploaded file "{file_name}" ({file_size / 1024:.1f}KB) to request {req.service_queue_id}',
        company_id=req.company_id,
        request_id=req.id,
        metadata={"fileName": file_name, "fileSize": file_size, "mimeType": mime_type},
    )


# ---------- Assignment change workflow ----------
@_swallow
def notify_assignment_change_requested(s: "Session", change: "AssignmentChangeRequest", actor: User) -> None:
    req = change.request
    current_name = change.current_assignee.full_name if change.current_assignee else "Unassigned"
    requested_name = change.requested_assignee.full_name if change.requested_assignee else "Unassign"
    record_activity(
        s,
        actor=actor,
        type="assignment_change_requested",
        description=f"Requested reassignment of {req.service_queue_id} from {current_name} to {requested_name}",
        company_id=req.company_id,
        request_id=req.id,
        metadata={"changeRequestId": change.id, "reason": change.reason},
    )
    managers = _dedupe(agent_managers(s), exclude=(actor.id,))
    notify_users(
        s,
        managers,
        type="assignment_change_requested",
        title="Assignment Change Requested",
        message=f"{actor.full_name} requested to reassign {req.service_queue_id} from {current_name} to {requested_name}",
        metadata=_request_meta(req, changeRequestId=change.id),
    )
    for m in managers:
        emails.send_assignment_change_request(
            m.email,
            request=req,
            requested_by=actor.full_name,
            current_assignee=current_name,
            requested_assignee=requested_name,
            reason=change.reason,
        )


@_swallow
def notify_assignment_change_reviewed(s: "Session", change: "AssignmentChangeRequest", reviewer: User) -> None:
    req = change.request
    approved = change.status == "approved"
    outcome = "approved" if approved else "rejected"
    record_activity(
        s,
        actor=reviewer,
        type=f"assignment_change_{outcome}",
        description=f"{outcome.capitalize()} assignment change for {req.service_queue_id}",
        company_id=req.company_id,
        request_id=req.id,
        metadata={"changeRequestId": change.id, "reviewComment": change.review_comment},
    )
    requester = change.requested_by
    if requester is not None and requester.id != reviewer.id:
        create_notification(
            s,
            user_id=requester.id,
            type=f"assignment_change_{outcome}",
            title=f"Assignment Change {outcome.capitalize()}",
            message=f"Your assignment change request for {req.service_queue_id} was {outcome} by {reviewer.full_name}",
            metadata=_request_meta(req, changeRequestId=change.id),
        )
    if approved and change.requested_assignee is not None and change.requested_assignee.id != reviewer.id:
        create_notification(
            s,
            user_id=change.requested_assignee.id,
            type="request_assigned",
            title="Request Reassigned",
            message=f"Service request {req.service_queue_id} has been reassigned to you",
            metadata=_request_meta(req),
        )
        emails.send_request_assigned(change.requested_assignee.email, request=req, assigned_by=reviewer.full_name)
    if requester is not None:
        emails.send_assignment_change_reviewed(
            requester.email,
            request=req,
            approved=approved,
            reviewer=reviewer.full_name,
            comment=change.review_comment,
        )


# ---------- Subtasks ----------
@_swallow
def notify_subtask_assigned(s: "Session", subtask: "SubTask", actor: User) -> None:
    if subtask.assigned_to_id == actor.id:
        return
    create_notification(
        s,
        user_id=subtask.assigned_to_id,
        type="subtask_assigned",
        title="New Subtask Assigned",
        message=f"{actor.full_name} assigned you subtask {subtask.task_id} on {subtask.request.service_queue_id}",
        metadata={"subtaskId": subtask.id, "taskId": subtask.task_id, "requestId": subtask.request_id},
    )


@_swallow
def notify_subtask_completed(s: "Session", subtask: "SubTask", actor: User) -> None:
    manager = subtask.assigned_by
    if manager is None or manager.id == actor.id:
        return
    create_notification(
        s,
        user_id=manager.id,
        type="subtask_completed",
        title="Subtask Completed",
        message=f"{actor.full_name} completed subtask {subtask.task_id} on {subtask.request.service_queue_id}",
        metadata={"subtaskId": subtask.id, "taskId": subtask.task_id, "requestId": subtask.request_id},
    )
    emails.send_subtask_completed(manager.email, subtask=subtask, completed_by=actor.full_name)


# ---------- Accounts ----------
@_swallow
def notify_user_created(s: "Session", user: User, actor: User) -> None:
    record_activity(
        s,
        actor=actor,
        type="user_created",
        description=f"Created {user.role.replace('_', ' ')} {user.full_name} ({user.email})",
        company_id=user.company_id,
        metadata={"userId": user.id, "role": user.role},
    )
    create_notification(
        s,
        user_id=user.id,
        type="user_created",
        title="Welcome to Service Queue",
        message=f"Your account was created by {actor.full_name}",
    )


@_swallow
def notify_user_role_changed(s: "Session", user: User, actor: User, *, old_role: str) -> None:
    promoted = old_role == ROLE_AGENT and user.role == ROLE_AGENT_MANAGER
    verb = "Promoted" if promoted else "Changed role of"
    record_activity(
        s,
        actor=actor,
        type="user_updated",
        description=f"{verb} {user.full_name} from {old_role} to {user.role}",
        company_id=user.company_id,
        metadata={"userId": user.id, "oldRole": old_role, "newRole": user.role},
    )
    create_notification(
        s,
        user_id=user.id,
        type="role_changed",
        title="Role Promotion" if promoted else "Role Updated",
        message=(
            "You have been promoted to Agent Manager"
            if promoted
            else f"Your role was changed to {user.role.replace('_', ' ')}"
        ),
        metadata={"oldRole": old_role, "newRole": user.role},
    )


@_swallow
def notify_password_reset(s: "Session", user: User, actor: User) -> None:
    create_notification(
        s,
        user_id=user.id,
        type="password_reset",
        title="Password Reset",
        message="Your password was changed" if user.id == actor.id else f"Your password was reset by {actor.full_name}",
    )
    if user.id != actor.id:
        emails.send_password_reset(user.email, first_name=user.first_name, reset_by=actor.full_name)


@_swallow
def notify_login_code_reset(s: "Session", user: User, actor: User) -> None:
    create_notification(
        s,
        user_id=user.id,
        type="login_code_reset",
        title="Login Code Reset",
        message=f"Your login code was reset by {actor.full_name}",
    )
    record_activity(
        s,
        actor=actor,
        type="user_updated",
        description=f"Reset login code for {user.full_name}",
        company_id=user.company_id,
        metadata={"userId": user.id},
    )


@_swallow
def notify_company_code_reset(s: "Session", company: "Company", actor: User) -> None:
    record_activity(
        s,
        actor=actor,
        type="company_updated",
        description=f"Reset company code for {company.company_name}",
        company_id=company.id,
    )
    notify_users(
        s,
        [u for u in company.users if u.is_active],
        type="company_code_reset",
        title="Company Code Reset",
        message=f"The company code for {company.company_name} was reset. Check your email for the new code.",
    )


@_swallow
def notify_customer_details_updated(s: "Session", company: "Company", actor: User, *, changes: dict[str, Any]) -> None:
    record_activity(
        s,
        actor=actor,
        type="company_updated",
        description=f"Updated details for {company.company_name}",
        company_id=company.id,
        metadata={"changes": changes},
    )
    notify_users(
        s,
        company_customer_admins(s, company.id),
        type="company_updated",
        title="Company Details Updated",
        message=f"Details for {company.company_name} were updated by {actor.full_name}",
    )


# ---------- Reminders ----------
@_swallow
def notify_due_date_reminder(s: "Session", req: "ServiceRequest", *, today: date | None = None) -> int:
    today = today or date.today()
    if req.due_date is None or req.task_status == STATUS_CLOSED:
        return 0
    days = (req.due_date - today).days
    if days < 0:
        title = "Request Overdue"
        message = f"Service request {req.service_queue_id} is overdue by {abs(days)} day(s)"
    else:
        title = "Request Due Soon"
        when = "today" if days == 0 else ("tomorrow" if days == 1 else f"in {days} days")
        message = f"Service request {req.service_queue_id} is due {when}"
    targets = request_recipients(s, req, creator=False, managers=req.assigned_to is None)
    notify_users(s, targets, type="due_date_reminder", title=title, message=message, metadata=_request_meta(req, daysUntilDue=days))
    for u in targets:
        emails.send_due_date_reminder(u.email, request=req, days_until_due=days)
    return len(targets)
