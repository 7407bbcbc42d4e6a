from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import or_
from werkzeug.datastructures import FileStorage

from app.servicequeue.constants import (
    MANAGER_ROLES,
    SERVICE_QUEUE_CATEGORIES,
    STAFF_ROLES,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_NEW,
    TASK_STATUSES,
)
from app.servicequeue.models import User
from app.servicequeue.modules.notifications.service import notify_attachment_uploaded
from app.servicequeue.serializers import user_brief
from app.servicequeue.storage import StorageError, build_attachment_key, put_with_timeout, storage_from_config
from app.servicequeue.utils import generate_service_queue_id, iso, parse_date, parse_int, parse_time

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.servicequeue.modules.service_requests.models import RequestAttachment, RequestNote, ServiceRequest

logger = logging.getLogger(__name__)

CLOSE_NEEDS_NOTE = "Cannot close request without at least one note."
CLOSE_NEEDS_PROGRESS = "Cannot close request that was never in progress."
CLOSE_NEEDS_ASSIGNEE = "Cannot close request without an assigned agent."


def field(payload: dict, *names: str) -> str:
    """First non-empty value among ``names``, stripped."""
    for name in names:
        v = payload.get(name)
        if v is not None and str(v).strip():
            return str(v).strip()
    return ""


def validate_request_payload(payload: dict, *, require_assigned_by: bool = True) -> list[str]:
    """Validate a new service request payload. Returns list of errors."""
    errors = []
    if not field(payload, "insured"):
        errors.append("Insured is required.")
    if not field(payload, "serviceRequestNarrative", "narrative"):
        errors.append("Service request narrative is required.")
    category = field(payload, "serviceQueueCategory", "category")
    if not category:
        errors.append("Service queue category is required.")
    elif category not in SERVICE_QUEUE_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(SERVICE_QUEUE_CATEGORIES)}")
    if require_assigned_by and not field(payload, "assignedById"):
        errors.append("Assigned by is required.")
    try:
        parse_date(payload.get("dueDate"))
    except ValueError:
        errors.append("Invalid due date. Use YYYY-MM-DD.")
    try:
        parse_time(payload.get("dueTime"))
    except ValueError:
        errors.append("Invalid due time. Use HH:MM.")
    return errors


def service_queue_id_taken(s: "Session", service_queue_id: str) -> bool:
    from app.servicequeue.modules.service_requests.models import ServiceRequest

    return s.query(ServiceRequest.id).filter(ServiceRequest.service_queue_id == service_queue_id).first() is not None


def new_service_queue_id(s: "Session") -> str:
    for _ in range(10):
        sqid = generate_service_queue_id()
        if not service_queue_id_taken(s, sqid):
            return sqid
    raise RuntimeError("Could not generate a unique service queue id")


def find_assignable_user(s: "Session", user_id: Any) -> User | None:
    """Users that may own a request: agents, agent managers and super admins."""
    uid = parse_int(user_id)
    if uid is None:
        return None
    user = s.get(User, uid)
    if not user or not user.is_active or user.role not in STAFF_ROLES:
        return None
    return user


def create_service_request(
    s: "Session",
    payload: dict,
    actor: User,
    *,
    company_id: int,
    assigned_by: User,
    assigned_to: User | None = None,
    service_queue_id: str | None = None,
) -> "ServiceRequest":
    from app.servicequeue.modules.service_requests.models import ServiceRequest

    req = ServiceRequest(
        service_queue_id=service_queue_id or new_service_queue_id(s),
        insured=field(payload, "insured"),
        company_id=company_id,
        task_status=STATUS_NEW,
        service_request_narrative=field(payload, "serviceRequestNarrative", "narrative"),
        service_queue_category=field(payload, "serviceQueueCategory", "category") or "other",
        assigned_by=assigned_by,
        assigned_to=assigned_to,
        modified_by=actor,
        due_date=parse_date(payload.get("dueDate")),
        due_time=parse_time(payload.get("dueTime")),
    )
    s.add(req)
    s.flush()
    logger.info("Created service request %s company_id=%s by user_id=%s", req.service_queue_id, company_id, actor.id)
    return req


def close_error(req: "ServiceRequest") -> str | None:
    if not req.notes:
        return CLOSE_NEEDS_NOTE
    if req.in_progress_at is None:
        return CLOSE_NEEDS_PROGRESS
    if req.assigned_to is None:
        return CLOSE_NEEDS_ASSIGNEE
    return None


def apply_status(req: "ServiceRequest", new_status: str, *, closed_at: datetime | None = None) -> str | None:
    """
    Move ``req`` to ``new_status`` keeping the lifecycle timestamps consistent.
    Returns an error message instead of changing anything when the move is not allowed.
    """
    if new_status not in TASK_STATUSES:
        return f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}"
    if new_status == STATUS_CLOSED:
        err = close_error(req)
        if err:
            return err
    now = datetime.utcnow()
    if new_status == STATUS_IN_PROGRESS and req.in_progress_at is None:
        req.in_progress_at = now
    if new_status == STATUS_CLOSED:
        if req.task_status != STATUS_CLOSED or closed_at is not None:
            req.closed_at = closed_at or now
    elif req.task_status == STATUS_CLOSED:
        req.closed_at = None
    req.task_status = new_status
    return None


def _plain(v: Any) -> Any:
    return v.isoformat() if hasattr(v, "isoformat") else v


def _track(changes: dict, key: str, old: Any, new: Any) -> bool:
    if old == new:
        return False
    changes[key] = {"old": _plain(old), "new": _plain(new)}
    return True


def update_service_request(
    s: "Session", req: "ServiceRequest", payload: dict, actor: User, *, can_manage: bool, allow_time_spent: bool = True
) -> tuple[dict[str, dict], list[str]]:
    """
    Apply an edit payload and return (changes, errors).

    Assignment, due date/time and closedAt are only honoured when ``can_manage``;
    otherwise they are ignored. On errors the caller must roll the session back.
    """
    errors: list[str] = []
    changes: dict[str, dict] = {}

    insured = field(payload, "insured")
    narrative = field(payload, "serviceRequestNarrative", "narrative")
    category = field(payload, "serviceQueueCategory", "category")
    status = field(payload, "taskStatus", "status")
    if category and category not in SERVICE_QUEUE_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(SERVICE_QUEUE_CATEGORIES)}")
    if status and status not in TASK_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")

    time_spent = None
    if allow_time_spent and payload.get("timeSpent") not in (None, ""):
        time_spent = parse_int(payload.get("timeSpent"))
        if time_spent is None or time_spent < 0:
            errors.append("timeSpent must be a non-negative integer (minutes).")

    new_assignee: User | None = None
    assignee_given = can_manage and "assignedToId" in payload
    if assignee_given and payload.get("assignedToId") not in (None, ""):
        new_assignee = find_assignable_user(s, payload.get("assignedToId"))
        if new_assignee is None:
            errors.append("Invalid assigned to user.")

    due_date = req.due_date
    due_time = req.due_time
    closed_at = None
    if can_manage:
        try:
            if "dueDate" in payload:
                due_date = parse_date(payload.get("dueDate"))
            if "dueTime" in payload:
                due_time = parse_time(payload.get("dueTime"))
            if payload.get("closedAt"):
                closed_at = datetime.fromisoformat(str(payload["closedAt"]).replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            errors.append("Invalid date or time value.")
    if errors:
        return {}, errors

    if assignee_given:
        old_id = req.assigned_to_id
        new_id = new_assignee.id if new_assignee else None
        if old_id != new_id:
            changes["assignedToId"] = {"old": old_id, "new": new_id}
            req.assigned_to = new_assignee

    if closed_at is not None and not status:
        status = STATUS_CLOSED
    if status and (status != req.task_status or closed_at is not None):
        old_status = req.task_status
        err = apply_status(req, status, closed_at=closed_at)
        if err:
            return {}, [err]
        if old_status != status:
            changes["taskStatus"] = {"old": old_status, "new": status}

    if insured and _track(changes, "insured", req.insured, insured):
        req.insured = insured
    if narrative and _track(changes, "serviceRequestNarrative", req.service_request_narrative, narrative):
        req.service_request_narrative = narrative
    if category and _track(changes, "serviceQueueCategory", req.service_queue_category, category):
        req.service_queue_category = category
    if time_spent is not None and _track(changes, "timeSpent", req.time_spent, time_spent):
        req.time_spent = time_spent
    if can_manage:
        if _track(changes, "dueDate", req.due_date, due_date):
            req.due_date = due_date
        if _track(changes, "dueTime", req.due_time, due_time):
            req.due_time = due_time

    if changes:
        req.modified_by = actor
        req.updated_at = datetime.utcnow()
    return changes, []


def add_note(s: "Session", req: "ServiceRequest", actor: User, content: str, *, is_internal: bool = False) -> "RequestNote":
    from app.servicequeue.modules.service_requests.models import RequestNote

    note = RequestNote(request=req, author=actor, note_content=content.strip(), is_internal=is_internal)
    s.add(note)
    s.flush()
    return note


def attach_files(s: "Session", req: "ServiceRequest", files: Iterable[FileStorage], actor: User) -> list["RequestAttachment"]:
    """
    Store each non-empty upload and add an attachment row for it.
    A file that fails or times out is logged and skipped; the rest still upload.
    """
    from app.servicequeue.modules.service_requests.models import RequestAttachment

    storage = storage_from_config(current_app.config)
    timeout = float(current_app.config.get("UPLOAD_TIMEOUT_SECONDS") or 30)
    saved: list[RequestAttachment] = []
    for f in files:
        if not f or not f.filename:
            continue
        data = f.read()
        if not data:
            continue
        key = build_attachment_key(req.id, f.filename)
        mime = f.mimetype or "application/octet-stream"
        try:
            put_with_timeout(storage, key, data, content_type=mime, timeout=timeout)
        except (StorageError, OSError) as e:
            logger.error("Failed to upload file %s for request %s: %s", f.filename, req.service_queue_id, e)
            continue
        att = RequestAttachment(
            request=req,
            file_name=f.filename,
            file_path=key,
            file_size=len(data),
            mime_type=mime,
            uploaded_by=actor,
        )
        s.add(att)
        saved.append(att)
    s.flush()
    return saved


def announce_attachments(s: "Session", req: "ServiceRequest", actor: User, attachments: Iterable["RequestAttachment"]) -> None:
    for att in attachments:
        notify_attachment_uploaded(s, req, actor, file_name=att.file_name, file_size=att.file_size, mime_type=att.mime_type)


def status_summary(requests: Iterable["ServiceRequest"], today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    summary = {"total": 0, "new": 0, "open": 0, "in_progress": 0, "closed": 0, "overdue": 0}
    for r in requests:
        summary["total"] += 1
        if r.task_status in summary:
            summary[r.task_status] += 1
        if r.is_overdue(today):
            summary["overdue"] += 1
    return summary


# ---------- Serialization ----------
def serialize_note(note: "RequestNote") -> dict:
    return {
        "id": note.id,
        "requestId": note.request_id,
        "noteContent": note.note_content,
        "isInternal": note.is_internal,
        "createdAt": iso(note.created_at),
        "author": user_brief(note.author),
    }


def serialize_attachment(att: "RequestAttachment") -> dict:
    return {
        "id": att.id,
        "requestId": att.request_id,
        "fileName": att.file_name,
        "filePath": att.file_path,
        "fileSize": att.file_size,
        "mimeType": att.mime_type,
        "createdAt": iso(att.created_at),
        "uploadedBy": user_brief(att.uploaded_by),
    }


def serialize_request(req: "ServiceRequest", *, detail: bool = False, include_internal: bool = True) -> dict:
    data = {
        "id": req.id,
        "serviceQueueId": req.service_queue_id,
        "insured": req.insured,
        "companyId": req.company_id,
        "company": {"id": req.company.id, "companyName": req.company.company_name} if req.company else None,
        "taskStatus": req.task_status,
        "serviceRequestNarrative": req.service_request_narrative,
        "serviceQueueCategory": req.service_queue_category,
        "assignedToId": req.assigned_to_id,
        "assignedById": req.assigned_by_id,
        "modifiedById": req.modified_by_id,
        "assignedTo": user_brief(req.assigned_to),
        "assignedBy": user_brief(req.assigned_by),
        "modifiedBy": user_brief(req.modified_by),
        "dueDate": iso(req.due_date),
        "dueTime": req.due_time.strftime("%H:%M") if req.due_time else None,
        "inProgressAt": iso(req.in_progress_at),
        "closedAt": iso(req.closed_at),
        "timeSpent": req.time_spent,
        "isOverdue": req.is_overdue(),
        "createdAt": iso(req.created_at),
        "updatedAt": iso(req.updated_at),
    }
    if detail:
        data["notes"] = [serialize_note(n) for n in req.notes if include_internal or not n.is_internal]
        data["attachments"] = [serialize_attachment(a) for a in req.attachments]
    return data


def visible_requests(s: "Session", user: User):
    """Requests a staff user may see: everything for managers, covered companies or own assignments for agents."""
    from app.servicequeue.modules.service_requests.models import ServiceRequest

    q = s.query(ServiceRequest)
    if user.role in MANAGER_ROLES:
        return q
    company_ids = list(user.agent.assigned_company_ids or []) if user.agent else []
    if company_ids:
        return q.filter(or_(ServiceRequest.company_id.in_(company_ids), ServiceRequest.assigned_to_id == user.id))
    return q.filter(ServiceRequest.assigned_to_id == user.id)
