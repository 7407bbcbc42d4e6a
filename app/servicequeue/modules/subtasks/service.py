from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING

from app.servicequeue.constants import STATUS_CLOSED, STATUS_NEW, TASK_STATUSES
from app.servicequeue.modules.service_requests.service import field, find_assignable_user
from app.servicequeue.modules.subtasks.models import SubTask
from app.servicequeue.serializers import user_brief
from app.servicequeue.utils import generate_task_id, iso, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.servicequeue.models import User
    from app.servicequeue.modules.service_requests.models import ServiceRequest

logger = logging.getLogger(__name__)


def new_task_id(s: "Session") -> str:
    for _ in range(10):
        task_id = generate_task_id()
        if s.query(SubTask.id).filter(SubTask.task_id == task_id).first() is None:
            return task_id
        time.sleep(0.001)
    raise RuntimeError("Could not generate a unique task id")


def validate_subtask_payload(s: "Session", payload: dict) -> tuple[list[str], "User | None"]:
    errors = []
    if not field(payload, "taskDescription"):
        errors.append("Task description is required.")
    assignee = find_assignable_user(s, payload.get("assignedToId"))
    if assignee is None:
        errors.append("A valid assignee is required.")
    try:
        parse_date(payload.get("dueDate"))
    except ValueError:
        errors.append("Invalid due date. Use YYYY-MM-DD.")
    return errors, assignee


def create_subtask(s: "Session", req: "ServiceRequest", payload: dict, actor: "User", *, assignee: "User") -> SubTask:
    subtask = SubTask(
        task_id=new_task_id(s),
        request=req,
        task_description=field(payload, "taskDescription"),
        assigned_to=assignee,
        assigned_by=actor,
        due_date=parse_date(payload.get("dueDate")),
        task_status=STATUS_NEW,
    )
    s.add(subtask)
    s.flush()
    logger.info("Created subtask %s on %s", subtask.task_id, req.service_queue_id)
    return subtask


def update_subtask(s: "Session", subtask: SubTask, payload: dict, *, full_edit: bool) -> tuple[bool, list[str]]:
    """
    Apply an edit. Returns (completed_now, errors); without ``full_edit`` only the status is considered.
    """
    errors: list[str] = []
    status = field(payload, "taskStatus", "status")
    if status and status not in TASK_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")

    description = assignee = None
    due_date = subtask.due_date
    if full_edit:
        description = field(payload, "taskDescription")
        if field(payload, "assignedToId"):
            assignee = find_assignable_user(s, payload.get("assignedToId"))
            if assignee is None:
                errors.append("A valid assignee is required.")
        if "dueDate" in payload:
            try:
                due_date = parse_date(payload.get("dueDate"))
            except ValueError:
                errors.append("Invalid due date. Use YYYY-MM-DD.")
    if errors:
        return False, errors

    completed_now = bool(status == STATUS_CLOSED and subtask.task_status != STATUS_CLOSED)
    if status:
        subtask.task_status = status
    if description:
        subtask.task_description = description
    if assignee is not None:
        subtask.assigned_to = assignee
    subtask.due_date = due_date
    subtask.updated_at = datetime.utcnow()
    s.flush()
    return completed_now, []


def serialize_subtask(subtask: SubTask) -> dict:
    req = subtask.request
    return {
        "id": subtask.id,
        "taskId": subtask.task_id,
        "requestId": subtask.request_id,
        "serviceQueueId": req.service_queue_id if req else None,
        "taskDescription": subtask.task_description,
        "taskStatus": subtask.task_status,
        "dueDate": iso(subtask.due_date),
        "assignedTo": user_brief(subtask.assigned_to),
        "assignedBy": user_brief(subtask.assigned_by),
        "createdAt": iso(subtask.created_at),
        "updatedAt": iso(subtask.updated_at),
    }
