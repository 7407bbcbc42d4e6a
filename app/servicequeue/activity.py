from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import g, has_request_context

from app.servicequeue.constants import ACTIVITY_TYPES
from app.servicequeue.models import ActivityLog
from app.servicequeue.utils import display_timestamp, iso, json_dumps_sorted, json_loads_safe

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.servicequeue.models import User

logger = logging.getLogger(__name__)


def record_activity(
    s: "Session",
    *,
    actor: "User | None",
    type: str,
    description: str,
    company_id: int | None = None,
    request_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """
    Append an activity log row. The caller owns the transaction.
    """
    if type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {type}")
    rid = getattr(g, "request_id", None) if has_request_context() else None
    entry = ActivityLog(
        type=type,
        description=description,
        user_id=actor.id if actor else None,
        company_id=company_id if company_id is not None else (actor.company_id if actor else None),
        request_id=request_id,
        request_uid=rid,
        metadata_json=json_dumps_sorted(metadata),
    )
    s.add(entry)
    logger.debug("activity type=%s request_id=%s company_id=%s", type, request_id, entry.company_id)
    return entry


def serialize_activity(entry: ActivityLog) -> dict:
    user = entry.user
    return {
        "id": entry.id,
        "type": entry.type,
        "description": entry.description,
        "createdAt": iso(entry.created_at),
        "timestamp": display_timestamp(entry.created_at),
        "requestId": entry.request_id,
        "companyId": entry.company_id,
        "metadata": json_loads_safe(entry.metadata_json),
        "user": (
            {"id": user.id, "firstName": user.first_name, "lastName": user.last_name, "email": user.email, "role": user.role}
            if user
            else {"firstName": "Unknown", "lastName": "User"}
        ),
    }
