from __future__ import annotations

import logging

from flask import Blueprint, abort, current_app, jsonify, request, send_file

from app.servicequeue.api import int_arg
from app.servicequeue.constants import CUSTOMER_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.modules.service_requests.models import RequestAttachment
from app.servicequeue.rbac import current_user, require_auth
from app.servicequeue.storage import StorageError, storage_from_config
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("uploads", __name__)


def _visible(att: RequestAttachment | None) -> RequestAttachment:
    u = current_user()
    if att is None or (u.role in CUSTOMER_ROLES and att.request.company_id != u.company_id):
        abort(404, description="Attachment not found")
    return att


@bp.delete("/delete")
@require_auth
def delete_attachment():
    s = db_session()
    attachment_id = int_arg("attachmentId", label="Attachment ID")
    att = _visible(s.get(RequestAttachment, attachment_id))

    storage = storage_from_config(current_app.config)
    try:
        storage.delete(att.file_path)
    except Exception:
        logger.exception("Storage delete failed for attachment_id=%s key=%s", att.id, att.file_path)

    s.delete(att)
    s.commit()
    return jsonify({"success": True})


@bp.get("/download")
@require_auth
def download():
    s = db_session()
    request_id = parse_int(request.args.get("requestId"))
    file_name = (request.args.get("fileName") or "").strip()
    if request_id is None or not file_name:
        abort(400, description="Request ID and filename required")

    att = (
        s.query(RequestAttachment)
        .filter(RequestAttachment.request_id == request_id, RequestAttachment.file_name == file_name)
        .order_by(RequestAttachment.created_at.desc())
        .first()
    )
    if att is None:
        abort(404, description="File not found")
    att = _visible(att)

    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(att.file_path)
    except StorageError:
        abort(404, description="File not accessible")

    return send_file(
        fobj,
        mimetype=att.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=att.file_name,
        max_age=0,
    )
