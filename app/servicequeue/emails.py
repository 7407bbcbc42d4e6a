"""
Transactional email over SMTP.

Every sender returns ``(ok, message)`` and never raises: callers have usually
committed their database work already, so a mail failure is logged and dropped.
When SMTP_SERVER is not configured, messages are logged and skipped.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from flask import current_app, render_template

if TYPE_CHECKING:
    from app.servicequeue.modules.service_requests.models import ServiceRequest
    from app.servicequeue.modules.subtasks.models import SubTask

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "new": "New",
    "open": "Open",
    "in_progress": "In Progress",
    "closed": "Closed",
}


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> tuple[bool, str]:
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or "").strip()
    if not smtp_server:
        logger.info("Email skipped (SMTP_SERVER not configured) to=%s subject=%s", to, subject)
        return False, "SMTP server not configured"
    if not to:
        return False, "No recipient"

    if html:
        msg: MIMEText | MIMEMultipart = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        port = int(cfg.get("SMTP_PORT") or 587)
        with smtplib.SMTP(smtp_server, port, timeout=15) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            username = (cfg.get("SMTP_USERNAME") or "").strip()
            password = (cfg.get("SMTP_PASSWORD") or "").strip()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed sending to=%s: %s", to, e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP error sending to=%s subject=%s", to, subject)
        return False, f"SMTP error: {e}"

    logger.info("Sent email to=%s subject=%s", to, subject)
    return True, "sent"


def _send(to: str, subject: str, heading: str, lines: list[str], *, action_path: str | None = None) -> tuple[bool, str]:
    app_url = current_app.config.get("APP_URL") or ""
    action_url = f"{app_url}{action_path}" if action_path else None
    body = "\n\n".join([heading, *lines] + ([action_url] if action_url else []))
    html = render_template("emails/message.html", heading=heading, lines=lines, action_url=action_url)
    return send_email(to, subject, body, html=html)


def _request_lines(req: "ServiceRequest") -> list[str]:
    return [
        f"Request: {req.service_queue_id}",
        f"Insured: {req.insured}",
        f"Category: {req.service_queue_category.replace('_', ' ').title()}",
    ]


# ---------- Accounts ----------
def send_company_code(to: str, *, company_name: str, company_code: str, primary_contact: str) -> tuple[bool, str]:
    return _send(
        to,
        "Company Registration Successful - Your Company Code",
        f"Welcome, {primary_contact}",
        [
            f"{company_name} is now registered with Service Queue.",
            f"Your company code is {company_code}. Use it to sign in as the company administrator.",
        ],
        action_path="/customer/login",
    )


def send_customer_welcome(to: str, *, first_name: str, login_code: str, company_name: str) -> tuple[bool, str]:
    return _send(
        to,
        "Welcome to Service Queue - Your Login Code",
        f"Welcome, {first_name}",
        [
            f"An account has been created for you at {company_name}.",
            f"Your login code is {login_code}.",
        ],
        action_path="/customer/login",
    )


def send_customer_admin_welcome(to: str, *, first_name: str, login_code: str, company_name: str) -> tuple[bool, str]:
    return _send(
        to,
        "Welcome to Service Queue - Customer Admin Access",
        f"Welcome, {first_name}",
        [
            f"You are now an administrator for {company_name}.",
            f"Your login code is {login_code}. You can manage your team's users and insured accounts.",
        ],
        action_path="/customer/login",
    )


def send_agent_welcome(to: str, *, first_name: str, login_code: str) -> tuple[bool, str]:
    return _send(
        to,
        "Welcome to Service Queue - Agent Access",
        f"Welcome, {first_name}",
        [f"Your agent account is ready. Your login code is {login_code}."],
        action_path="/agent/login",
    )


def send_agent_code_reset(to: str, *, first_name: str, login_code: str) -> tuple[bool, str]:
    return _send(
        to,
        "Agent Login Code Reset - Service Queue",
        f"Hello {first_name}",
        [f"Your agent login code was reset. Your new login code is {login_code}."],
        action_path="/agent/login",
    )


def send_company_code_reset(to: str, *, company_name: str, company_code: str) -> tuple[bool, str]:
    return _send(
        to,
        "Company Code Reset - Service Queue",
        f"Company code updated for {company_name}",
        [f"Your new company code is {company_code}. Previous codes no longer work."],
        action_path="/customer/login",
    )


def send_admin_credentials(to: str, *, first_name: str) -> tuple[bool, str]:
    return _send(
        to,
        "Service Queue - Super Admin Access",
        f"Welcome, {first_name}",
        [
            f"A super admin account was created for {to}.",
            "Your password will be shared with you separately. Please change it after signing in.",
        ],
        action_path="/admin/login",
    )


def send_password_reset(to: str, *, first_name: str, reset_by: str) -> tuple[bool, str]:
    return _send(
        to,
        "Password Reset - Service Queue",
        f"Hello {first_name}",
        [f"Your password was reset by {reset_by}. If you did not expect this, contact an administrator."],
        action_path="/admin/login",
    )


# ---------- Requests ----------
def send_new_request(to: str, *, request: "ServiceRequest", created_by: str) -> tuple[bool, str]:
    return _send(
        to,
        f"New Service Request - {request.service_queue_id}",
        "A new service request was submitted",
        [*_request_lines(request), f"Submitted by: {created_by}", request.service_request_narrative],
        action_path=f"/requests/{request.id}",
    )


def send_request_assigned(to: str, *, request: "ServiceRequest", assigned_by: str) -> tuple[bool, str]:
    lines = [*_request_lines(request), f"Assigned by: {assigned_by}"]
    if request.due_date:
        lines.append(f"Due: {request.due_date.isoformat()}")
    return _send(
        to,
        f"New Assignment - {request.service_queue_id}",
        "A service request was assigned to you",
        lines,
        action_path=f"/requests/{request.id}",
    )


def send_status_update(
    to: str, *, request: "ServiceRequest", old_status: str, new_status: str, updated_by: str
) -> tuple[bool, str]:
    return _send(
        to,
        f"Status Update - {request.service_queue_id}",
        "A service request changed status",
        [
            *_request_lines(request),
            f"Status: {STATUS_LABELS.get(old_status, old_status)} -> {STATUS_LABELS.get(new_status, new_status)}",
            f"Updated by: {updated_by}",
        ],
        action_path=f"/requests/{request.id}",
    )


def send_note_added(
    to: str, *, request: "ServiceRequest | None", note_content: str, author_name: str
) -> tuple[bool, str]:
    sq_id = request.service_queue_id if request else "N/A"
    lines = _request_lines(request) if request else []
    return _send(
        to,
        f"New Note Added - {sq_id}",
        f"{author_name} added a note",
        [*lines, note_content],
        action_path=f"/requests/{request.id}" if request else None,
    )


def send_due_date_reminder(to: str, *, request: "ServiceRequest", days_until_due: int) -> tuple[bool, str]:
    if days_until_due < 0:
        urgency = "Overdue"
        when = f"was due {abs(days_until_due)} day(s) ago"
    elif days_until_due == 0:
        urgency = "Due Soon"
        when = "is due today"
    else:
        urgency = "Due Soon"
        when = "is due tomorrow" if days_until_due == 1 else f"is due in {days_until_due} days"
    return _send(
        to,
        f"{urgency} - {request.service_queue_id}",
        f"Request {request.service_queue_id} {when}",
        _request_lines(request),
        action_path=f"/requests/{request.id}",
    )


def send_assignment_change_request(
    to: str,
    *,
    request: "ServiceRequest",
    requested_by: str,
    current_assignee: str,
    requested_assignee: str,
    reason: str,
) -> tuple[bool, str]:
    return _send(
        to,
        f"Assignment Change Request - {request.service_queue_id}",
        f"{requested_by} requested a reassignment",
        [
            *_request_lines(request),
            f"Current assignee: {current_assignee}",
            f"Requested assignee: {requested_assignee}",
            f"Reason: {reason}",
        ],
        action_path="/agent/assignment-changes",
    )


def send_assignment_change_reviewed(
    to: str, *, request: "ServiceRequest", approved: bool, reviewer: str, comment: str | None
) -> tuple[bool, str]:
    outcome = "Approved" if approved else "Rejected"
    lines = [*_request_lines(request), f"Reviewed by: {reviewer}"]
    if comment:
        lines.append(f"Comment: {comment}")
    return _send(
        to,
        f"Assignment Change {outcome} - {request.service_queue_id}",
        f"Your assignment change request was {outcome.lower()}",
        lines,
        action_path=f"/requests/{request.id}",
    )


def send_subtask_completed(to: str, *, subtask: "SubTask", completed_by: str) -> tuple[bool, str]:
    return _send(
        to,
        "Subtask Completed",
        f"{completed_by} completed subtask {subtask.task_id}",
        [f"Request: {subtask.request.service_queue_id}", subtask.task_description],
        action_path=f"/requests/{subtask.request_id}",
    )
