from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.servicequeue.constants import (
    ROLE_AGENT,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_NEW,
    STATUS_OPEN,
    TASK_STATUSES,
)
from app.servicequeue.models import Company, User
from app.servicequeue.modules.service_requests.models import RequestAttachment, RequestNote, ServiceRequest
from app.servicequeue.utils import display_timestamp, iso, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session

REPORT_STATUSES = ("all",) + TASK_STATUSES
REPORT_DATE_RANGES = ("all", "today", "week", "month", "quarter")
REPORT_TIME_RANGES = ("daily", "weekly", "monthly")


def _blank_counts() -> dict[str, int]:
    return {status: 0 for status in TASK_STATUSES}


def status_counts(q: "Query") -> dict[str, int]:
    """Counts per task status for a ServiceRequest query."""
    rows = q.with_entities(ServiceRequest.task_status, func.count(ServiceRequest.id)).group_by(ServiceRequest.task_status).all()
    counts = _blank_counts()
    for status, n in rows:
        if status in counts:
            counts[status] = int(n)
    return counts


def overdue_count(q: "Query", today: date) -> int:
    return (
        q.filter(ServiceRequest.due_date.isnot(None), ServiceRequest.due_date < today, ServiceRequest.task_status != STATUS_CLOSED)
        .count()
    )


# ---------- Admin ----------
def admin_stats(s: "Session", today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    q = s.query(ServiceRequest)
    counts = status_counts(q)
    total = sum(counts.values())
    active_users = s.query(User).filter(User.is_active.is_(True))
    return {
        "totalRequests": total,
        "totalCustomers": s.query(Company).count(),
        "totalAgents": active_users.filter(User.role == ROLE_AGENT).count(),
        "totalUsers": active_users.count(),
        "activeRequests": total - counts[STATUS_CLOSED],
        "completedRequests": counts[STATUS_CLOSED],
        "overdueRequests": overdue_count(q, today),
    }


def _name(user: User | None) -> dict | None:
    if user is None:
        return None
    return {"firstName": user.first_name, "lastName": user.last_name}


def _company_name(company: Company | None) -> dict | None:
    return {"companyName": company.company_name} if company else None


def activity_feed(s: "Session", *, requests: int = 5, notes: int = 3, attachments: int = 2) -> list[dict]:
    """Latest requests, notes and uploads merged into one newest-first feed."""
    items: list[tuple[datetime, dict]] = []

    for r in s.query(ServiceRequest).order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc()).limit(requests):
        items.append(
            (
                r.created_at,
                {
                    "id": r.id,
                    "type": "request_created",
                    "description": f"New service request created for {r.insured}",
                    "user": _name(r.assigned_by),
                    "company": _company_name(r.company),
                },
            )
        )
    for n in s.query(RequestNote).order_by(RequestNote.created_at.desc(), RequestNote.id.desc()).limit(notes):
        items.append(
            (
                n.created_at,
                {
                    "id": n.id,
                    "type": "note_added",
                    "description": f"Added note to request {n.request.service_queue_id if n.request else 'Unknown'}",
                    "user": _name(n.author),
                    "company": _company_name(n.request.company if n.request else None),
                },
            )
        )
    for a in s.query(RequestAttachment).order_by(RequestAttachment.created_at.desc(), RequestAttachment.id.desc()).limit(attachments):
        items.append(
            (
                a.created_at,
                {
                    "id": a.id,
                    "type": "attachment_uploaded",
                    "description": f"Uploaded {a.file_name} to request {a.request.service_queue_id if a.request else 'Unknown'}",
                    "user": _name(a.uploaded_by),
                    "company": _company_name(a.request.company if a.request else None),
                },
            )
        )

    items.sort(key=lambda pair: pair[0], reverse=True)
    return [{**data, "createdAt": iso(ts), "timestamp": display_timestamp(ts)} for ts, data in items]


def customer_ticket_rows(s: "Session") -> list[dict]:
    by_company: dict[int, dict[str, int]] = {}
    rows = (
        s.query(ServiceRequest.company_id, ServiceRequest.task_status, func.count(ServiceRequest.id))
        .group_by(ServiceRequest.company_id, ServiceRequest.task_status)
        .all()
    )
    for company_id, status, n in rows:
        by_company.setdefault(company_id, _blank_counts())[status] = int(n)

    out = []
    for c in s.query(Company).order_by(Company.company_name.asc()).all():
        counts = by_company.get(c.id, _blank_counts())
        out.append(
            {
                "id": c.id,
                "companyName": c.company_name,
                "primaryContact": c.primary_contact,
                "email": c.email,
                "openTickets": counts[STATUS_NEW] + counts[STATUS_OPEN],
                "wipTickets": counts[STATUS_IN_PROGRESS],
                "closedTickets": counts[STATUS_CLOSED],
                "modifiedBy": c.primary_contact,
                "modifiedOn": c.updated_at.strftime("%m/%d/%Y %I:%M %p") if c.updated_at else None,
            }
        )
    return out


# ---------- Customer ----------
def customer_stats(s: "Session", company_id: int, today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    q = s.query(ServiceRequest).filter(ServiceRequest.company_id == company_id)
    counts = status_counts(q)
    return {
        "totalRequests": sum(counts.values()),
        "newRequests": counts[STATUS_NEW],
        "inProgressRequests": counts[STATUS_IN_PROGRESS] + counts[STATUS_OPEN],
        "completedRequests": counts[STATUS_CLOSED],
        "overdueRequests": overdue_count(q, today),
    }


# ---------- Agent ----------
def agent_stats(s: "Session", user: User, today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    q = s.query(ServiceRequest).filter(ServiceRequest.assigned_to_id == user.id)
    counts = status_counts(q)
    start = datetime.combine(today, time.min)
    completed_today = q.filter(
        ServiceRequest.task_status == STATUS_CLOSED,
        ServiceRequest.closed_at >= start,
        ServiceRequest.closed_at < start + timedelta(days=1),
    ).count()

    clients = q.with_entities(ServiceRequest.company_id).distinct()
    company_ids = list(user.agent.assigned_company_ids or []) if user.agent else []
    if company_ids:
        clients = clients.filter(ServiceRequest.company_id.in_(company_ids))

    return {
        "totalAssigned": sum(counts.values()),
        "newRequests": counts[STATUS_NEW],
        "inProgressRequests": counts[STATUS_IN_PROGRESS] + counts[STATUS_OPEN],
        "completedRequests": completed_today,
        "overdueRequests": overdue_count(q, today),
        "totalClients": clients.count(),
    }


# ---------- Customer report ----------
def validate_report_params(args: Any) -> tuple[dict[str, Any], list[str]]:
    """Read report filters from a query-string mapping. Returns (params, errors)."""
    errors: list[str] = []
    params: dict[str, Any] = {
        "status": (args.get("status") or "all").strip(),
        "dateRange": (args.get("dateRange") or "all").strip(),
        "timeRange": (args.get("timeRange") or "monthly").strip(),
        "startDate": None,
        "endDate": None,
    }
    if params["status"] not in REPORT_STATUSES:
        errors.append(f"status must be one of: {', '.join(REPORT_STATUSES)}")
    if params["dateRange"] not in REPORT_DATE_RANGES:
        errors.append(f"dateRange must be one of: {', '.join(REPORT_DATE_RANGES)}")
    if params["timeRange"] not in REPORT_TIME_RANGES:
        errors.append(f"timeRange must be one of: {', '.join(REPORT_TIME_RANGES)}")
    for key in ("startDate", "endDate"):
        try:
            params[key] = parse_date(args.get(key))
        except ValueError:
            errors.append(f"{key} must be a date (YYYY-MM-DD).")
    return params, errors


def _week_start(d: date) -> date:
    # weeks start on Sunday
    return d - timedelta(days=(d.weekday() + 1) % 7)


def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


def _add_months(d: date, months: int) -> date:
    idx = d.month - 1 + months
    return date(d.year + idx // 12, idx % 12 + 1, 1)


def date_range_bounds(name: str, today: date) -> tuple[datetime, datetime] | None:
    if name == "today":
        return _day_bounds(today, today)
    if name == "week":
        start = _week_start(today)
        return _day_bounds(start, start + timedelta(days=6))
    if name == "month":
        last = calendar.monthrange(today.year, today.month)[1]
        return _day_bounds(today.replace(day=1), today.replace(day=last))
    if name == "quarter":
        start = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
        end = _add_months(start, 3) - timedelta(days=1)
        return _day_bounds(start, end)
    return None


def percentage_change(current: int, previous: int) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) * 100 / previous)


def _bucket(counts: dict[str, int], label: str) -> dict:
    return {
        "month": label,
        "newTickets": counts[STATUS_NEW],
        "wipTickets": counts[STATUS_IN_PROGRESS] + counts[STATUS_OPEN],
        "closedTickets": counts[STATUS_CLOSED],
        "totalPastDue": 0,
    }


def _time_series(rows: list[tuple[datetime, str]], time_range: str, start: datetime, end: datetime) -> list[dict]:
    series: list[dict] = []
    if time_range == "daily":
        days = min((end.date() - start.date()).days + 1, 30)
        for i in range(days):
            day = start.date() + timedelta(days=i)
            counts = _blank_counts()
            for created, status in rows:
                if created.date() == day and status in counts:
                    counts[status] += 1
            series.append(_bucket(counts, f"{day.month}/{day.day}"))
    elif time_range == "weekly":
        weeks = min(-(-((end.date() - start.date()).days + 1) // 7), 12)
        for i in range(weeks):
            week_start = start.date() + timedelta(days=7 * i)
            week_end = week_start + timedelta(days=6)
            counts = _blank_counts()
            for created, status in rows:
                if week_start <= created.date() <= week_end and status in counts:
                    counts[status] += 1
            series.append(_bucket(counts, week_start.strftime("%m/%d")))
    else:
        first = start.date().replace(day=1)
        months = min((end.year - first.year) * 12 + end.month - first.month + 1, 12)
        for i in range(months):
            month_start = _add_months(first, i)
            month_end = _add_months(first, i + 1)
            counts = _blank_counts()
            for created, status in rows:
                if month_start <= created.date() < month_end and status in counts:
                    counts[status] += 1
            series.append(_bucket(counts, month_start.strftime("%b")))
    return series


def build_report(s: "Session", company_id: int, params: dict[str, Any], now: datetime | None = None) -> dict:
    """
    Ticket report for one company.

    Totals honour the date filter only; the status filter narrows the time series.
    An explicit startDate/endDate pair wins over ``dateRange``.
    """
    now = now or datetime.utcnow()
    today = now.date()
    base = s.query(ServiceRequest).filter(ServiceRequest.company_id == company_id)

    bounds = None
    if params.get("startDate") and params.get("endDate"):
        bounds = _day_bounds(params["startDate"], params["endDate"])
    elif params.get("dateRange", "all") != "all":
        bounds = date_range_bounds(params["dateRange"], today)

    filtered = base
    if bounds:
        filtered = filtered.filter(ServiceRequest.created_at >= bounds[0], ServiceRequest.created_at <= bounds[1])
    totals = status_counts(filtered)

    week_start = _week_start(today)
    current_week = status_counts(base.filter(*_created_between(*_day_bounds(week_start, week_start + timedelta(days=6)))))
    previous_week = status_counts(
        base.filter(*_created_between(*_day_bounds(week_start - timedelta(days=7), week_start - timedelta(days=1))))
    )

    if bounds:
        start, end = bounds
    elif params.get("timeRange") == "daily":
        start, end = now - timedelta(days=30), now
    elif params.get("timeRange") == "weekly":
        start, end = now - timedelta(weeks=12), now
    else:
        start, end = datetime.combine(_add_months(today.replace(day=1), -11), time.min), now

    series_q = base.filter(*_created_between(start, end))
    if params.get("status", "all") != "all":
        series_q = series_q.filter(ServiceRequest.task_status == params["status"])
    rows = series_q.with_entities(ServiceRequest.created_at, ServiceRequest.task_status).all()

    return {
        "summary": {
            "totalNewTickets": totals[STATUS_NEW],
            "totalWipTickets": totals[STATUS_OPEN] + totals[STATUS_IN_PROGRESS],
            "totalClosedTickets": totals[STATUS_CLOSED],
            "totalTasksPastDue": overdue_count(base, today),
            "weeklyChange": {
                "newTickets": percentage_change(current_week[STATUS_NEW], previous_week[STATUS_NEW]),
                "wipTickets": percentage_change(
                    current_week[STATUS_OPEN] + current_week[STATUS_IN_PROGRESS],
                    previous_week[STATUS_OPEN] + previous_week[STATUS_IN_PROGRESS],
                ),
                "closedTickets": percentage_change(current_week[STATUS_CLOSED], previous_week[STATUS_CLOSED]),
                "pastDueTickets": percentage_change(current_week[STATUS_OPEN], previous_week[STATUS_OPEN]),
            },
        },
        "monthlyData": _time_series(rows, params.get("timeRange", "monthly"), start, end),
    }


def _created_between(start: datetime, end: datetime) -> tuple:
    return ServiceRequest.created_at >= start, ServiceRequest.created_at <= end
