"""
Due-date reminders for open service requests.

Notifies (and emails) the people on every request that is overdue or due
within REMINDER_WINDOW_DAYS days. Meant to run once a day from a scheduler.

Usage:
  python scripts/send_due_reminders.py [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.servicequeue import create_app
from app.servicequeue.constants import STATUS_CLOSED
from app.servicequeue.db import session_scope
from app.servicequeue.modules.notifications.service import notify_due_date_reminder
from app.servicequeue.modules.service_requests.models import ServiceRequest

logger = logging.getLogger("send_due_reminders")


def run(*, dry_run: bool = False, today: date | None = None) -> int:
    app = create_app()
    today = today or date.today()
    window = int(app.config.get("REMINDER_WINDOW_DAYS") or 1)
    sent = 0
    with app.app_context(), session_scope(app) as s:
        rows = (
            s.query(ServiceRequest)
            .filter(
                ServiceRequest.task_status != STATUS_CLOSED,
                ServiceRequest.due_date.isnot(None),
                ServiceRequest.due_date <= today + timedelta(days=window),
            )
            .order_by(ServiceRequest.due_date.asc(), ServiceRequest.id.asc())
            .all()
        )
        for req in rows:
            if dry_run:
                print(f"[dry-run] {req.service_queue_id} due {req.due_date.isoformat()}", flush=True)
                continue
            sent += notify_due_date_reminder(s, req, today=today) or 0
            s.commit()
    logger.info("Due reminders: %s requests checked, %s notifications sent", len(rows), sent)
    print(f"Checked {len(rows)} requests; sent {sent} reminders.", flush=True)
    return sent


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Send due-date reminders for open service requests.")
    parser.add_argument("--dry-run", action="store_true", help="List matching requests without notifying anyone.")
    args = parser.parse_args()
    run(dry_run=args.dry_run)


if __name__ == "__main__":
    main()
