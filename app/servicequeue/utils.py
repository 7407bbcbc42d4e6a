from __future__ import annotations

import json
import re
import secrets
import time
from datetime import date, datetime, time as dtime
from typing import Any, Callable

from app.servicequeue.constants import CODE_ALPHABET, CODE_LENGTH, CODE_MAX_ATTEMPTS


def generate_code(length: int = CODE_LENGTH) -> str:
    """Random uppercase alphanumeric code (login codes, company codes)."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_unique_code(is_taken: Callable[[str], bool], *, attempts: int = CODE_MAX_ATTEMPTS) -> str:
    for _ in range(attempts):
        code = generate_code()
        if not is_taken(code):
            return code
    raise RuntimeError("Could not generate a unique code; try again.")


def generate_service_queue_id() -> str:
    """SQ + last 6 digits of the ms clock + 4 hex chars, e.g. SQ482913A1F0."""
    ms = str(int(time.time() * 1000))
    return f"SQ{ms[-6:]}{secrets.token_hex(2).upper()}"


def generate_task_id() -> str:
    return f"TASK-{int(time.time() * 1000)}"


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    if len(s) > 10:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    return date.fromisoformat(s)


def parse_time(s: str | None) -> dtime | None:
    """Parse HH:MM or HH:MM:SS."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    return dtime.fromisoformat(s)


def parse_int(v: Any) -> int | None:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def iso(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def display_timestamp(value: datetime | None) -> str:
    """Short human timestamp, e.g. 'Mar 4, 3:07 PM'."""
    if value is None:
        return ""
    hour = value.strftime("%I").lstrip("0") or "12"
    return f"{value.strftime('%b')} {value.day}, {hour}:{value.strftime('%M %p')}"


def json_dumps_sorted(d: dict[str, Any] | None) -> str | None:
    if not d:
        return None
    return json.dumps(d, sort_keys=True, default=str)


def json_loads_safe(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def split_name(full_name: str | None) -> tuple[str, str]:
    """'Jane Q Public' -> ('Jane', 'Q Public'); single words get an empty last name."""
    parts = (full_name or "").strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value.strip()))


def truncate(text: str | None, limit: int = 100) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
