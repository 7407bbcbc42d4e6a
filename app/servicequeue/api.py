"""
Small request/response helpers shared by the JSON blueprints.
"""
from __future__ import annotations

from typing import Any

from flask import abort, jsonify, request
from werkzeug.datastructures import FileStorage

from app.servicequeue.utils import parse_int


def request_payload() -> dict[str, Any]:
    """JSON body, or the form fields of a multipart/urlencoded request."""
    if request.is_json:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}
    return request.form.to_dict()


def uploaded_files(field: str = "files") -> list[FileStorage]:
    return [f for f in request.files.getlist(field) if f and f.filename]


def invalid(details: list[str], message: str = "Invalid request data"):
    return jsonify({"error": message, "details": details}), 400


def int_arg(name: str, *, required: bool = True, label: str | None = None) -> int | None:
    """Integer query-string argument; 400 when required and missing or malformed."""
    raw = request.args.get(name)
    value = parse_int(raw)
    if value is None and required:
        abort(400, description=f"{label or name} is required")
    return value


def int_field(payload: dict, name: str, *, label: str | None = None) -> int:
    value = parse_int(payload.get(name))
    if value is None:
        abort(400, description=f"{label or name} is required")
    return value


def text(payload: dict, name: str) -> str:
    return str(payload.get(name) or "").strip()


def flag(payload: dict, name: str) -> bool:
    value = payload.get(name)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
