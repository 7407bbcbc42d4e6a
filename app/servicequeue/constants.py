"""
Central constants for the Service Queue application.
"""
from __future__ import annotations

# Roles
ROLE_CUSTOMER = "customer"
ROLE_CUSTOMER_ADMIN = "customer_admin"
ROLE_AGENT = "agent"
ROLE_AGENT_MANAGER = "agent_manager"
ROLE_SUPER_ADMIN = "super_admin"

ALL_ROLES = (ROLE_CUSTOMER, ROLE_CUSTOMER_ADMIN, ROLE_AGENT, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN)
CUSTOMER_ROLES = (ROLE_CUSTOMER, ROLE_CUSTOMER_ADMIN)
AGENT_ROLES = (ROLE_AGENT, ROLE_AGENT_MANAGER)
MANAGER_ROLES = (ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN)
STAFF_ROLES = (ROLE_AGENT, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN)

# Auth cookies (one per role family so a browser can hold several sessions)
COOKIE_SUPER_ADMIN = "auth-token-super-admin"
COOKIE_AGENT = "auth-token-agent"
COOKIE_CUSTOMER = "auth-token-customer"
COOKIE_GENERIC = "auth-token"

ROLE_COOKIES = {
    ROLE_SUPER_ADMIN: COOKIE_SUPER_ADMIN,
    ROLE_AGENT: COOKIE_AGENT,
    ROLE_AGENT_MANAGER: COOKIE_AGENT,
    ROLE_CUSTOMER: COOKIE_CUSTOMER,
    ROLE_CUSTOMER_ADMIN: COOKIE_CUSTOMER,
}
ALL_AUTH_COOKIES = (COOKIE_SUPER_ADMIN, COOKIE_AGENT, COOKIE_CUSTOMER, COOKIE_GENERIC)

# Request lifecycle
STATUS_NEW = "new"
STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"
TASK_STATUSES = (STATUS_NEW, STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_CLOSED)

SERVICE_QUEUE_CATEGORIES = (
    "policy_inquiry",
    "claims_processing",
    "account_update",
    "technical_support",
    "billing_inquiry",
    "insured_service_cancel_non_renewal",
    "other",
)

# Assignment change workflow
CHANGE_PENDING = "pending"
CHANGE_APPROVED = "approved"
CHANGE_REJECTED = "rejected"

# Activity log types
ACTIVITY_TYPES = frozenset(
    {
        "request_created",
        "request_updated",
        "request_assigned",
        "note_added",
        "attachment_uploaded",
        "status_changed",
        "user_created",
        "user_updated",
        "company_updated",
        "assignment_change_requested",
        "assignment_change_approved",
        "assignment_change_rejected",
    }
)

DEFAULT_TIMEZONE = "America/New_York"

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CODE_LENGTH = 7
CODE_MAX_ATTEMPTS = 10

MIN_PASSWORD_LENGTH = 8
