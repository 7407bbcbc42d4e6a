"""
Service requests: the customer-submitted work items and their notes/attachments.

Lifecycle: new -> open -> in_progress -> closed (closed may be reopened).
Closing requires a note, a prior in_progress transition and an assignee.
"""
