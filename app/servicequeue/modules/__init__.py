"""
Feature modules live under this package.

Each module owns its models, service functions and blueprints, and reuses the
platform primitives (auth, RBAC, activity log, storage, email, DB session).
"""
