import logging

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.servicequeue.config import load_config
from app.servicequeue.db import init_db, teardown_db_session
from app.servicequeue.routes import bp as routes_bp
from app.servicequeue.auth import bp as auth_bp, load_current_user
from app.servicequeue.modules.service_requests.customer import bp as customer_requests_bp
from app.servicequeue.modules.service_requests.agent import bp as agent_requests_bp
from app.servicequeue.modules.service_requests.admin import bp as admin_requests_bp
from app.servicequeue.modules.assignments.agent import bp as assignments_bp
from app.servicequeue.modules.subtasks.agent import bp as subtasks_bp
from app.servicequeue.modules.agents.admin import bp as agents_admin_bp
from app.servicequeue.modules.customers.admin import bp as customers_admin_bp
from app.servicequeue.modules.customers.customer import bp as customer_accounts_bp
from app.servicequeue.modules.dashboards.admin import bp as admin_dashboards_bp
from app.servicequeue.modules.dashboards.agent import bp as agent_dashboards_bp
from app.servicequeue.modules.dashboards.customer import bp as customer_dashboards_bp
from app.servicequeue.modules.settings.admin import bp as settings_bp
from app.servicequeue.modules.settings.user import bp as user_bp
from app.servicequeue.modules.notifications.routes import bp as notifications_bp
from app.servicequeue.modules.uploads.routes import bp as uploads_bp

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                from app.servicequeue.storage import S3Storage, storage_from_config

                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(user_bp, url_prefix="/api/user")
    app.register_blueprint(customer_requests_bp, url_prefix="/api/customer")
    app.register_blueprint(customer_accounts_bp, url_prefix="/api/customer")
    app.register_blueprint(customer_dashboards_bp, url_prefix="/api/customer")
    app.register_blueprint(agent_requests_bp, url_prefix="/api/agent")
    app.register_blueprint(assignments_bp, url_prefix="/api/agent")
    app.register_blueprint(subtasks_bp, url_prefix="/api/agent")
    app.register_blueprint(agent_dashboards_bp, url_prefix="/api/agent")
    app.register_blueprint(admin_requests_bp, url_prefix="/api/admin")
    app.register_blueprint(agents_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(customers_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(admin_dashboards_bp, url_prefix="/api/admin")
    app.register_blueprint(settings_bp, url_prefix="/api/admin")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(uploads_bp, url_prefix="/api/uploads")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            app.logger.warning("Forbidden: %s %s request_id=%s", request.method, request.path, getattr(g, "request_id", None))
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        max_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify({"error": f"File too large. Maximum size is {max_mb}MB."}), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in container logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500

    logger.info("create_app() complete; app ready to serve")
    return app
