import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.hrms.admin import bp as admin_bp
from app.hrms.auth import bp as auth_bp, load_current_user
from app.hrms.config import load_config
from app.hrms.db import init_db, teardown_db_session
from app.hrms.routes import bp as routes_bp
from app.hrms.modules.billing.routes import bp as billing_bp, public_bp as public_billing_bp
from app.hrms.modules.contracts.routes import bp as contracts_bp
from app.hrms.modules.employees.routes import bp as employees_bp, public_bp as public_employees_bp
from app.hrms.modules.leave.routes import bp as leave_bp
from app.hrms.modules.logistics.routes import bp as logistics_bp
from app.hrms.modules.notifications.routes import bp as notifications_bp
from app.hrms.modules.onboarding.routes import bp as onboarding_bp
from app.hrms.modules.projects.routes import bp as projects_bp
from app.hrms.modules.psychometrics.routes import bp as psychometrics_bp, public_bp as public_psychometrics_bp
from app.hrms.modules.recognition.routes import bp as recognition_bp
from app.hrms.modules.social_media.routes import bp as social_media_bp
from app.hrms.modules.tasks.routes import bp as tasks_bp

_UNGUARDED_PREFIXES = ("/health", "/healthz")

_API_BLUEPRINTS = (
    employees_bp,
    onboarding_bp,
    tasks_bp,
    projects_bp,
    leave_bp,
    logistics_bp,
    recognition_bp,
    psychometrics_bp,
    contracts_bp,
    billing_bp,
    social_media_bp,
    notifications_bp,
)

_PUBLIC_BLUEPRINTS = (public_employees_bp, public_psychometrics_bp, public_billing_bp)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.hrms.security import ensure_csrf_token, is_csrf_exempt, validate_csrf
    from app.hrms.utils import error_response

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        if is_csrf_exempt(request.endpoint):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE") and not validate_csrf(request):
            return error_response("CSRF token missing or invalid.", status=400)
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("STRIPE_WEBHOOK_SECRET"):
            app.logger.warning("STRIPE_WEBHOOK_SECRET is not set; Stripe webhooks will be rejected.")

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
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                from app.hrms.storage import S3Storage, storage_from_config

                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    for blueprint in _API_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix="/api")
    for blueprint in _PUBLIC_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix="/public")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):
        body = {"message": e.description or e.name}
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
                body["missing_permission"] = missing
        if e.code == 413:
            body["message"] = "File too large. Maximum size is 10MB."
        return jsonify(body), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        return jsonify({"message": "Internal server error.", "request_id": rid}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
