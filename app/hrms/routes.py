from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from app.hrms.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"name": "Meeting Matters HRMS", "api": "/api"})


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including DB reachability."""
    db_ok = True
    try:
        db_session().execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.error("Health check DB error: %s", e)
        db_ok = False
    return jsonify({"ok": db_ok, "db": db_ok}), (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """
    Fast health check for the load balancer. No DB access, minimal overhead.
    """
    return "ok", 200
