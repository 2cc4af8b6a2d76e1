import logging

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.errors import PortalError
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.modules.issues.api import bp as issues_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        for key in ("SECRET_KEY", "JWT_SECRET"):
            if not app.config.get(key) or str(app.config[key]) in ("", "change-me"):
                raise RuntimeError(f"{key} must be set to a strong value in production (not default).")

    init_db(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(issues_bp, url_prefix="/api/issues")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            for table in ("accounts", "issues", "audit_events"):
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
            if insp.has_table("issues"):
                cols = {c["name"] for c in insp.get_columns("issues")}
                for col in ("version", "deleted_at", "resolved_at", "closed_at"):
                    if col not in cols:
                        missing.append(f"issues.{col}")
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        if missing:
            app.config["_schema_health_ok"] = False
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/api/"):
            return None
        # Tables may have been created after boot (tests, init script); look again before refusing.
        app.config["_schema_health_ok"] = True
        _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        return jsonify({"error": "SchemaOutOfDate", "missing": app.config.get("_schema_health_missing") or []}), 503

    @app.errorhandler(PortalError)
    def _err_portal(e: PortalError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s): %s", type(e).__name__, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "InternalServerError", "message": "Unexpected server error."}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
