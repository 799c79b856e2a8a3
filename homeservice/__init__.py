import os

from flask import Flask, jsonify, send_from_directory
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from homeservice.config import Config, NegotiationSettings
from homeservice.db import close_db, init_db
from homeservice.db_migrations import register_db_cli
from homeservice.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class())
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_auth(app)
    _register_services(app)
    _register_blueprints(app)
    _register_uploads(app)
    _register_health(app)
    register_db_cli(app)
    _register_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_services(app: Flask) -> None:
    from homeservice.application.negotiation_service import NegotiationService
    from homeservice.routes.negotiation_routes import NEGOTIATION_EXTENSION

    app.extensions[NEGOTIATION_EXTENSION] = NegotiationService(NegotiationSettings.from_mapping(app.config))


def _register_blueprints(app: Flask) -> None:
    from homeservice.routes.auth_routes import auth_bp
    from homeservice.routes.negotiation_routes import negotiation_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(negotiation_bp)


def _register_auth(app: Flask) -> None:
    from homeservice.auth import register_auth

    register_auth(app)


def _register_cli(app: Flask) -> None:
    from homeservice.cli import register_cli

    register_cli(app)


def _register_uploads(app: Flask) -> None:
    prefix = str(app.config.get("UPLOAD_URL_PREFIX") or "/uploads/service-requests").rstrip("/")

    @app.route(f"{prefix}/<path:filename>")
    def uploaded_photo(filename: str):
        return send_from_directory(app.config["UPLOAD_DIR"], filename)


def _register_error_handlers(app: Flask) -> None:
    from homeservice.errors import AppError, SystemError, ValidationError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(RequestEntityTooLarge)
    def _handle_too_large(exc: RequestEntityTooLarge):
        request_id = ensure_request_id()
        mapped = ValidationError(
            code="payload_too_large",
            http_status=413,
            payload={"max_bytes": app.config.get("MAX_CONTENT_LENGTH")},
        )
        _log_error(mapped)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.name.lower().replace(" ", "_"), "message": exc.description}), exc.code

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception("unexpected_exception", extra={"error_code": mapped.code})
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from homeservice.db import get_db

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        try:
            get_db().execute("SELECT 1").fetchall()
        except Exception:
            app.logger.warning("health_db_unreachable", exc_info=True)
            payload["status"] = "degraded"
        return payload, 200
