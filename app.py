# app.py
import os
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import HTTPException

# ----- Extensions (import this in models.py) -----
db = SQLAlchemy()


def _configure_logging(app: Flask) -> None:
    """
    Make INFO logs visible and also write to <LOG_DIR>/securekiosk.log with rotation.
    Render also captures stdout/stderr, so the default handler stays in place.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO)
    app.logger.setLevel(level)
    for h in app.logger.handlers:
        h.setLevel(level)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return
    os.makedirs(log_dir, exist_ok=True)
    file_path = os.path.join(log_dir, "securekiosk.log")

    file_handler = RotatingFileHandler(file_path, maxBytes=1_000_000, backupCount=3)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s"
    ))

    # Avoid adding duplicate handlers if app reloads
    already_added = any(
        isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", "") == file_path
        for h in app.logger.handlers
    )
    if not already_added:
        app.logger.addHandler(file_handler)

    app.logger.info("Logging configured. Writing to %s", file_path)


def _register_error_handlers(app: Flask) -> None:
    """JSON everywhere: 404 fallback, other HTTP errors, and a catch-all 500."""

    @app.errorhandler(404)
    def _not_found(_e):
        return jsonify({"message": "Route not found", "path": request.path}), 404

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"message": e.description or e.name, "path": request.path}), e.code

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        app.logger.exception("Unhandled error on %s %s: %s", request.method, request.path, e)
        try:
            db.session.rollback()
        except Exception:
            app.logger.warning("Session rollback failed after unhandled error")
        detail = str(e) if app.config.get("EXPOSE_ERROR_DETAIL") else "An error occurred"
        return jsonify({"message": "Internal server error", "error": detail}), 500


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__)

    # Load configuration (config.py in project root), then per-instance overrides (tests)
    app.config.from_object("config")
    if config_overrides:
        app.config.update(config_overrides)
        if "APP_ENV" in config_overrides and "EXPOSE_ERROR_DETAIL" not in config_overrides:
            app.config["EXPOSE_ERROR_DETAIL"] = config_overrides["APP_ENV"] != "production"

    db.init_app(app)

    _configure_logging(app)
    _register_error_handlers(app)

    # Import models after db is ready to avoid circulars
    from models import AdBlockRule  # noqa: F401

    # ----- Request log -----
    @app.before_request
    def _log_request():
        app.logger.info("%s - %s %s",
                        datetime.now(timezone.utc).isoformat(), request.method, request.path)

    # ----- Blueprints -----
    if app.config.get("NOTIFICATIONS_ENABLED", True):
        from notifications import bp as notifications_bp
        from services.app_store import load_verification_settings

        settings = load_verification_settings(app.config)
        app.extensions["appstore_verification"] = settings
        if settings.key is None and settings.root is None:
            app.logger.warning("No App Store verification key or root configured; notifications will be rejected")
        app.register_blueprint(notifications_bp)

    if app.config.get("ADBLOCK_ENABLED", True):
        from adblock import bp as adblock_bp
        from services.default_rules import load_default_rules

        app.extensions["adblock_defaults"] = load_default_rules(
            app.config["ADBLOCK_DEFAULT_RULES_PATH"]
        )
        app.logger.info(
            "Loaded default ad-block rules version=%s count=%d",
            app.extensions["adblock_defaults"].version,
            len(app.extensions["adblock_defaults"].rules),
        )
        app.register_blueprint(adblock_bp)

    # ----- Routes -----
    @app.route("/")
    def health():
        return jsonify({
            "status": "Server is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": app.config.get("APP_ENV", "development"),
        })

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
        app.logger.info("Database tables ensured (create_all).")

    return app


if __name__ == "__main__":
    app = create_app()
    app.logger.info("Server running on port %s (environment: %s)",
                    app.config["PORT"], app.config["APP_ENV"])
    app.run(host="0.0.0.0", port=app.config["PORT"], debug=app.config["APP_ENV"] == "development")
