# --------------------------------------------------------------
#  __init__.py (package root)
# --------------------------------------------------------------
from typing import Any, Mapping, Optional

from flask import Flask
from flask_cors import CORS

from .config import Config
from .services.logging_config import configure_logging
from .services.sessions import SessionStore
from .routes.routes import bp as main_bp

__all__ = ["create_app"]


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Build the Flask application.

    ``config_overrides`` is applied on top of :class:`webapp.config.Config`;
    tests pass ``LOG_DIR`` and session limits through it.
    """
    import sys

    app: Flask | None = None
    try:
        app = Flask(__name__)
        app.config.from_object(Config)
        if config_overrides:
            app.config.update(config_overrides)

        # Configure logging early to capture all messages
        configure_logging(app)

        app.logger.info("[INIT] Enabling CORS...")
        CORS(app, origins=app.config["CORS_ORIGINS"])

        app.extensions["cladescope_sessions"] = SessionStore(app.config["MAX_SESSIONS"])

        app.logger.info("[INIT] Registering blueprints...")
        app.register_blueprint(main_bp)

        app.logger.info("[INIT] Flask app creation complete")
        return app
    except Exception as e:
        # If logging is not configured yet, fallback to stderr
        if app is not None and hasattr(app, "logger"):
            app.logger.error(f"[INIT ERROR] Failed to create app: {e}", exc_info=True)
        else:
            print(f"[INIT ERROR] Failed to create app: {e}", file=sys.stderr)
        raise
