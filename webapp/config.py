"""Configuration for the Flask application."""

import os
from pathlib import Path


class Config:
    """Flask configuration."""

    # Flask settings
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # CORS settings
    CORS_ORIGINS = "*"

    # Upload settings
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024  # 50MB max tree size

    # Tree opened by POST /session/default when set
    CLADESCOPE_TREE = os.environ.get("CLADESCOPE_TREE")

    # Sessions kept in memory before the oldest is evicted
    MAX_SESSIONS = int(os.environ.get("CLADESCOPE_MAX_SESSIONS", "32"))

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR = Path(os.environ.get("LOG_DIR", "logs"))
