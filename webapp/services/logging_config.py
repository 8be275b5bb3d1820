# --------------------------------------------------------------
#  logging_config.py
# --------------------------------------------------------------
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask


def configure_logging(app: Flask) -> None:
    """Attach both *file* and *console* handlers to ``app.logger``.

    *   **File handler** - plaintext ``backend.log`` in ``LOG_DIR`` (rotates at
        1 MB, keeps 3 backups).
    *   **Console handler** - human-readable output at ``LOG_LEVEL``.
    """
    log_dir = Path(app.config["LOG_DIR"])
    log_dir.mkdir(parents=True, exist_ok=True)

    backend_file = log_dir / "backend.log"
    backend_handler = RotatingFileHandler(
        backend_file,
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    backend_handler.setLevel(logging.DEBUG)
    backend_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "%Y-%m-%d %H:%M:%S",
        )
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "%H:%M:%S",
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers when the factory runs more than once
    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        root_logger.addHandler(backend_handler)
        root_logger.addHandler(console_handler)

    if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
        app.logger.handlers = []
        app.logger.addHandler(backend_handler)
        app.logger.addHandler(console_handler)

    app.logger.setLevel(logging.DEBUG)
    app.logger.propagate = False

    for module in ["cladescope", "webapp"]:
        logging.getLogger(module).setLevel(logging.DEBUG)

    app.logger.info(f"Logging configured. Log file: {backend_file}")
