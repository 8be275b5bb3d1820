# --------------------------------------------------------------
#  run.py
# --------------------------------------------------------------
"""Development server runner for the webapp."""

import argparse
from typing import Any, Mapping, cast

from webapp import create_app


def main():
    """Main entry point for the development server."""
    import sys
    import traceback
    from flask import Flask

    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    parser.add_argument("--tree", default=None, help="default tree file (Newick or phyloXML)")
    args = parser.parse_args()

    app: Flask | None = None
    try:
        overrides = {"CLADESCOPE_TREE": args.tree} if args.tree else None
        app = create_app(overrides)
        app.logger.info("[STARTUP] Flask app created successfully")

        config: Mapping[str, Any] = cast(Mapping[str, Any], app.config)
        debug_mode = bool(config.get("DEBUG", False))

        app.logger.info(
            f"[STARTUP] Starting server on {args.host}:{args.port} (debug={debug_mode})"
        )
        app.run(host=args.host, port=args.port, debug=debug_mode)
    except Exception as e:
        if app is not None and hasattr(app, "logger"):
            app.logger.error(f"[ERROR] Failed to start server: {e}", exc_info=True)
        else:
            print(f"[ERROR] Failed to start server: {e}", file=sys.stderr)
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
