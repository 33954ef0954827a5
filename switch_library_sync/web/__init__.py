"""Web UI for switch-library-sync."""

import argparse
from pathlib import Path


def create_and_run(data_dir: Path | None = None, port: int = 5000):
    """Create and run the Flask app."""
    from .app import create_app

    app = create_app(data_dir=data_dir)
    app.run(host="127.0.0.1", port=port, debug=False, threaded=True)


def main():
    """Standalone entry point for sls-web."""
    parser = argparse.ArgumentParser(description="switch-library-sync web UI")
    parser.add_argument("--data-dir", type=Path, default=None, help="Application data folder")
    parser.add_argument("--port", type=int, default=5000, help="Port (default 5000)")
    args = parser.parse_args()

    create_and_run(data_dir=args.data_dir, port=args.port)
