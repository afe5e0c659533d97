#!/usr/bin/env python3
"""
QA Pulse - Entry Point
========================
One-command startup for the QA Pulse analytics server.

Usage:
    python app.py                        # Start with config.yaml / defaults
    python app.py --port 9000            # Start on custom port
    python app.py --config prod.yaml     # Use another config file

This script:
    1. Loads environment variables from .env (JWT secret, database URL)
    2. Loads configuration from config.yaml
    3. Configures logging
    4. Starts the uvicorn server with the application factory

The server exits immediately if the database cannot be reached.
"""

import argparse
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv


def main():
    """Parse arguments, load config, and start the web server."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="QA Pulse - Real-time test analytics server",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port number (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to config.yaml (default: ./config.yaml)",
    )
    args = parser.parse_args()

    project_dir = os.path.dirname(os.path.abspath(__file__))

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    if args.config:
        os.environ["QAPULSE_CONFIG"] = os.path.abspath(args.config)

    # -- Load configuration to get web server settings -------------------------
    from qapulse.config import ConfigManager, DEFAULTS, mask_url
    try:
        config = ConfigManager(project_dir, os.environ.get("QAPULSE_CONFIG")).load()
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(2)

    level = str(config["logging"].get("level", DEFAULTS["logging"]["level"])).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    # Command-line args override config file
    host = args.host or config["web"].get("host", DEFAULTS["web"]["host"])
    port = args.port or config["web"].get("port", DEFAULTS["web"]["port"])

    # -- Print startup banner --------------------------------------------------
    print()
    print("  QA Pulse v1.0")
    print(f"  Listening : ws://{host}:{port}/ws")
    print(f"  Database  : {mask_url(config['database']['url'])}")
    print()

    # -- Start the web server --------------------------------------------------
    uvicorn.run(
        "qapulse.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        log_level=level.lower(),
    )


if __name__ == "__main__":
    main()
