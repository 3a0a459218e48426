"""
pdfraster Service — Main Entry Point
====================================
Starts the Flask-based conversion microservice.

Usage:
    python main.py                    # Default: 0.0.0.0:5000
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode
"""

import argparse
import logging

from pdfraster.server import app, create_app

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="pdfraster conversion service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    parser.add_argument(
        "--max-upload-mb", type=int, default=100,
        help="Largest accepted PDF upload in megabytes",
    )
    args = parser.parse_args()

    create_app({"MAX_CONTENT_LENGTH": args.max_upload_mb * 1024 * 1024})

    logger.info(f"Max upload size: {args.max_upload_mb} MB")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
