"""
Run script for starting the Voice Relay server with low-latency WebSocket settings.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL]
"""

import argparse
import os
import sys

import uvicorn

from voice_relay.config.logging_config import configure_logging

logger = configure_logging()

REQUIRED_KEYS = ("DEEPGRAM_API_KEY", "OPENAI_API_KEY", "ELEVEN_API_KEY")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Start the Voice Relay server"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="Port to run the server on (default: 3000 or PORT env var)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind the server to (default: 0.0.0.0 or HOST env var)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO or LOG_LEVEL env var)",
    )
    return parser.parse_args(argv)


def main():
    """Main entry point for starting the server."""
    args = parse_args()
    os.environ["LOG_LEVEL"] = args.log_level

    missing = [key for key in REQUIRED_KEYS if not os.getenv(key)]
    for key in missing:
        logger.warning(f"{key} environment variable not set; the related provider calls will fail")

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    logger.info(f"Log level: {args.log_level}")

    try:
        uvicorn.run(
            "voice_relay.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            http="h11",
            access_log=False,
            reload=os.getenv("ENV", "production").lower() == "development",
        )
    except OSError as e:
        logger.error(f"Could not start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
