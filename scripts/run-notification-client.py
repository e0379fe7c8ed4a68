#!/usr/bin/env python3
"""Run the real-time notification client against a live endpoint.

Connects all four streams (signals, tracked-stock notifications, price
alerts, tracked-stock stats) and logs every desktop notification that
would be shown. Status is logged periodically.

Usage:
    python scripts/run-notification-client.py
    python scripts/run-notification-client.py --url ws://localhost:8080/ws/websocket --user-id 42

Environment Variables:
    REALTIME_WS_URL: Endpoint (default: ws://localhost:8080/ws/websocket)
    REALTIME_USER_ID: User id for the user-scoped streams
    REALTIME_TOKEN: Bearer token sent on CONNECT
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# The src namespace package lives at the repo root
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from src.realtime.client import RealtimeClient  # noqa: E402
from src.realtime.config import load_session_config  # noqa: E402
from src.realtime.shared.identity import IdentityProvider  # noqa: E402
from src.realtime.shared.notifier import LoggingNotifier  # noqa: E402


def log_status(status: dict) -> None:
    """Log one line per stream from RealtimeClient.get_status()."""
    for name, stream in status["streams"].items():
        logger.info(
            "Stream status",
            extra={
                "stream": name,
                "connection": stream["connection"],
                "topics": len(stream["topics"]),
                "buffered": stream["buffered"],
                "shown": stream["notifications_shown"],
                "reconnects": stream["reconnects"],
            },
        )


async def run(args: argparse.Namespace) -> None:
    identity = IdentityProvider(user_id=args.user_id, credential=args.token)
    client = RealtimeClient(
        identity,
        notifier=LoggingNotifier(),
        session_config=load_session_config(url=args.url),
    )
    client.start()
    try:
        while True:
            await asyncio.sleep(args.status_interval)
            log_status(client.get_status())
    finally:
        await client.aclose()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Real-time notification client")
    parser.add_argument(
        "--url",
        default=None,
        help="WebSocket endpoint (default: REALTIME_WS_URL or ws://localhost:8080/ws/websocket)",
    )
    parser.add_argument(
        "--user-id",
        default=os.environ.get("REALTIME_USER_ID"),
        help="User id for user-scoped streams (default: REALTIME_USER_ID)",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("REALTIME_TOKEN"),
        help="Bearer token (default: REALTIME_TOKEN)",
    )
    parser.add_argument(
        "--status-interval",
        type=float,
        default=30.0,
        help="Seconds between status lines (default: 30)",
    )
    args = parser.parse_args()

    if not args.user_id:
        logger.info("No user id given, only broadcast streams will connect")

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
