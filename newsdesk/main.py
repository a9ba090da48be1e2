"""Newsdesk CLI entrypoint.

Run the analysis loop, a single tick, or the API server::

    python -m newsdesk.main              # analysis loop (default)
    python -m newsdesk.main --once       # one tick, print the summary, exit
    python -m newsdesk.main --server     # API with the cron trigger endpoint
    python -m newsdesk.main --once --mock
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from newsdesk import __version__
from newsdesk.config import get_settings
from newsdesk.errors import FatalDriverError
from newsdesk.utils import setup_logging

logger = logging.getLogger("newsdesk")

BANNER = rf"""
  _ __   _____      _____  __| | ___  ___| | __
 | '_ \ / _ \ \ /\ / / __|/ _` |/ _ \/ __| |/ /
 | | | |  __/\ V  V /\__ \ (_| |  __/\__ \   <
 |_| |_|\___| \_/\_/ |___/\__,_|\___||___/_|\_\  v{__version__}
  Market-news analysis pipeline
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="newsdesk",
        description="Newsdesk: market-news ingestion and AI analysis",
    )
    parser.add_argument("--server", action="store_true", help="Run the FastAPI server")
    parser.add_argument("--once", action="store_true", help="Run a single analysis tick then exit")
    parser.add_argument("--mock", action="store_true", help="Enable mock mode (no real API calls)")
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.mock:
        settings.__dict__["mock_mode"] = True

    if args.server:
        import uvicorn
        from newsdesk.api.app import create_app

        config = uvicorn.Config(
            create_app(),
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
        )
        await uvicorn.Server(config).serve()
        return 0

    from newsdesk.db.database import init_db
    from newsdesk.workers.news_analysis_worker import build_worker

    await init_db()
    worker = build_worker(mock=settings.mock_mode)
    try:
        if args.once:
            if not settings.news_analysis_enabled:
                logger.info("News analysis disabled, nothing to do")
                return 0
            try:
                summary = await worker.run_once()
            except FatalDriverError as exc:
                logger.error("Tick aborted: %s", exc)
                return 2
            print(json.dumps(summary.as_dict(), indent=2))
            return 0

        await worker.run()
        return 0
    finally:
        await worker.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    print(BANNER, file=sys.stderr)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
