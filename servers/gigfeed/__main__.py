"""
Command line entry point for the gig feed collector.

Run with: python -m servers.gigfeed <command>

Commands:
    collect             Run a collection to completion (scheduled trigger)
    start               Start a collection unless one is already running
    status              Print the last status message
    invalidate ID...    Drop cached events for the given sources
    purge-images        Empty the image cache
    cache-image URL     Cache a single image
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

import structlog

from .config import load_config, validate_config
from .service import CollectService, build_service

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Emit structlog events as JSON lines on stderr."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gigfeed",
        description="Collect event listings into a cached JSON feed",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("collect", help="Run a collection to completion")
    sub.add_parser("start", help="Start a collection and wait for it")
    sub.add_parser("status", help="Print the last status message")

    invalidate = sub.add_parser("invalidate", help="Drop cached events for sources")
    invalidate.add_argument("sources", nargs="+", help="Source ids")

    sub.add_parser("purge-images", help="Empty the image cache")

    cache_image = sub.add_parser("cache-image", help="Cache a single image URL")
    cache_image.add_argument("url", help="Image URL")

    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser


async def dispatch(service: CollectService, args: argparse.Namespace) -> dict[str, Any]:
    """Run one command and return its result as a dict."""
    if args.command == "collect":
        feed = await service.run_now()
        if feed is None:
            return {"status": "already in progress"}
        return {
            "status": "done",
            "shows": len(feed.shows),
            "toDo": feed.to_do,
            "faults": feed.faults,
        }

    if args.command == "start":
        result = await service.start()
        # The process exits with the loop, so stay for the background run
        await service.wait()
        return result.model_dump()

    if args.command == "status":
        return (await service.status()).model_dump()

    if args.command == "invalidate":
        return (await service.invalidate(args.sources)).model_dump()

    if args.command == "purge-images":
        return (await service.purge_images()).model_dump()

    if args.command == "cache-image":
        return (await service.cache_image(args.url)).model_dump()

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, run the command and print its result as JSON."""
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(args.log_level or config["log_level"])

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error("invalid_config", error=error)
        return 2

    service = build_service(config)
    try:
        result = asyncio.run(dispatch(service, args))
    except Exception as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(json.dumps({"status": "error", "detail": str(e)}, indent=2))
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
