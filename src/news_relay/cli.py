"""
Command line entry point.

    news-relay run [--topic ID ...] [--dry-run]
    news-relay serve [--interval-minutes N]
    news-relay watermarks

Exit codes: 0 when every source and delivery succeeded, 1 when a run
completed with failures or aborted, 2 for configuration errors.
"""

import argparse
import asyncio
import sys
import time
from typing import Optional

from news_relay import __version__
from news_relay.config import Config, reload_config
from news_relay.core.factories import create_watermark_store, run_relay
from news_relay.core.scheduler import create_scheduler
from news_relay.exceptions import ConfigurationError
from news_relay.logger import get_logger, setup_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="news-relay",
        description="Relay fresh RSS/Atom articles to Slack",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config", default=None,
        help="YAML configuration file (default: config/news_relay.yaml when present)",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run once and exit")
    run_parser.add_argument(
        "-t", "--topic", action="append", dest="topics", default=[],
        help="Topic id to run; repeat for several (default: all topics)",
    )
    run_parser.add_argument(
        "--dry-run", action="store_true",
        help="Log the rendered messages without delivering or storing watermarks",
    )

    serve_parser = subparsers.add_parser("serve", help="Run periodically until interrupted")
    serve_parser.add_argument(
        "-t", "--topic", action="append", dest="topics", default=[],
        help="Topic id to run; repeat for several (default: all topics)",
    )
    serve_parser.add_argument(
        "--interval-minutes", type=int, default=None,
        help="Minutes between runs (default: schedule_interval_minutes)",
    )

    subparsers.add_parser("watermarks", help="Show stored watermarks")
    return parser


def _run(config: Config, args: argparse.Namespace) -> int:
    report = asyncio.run(run_relay(config, topics=args.topics, dry_run=args.dry_run))
    print(report.summary())
    return EXIT_OK if report.ok else EXIT_RUN_FAILED


def _serve(config: Config, args: argparse.Namespace) -> int:
    # Validate the topic selection once, before scheduling
    config.resolve_topics(args.topics)

    scheduler = create_scheduler(
        lambda: run_relay(config, topics=args.topics),
        interval_minutes=args.interval_minutes,
        config=config,
    )
    scheduler.start()
    try:
        while scheduler.is_running():
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Interrupted, shutting down")
    finally:
        if scheduler.is_running():
            scheduler.stop()

    stats = scheduler.get_stats()
    logger.info(
        f"Served {stats.total_executions} run(s): {stats.successful_executions} ok, "
        f"{stats.partial_executions} partial, {stats.failed_executions} failed"
    )
    return EXIT_OK


def _watermarks(config: Config, args: argparse.Namespace) -> int:
    store = create_watermark_store(config)
    snapshot = store.snapshot()
    if not snapshot:
        print("No watermarks stored")
        return EXIT_OK

    width = max(len(key) for key in snapshot)
    for key, instant in snapshot.items():
        print(f"{key:<{width}}  {instant.isoformat()}")
    return EXIT_OK


COMMANDS = {
    "run": _run,
    "serve": _serve,
    "watermarks": _watermarks,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, configure logging and dispatch the command.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        config = reload_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logger(level=args.log_level, log_config=config.logging)

    try:
        return COMMANDS[args.command](config, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
