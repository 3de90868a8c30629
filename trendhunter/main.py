from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Sequence

from .app import App, build_app
from .config import load_config
from .event_bus import TOPIC_CREATED, TOPIC_UPDATED
from .logging_utils import setup_logging
from .schemas import TopicChanged, encode_event

logger = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trendhunter",
        description="Cluster freshly listed Solana tokens into topics and keep their market data fresh.",
    )
    parser.add_argument("--config", help="TOML configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)
    run = sub.add_parser("run", help="run ingestion and refresh until interrupted")
    run.add_argument(
        "--print-events", action="store_true", help="print topic events as JSON lines"
    )
    sub.add_parser("ingest-once", help="poll new listings and cluster them once")
    sub.add_parser("refresh-once", help="run a single refresh tick")
    refresh_topic = sub.add_parser("refresh-topic", help="refresh every member of one topic now")
    refresh_topic.add_argument("topic_id", type=int)
    topics = sub.add_parser("topics", help="list topics by hotness")
    topics.add_argument("--limit", type=int, default=20)
    sub.add_parser("status", help="show provider configuration")
    return parser


def _print_event(topic: str):
    def _handler(payload: TopicChanged) -> None:
        sys.stdout.write(encode_event(topic, payload).decode() + "\n")
        sys.stdout.flush()

    return _handler


async def _run_forever(app: App, print_events: bool) -> None:
    if print_events:
        app.bus.subscribe(TOPIC_CREATED, _print_event(TOPIC_CREATED))
        app.bus.subscribe(TOPIC_UPDATED, _print_event(TOPIC_UPDATED))
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass
    await app.scheduler.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")


async def _main(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    setup_logging(args.log_level or config.log_level, json=args.json_logs or config.log_json)
    app = build_app(config)
    try:
        await app.store.ready()
        if args.command == "run":
            await _run_forever(app, args.print_events)
        elif args.command == "ingest-once":
            report = await app.ingestion.poll()
            print(report)
        elif args.command == "refresh-once":
            report = await app.refresher.tick()
            print(report)
        elif args.command == "refresh-topic":
            report = await app.refresher.refresh_topic(args.topic_id)
            print(report)
        elif args.command == "topics":
            for topic in await app.store.list_topics(limit=args.limit):
                print(f"{topic.hotness:8.1f}  {topic.name}  [{topic.keywords}]")
        elif args.command == "status":
            for key, value in app.aggregator.describe().items():
                print(f"{key}: {value}")
    finally:
        await app.close()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    try:
        return asyncio.run(_main(args))
    except (ValueError, LookupError, FileNotFoundError) as exc:
        print(f"trendhunter: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
