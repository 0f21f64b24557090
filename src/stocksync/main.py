from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict
from typing import Optional, Sequence

from stocksync.application.container import AppContainer, build_container
from stocksync.config import get_app_paths, load_settings
from stocksync.domain.errors import AppError
from stocksync.logging_config import setup_logging
from stocksync.services.scheduler import BlockingScheduler

log = logging.getLogger(__name__)


def _cmd_status(app: AppContainer, args: argparse.Namespace) -> int:
    report = app.operations.run_health_check()
    for key, value in asdict(report).items():
        print(f"{key}: {value}")
    return 0


def _cmd_pull(app: AppContainer, args: argparse.Namespace) -> int:
    products = app.engine.pull_and_reconcile()
    print(f"products: {len(products)} state: {app.engine.status().state}")
    return 0


def _cmd_drain(app: AppContainer, args: argparse.Namespace) -> int:
    result = app.engine.scheduled_drain()
    print(f"succeeded: {len(result.succeeded)} failed: {len(result.failed)} dead: {len(result.dead_lettered)}")
    return 0 if result.is_clean else 1


def _cmd_run(app: AppContainer, args: argparse.Namespace) -> int:
    scheduler = BlockingScheduler()
    app.engine.start(scheduler, interval=args.interval or app.settings.drain_interval)
    app.engine.pull_and_reconcile()
    try:
        scheduler.run(max_runs=args.max_runs)
    except KeyboardInterrupt:
        log.info("run_interrupted")
    return 0


def _cmd_export_issues(app: AppContainer, args: argparse.Namespace) -> int:
    dead, pending = app.excel.export_sync_issues(args.path)
    print(f"exported dead letters: {dead} pending: {pending} -> {args.path}")
    return 0


def _cmd_requeue(app: AppContainer, args: argparse.Namespace) -> int:
    count = app.queue.requeue_dead_letters()
    print(f"requeued: {count}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stocksync", description="Local-first stock sync for the point of sale.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show storage health and sync state.").set_defaults(fn=_cmd_status)
    sub.add_parser("pull", help="Reconcile local products with the remote store.").set_defaults(fn=_cmd_pull)
    sub.add_parser("drain", help="Retry queued stock updates once.").set_defaults(fn=_cmd_drain)

    run = sub.add_parser("run", help="Drain periodically until interrupted.")
    run.add_argument("--interval", type=float, default=None, help="Seconds between drains.")
    run.add_argument("--max-runs", type=int, default=None)
    run.set_defaults(fn=_cmd_run)

    export = sub.add_parser("export-issues", help="Write pending and dead-lettered updates to a workbook.")
    export.add_argument("path")
    export.set_defaults(fn=_cmd_export_issues)

    sub.add_parser("requeue", help="Move dead-lettered updates back to the queue.").set_defaults(fn=_cmd_requeue)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        app = build_container(load_settings(), paths)
        return args.fn(app, args)
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
