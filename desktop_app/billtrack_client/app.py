"""Entry point for the BillTrack client."""

from __future__ import annotations

import argparse
import itertools
import logging
import sys
import time
from typing import Optional, Sequence

from .api_client import ApiClient, ApiError
from .cache import TrackingCache
from .config import AppConfig, load_config
from .store import ApiTimeEntryStore
from .tracking import ActiveTrackingManager

logger = logging.getLogger(__name__)


def _api_client(config: AppConfig) -> ApiClient:
    return ApiClient(
        config.api_base_url,
        token=config.api_token,
        timeout=config.request_timeout,
        user_id=config.user_id,
    )


def create_manager(config: AppConfig, *, api_client: Optional[ApiClient] = None) -> ActiveTrackingManager:
    """Wire configuration, API client, store and cache into a hydrated manager."""

    client = api_client or _api_client(config)
    cache = TrackingCache(config.tracking_cache_path) if config.tracking_cache_path else None
    return ActiveTrackingManager(ApiTimeEntryStore(client), cache=cache)


def _format_elapsed(seconds: int) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _status_line(manager: ActiveTrackingManager) -> str:
    tracking = manager.current
    if tracking is None:
        return "Not tracking."
    return (
        f"Tracking task {tracking.task_id} (entry {tracking.entry_id}) "
        f"for {_format_elapsed(manager.elapsed_seconds())}"
    )


def _watch(manager: ActiveTrackingManager, interval: float, iterations: Optional[int]) -> None:
    ticks = itertools.count() if iterations is None else range(iterations)
    try:
        for tick in ticks:
            if tick:
                time.sleep(interval)
            print(_status_line(manager), flush=True)
    except KeyboardInterrupt:
        logger.debug("Watch interrupted")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Small command line front end: status, watch, start, resume, stop."""

    parser = argparse.ArgumentParser(prog="billtrack")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status")
    watch = commands.add_parser("watch", help="print the running time every polling interval")
    watch.add_argument("--iterations", type=int, default=None)
    start = commands.add_parser("start")
    start.add_argument("task_id", type=int)
    resume = commands.add_parser("resume")
    resume.add_argument("entry_id", type=int)
    commands.add_parser("stop")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    config = load_config()
    try:
        client = _api_client(config)
        manager = create_manager(config, api_client=client)
        if args.command == "start":
            manager.start(args.task_id)
        elif args.command == "resume":
            manager.restart(client.get_time_entry(args.entry_id))
        elif args.command == "stop":
            closed = manager.stop()
            if closed is None:
                print("Not tracking.")
                return 0
            print(f"Stopped entry {closed.entry_id}: {closed.total_duration_in_hour:.2f} h")
            return 0
    except ApiError as exc:
        print(f"API error: {exc}", file=sys.stderr)
        return 1

    if args.command == "watch":
        _watch(manager, config.polling_interval_seconds, args.iterations)
    else:
        print(_status_line(manager))
    return 0


__all__ = ["create_manager", "main"]
