from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import List

from ..config import ScannerConfig
from ..engines.scheduler import ScanScheduler
from ..errors import ConfigError
from ..profiles.store import ProfileStore
from ..utils.logging import setup_logging
from ..version import __version__

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID_PROFILES = 1
EXIT_CONFIG_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Pharmacy availability scanner")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", type=str, help="Path to config JSON", default=None)
    p.add_argument("--profiles-dir", type=str, default=None, help="Directory with site profiles")
    p.add_argument("--products", type=str, default=None, help="Comma-separated product queries")
    p.add_argument("--profile", type=str, default=None,
                   help="Comma-separated profile ids to scan (default: all loaded profiles)")
    p.add_argument("--interval", type=float, default=None, help="Seconds between passes (default 900)")
    p.add_argument("--once", action="store_true", help="Run a single pass and exit")
    p.add_argument("--backend-url", type=str, default=None, help="Base URL of the availability backend")
    p.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--validate", action="store_true",
                   help="Only load the site profiles and report the ones that fail validation")
    return p


def _load_config(args: argparse.Namespace) -> ScannerConfig:
    if args.config:
        cfg = ScannerConfig.from_file(args.config)
    else:
        cfg = ScannerConfig.from_env()

    if args.profiles_dir:
        cfg.profiles_dir = args.profiles_dir
    if args.products:
        cfg.products = [p.strip() for p in args.products.split(",") if p.strip()]
    if args.profile:
        cfg.profile_ids = [p.strip() for p in args.profile.split(",") if p.strip()]
    if args.interval is not None:
        cfg.poll_interval_seconds = args.interval
    if args.once:
        cfg.run_once = True
    if args.backend_url:
        cfg.backend_url = args.backend_url
    return cfg


def validate_profiles(cfg: ScannerConfig) -> int:
    store = ProfileStore(cfg.profiles_dir)
    profiles = store.load_all()
    for profile in profiles:
        print(f"ok      {profile.id:<20} {profile.display_name}")
    for error in store.errors:
        print(f"invalid {error}")
    return EXIT_INVALID_PROFILES if store.errors else EXIT_OK


async def run_worker(cfg: ScannerConfig) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows
            pass

    scheduler = ScanScheduler.from_config(cfg, stop_event=stop)
    return await scheduler.run()


def run_cli(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        cfg = _load_config(args)
        if args.validate:
            return validate_profiles(cfg)
        cfg.validate()
        passes = asyncio.run(run_worker(cfg))
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR

    logger.info("Done: %d pass(es)", passes)
    return EXIT_OK
