"""
supply/main.py -- Command line entry point for corpus maintenance.

Usage::

    python -m supply.main stats
    python -m supply.main generate 20
    python -m supply.main dedup
    python -m supply.main images
    python -m supply.main push
    python -m supply.main pull

Configuration comes from the environment (``ANTHROPIC_API_KEY``,
``QUIZ_SUPPLY_MODEL``, ``QUIZ_SUPPLY_DATA_DIR``, ``QUIZ_SUPPLY_MIRROR_DIR``)
overlaid with the settings file in the data directory.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from corpus.corpus_store import CorpusStore
from corpus.remote_mirror import JsonDirectoryMirror
from supply.paths import get_settings_path, get_user_data_dir
from supply.services.config import EngineConfig, load_settings
from supply.services.corpus_gateway import CorpusGateway
from supply.services.generative_client import create_backend
from supply.services.maintenance import MaintenanceService

logger = logging.getLogger("supply")


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="supply", description="Quiz corpus maintenance")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="show corpus statistics")
    generate = sub.add_parser("generate", help="synthesize N items into the corpus")
    generate.add_argument("count", type=int)
    sub.add_parser("dedup", help="remove near-duplicate items")
    sub.add_parser("images", help="generate missing illustrations")
    sub.add_parser("push", help="copy the local corpus to the mirror")
    sub.add_parser("pull", help="copy the mirror into the local corpus")
    return parser


def build_config() -> EngineConfig:
    base = EngineConfig.from_env()
    data_dir = base.data_dir or get_user_data_dir()
    config = load_settings(get_settings_path(data_dir), base)
    return config.with_changes(data_dir=data_dir)


def build_maintenance(config: EngineConfig) -> MaintenanceService:
    store = CorpusStore(config.data_dir, image_cap=config.image_cap)
    mirror = None
    if config.mirror_dir:
        mirror = JsonDirectoryMirror(config.mirror_dir, max_batch=config.remote_batch_size)
    gateway = CorpusGateway(store, mirror, batch_size=config.remote_batch_size)
    return MaintenanceService(config, gateway, create_backend(config))


async def _run(args: argparse.Namespace, service: MaintenanceService) -> int:
    def progress(done: int) -> None:
        logger.info("... %d done", done)

    def error(message: str) -> None:
        logger.error("%s", message)

    if args.command == "stats":
        print(json.dumps(await service.stats(), indent=2))
        return 0
    if args.command == "generate":
        result = await service.batch_generate(args.count, progress, error)
        return 1 if result.rate_limited else 0
    if args.command == "dedup":
        report = await service.run_dedup_cleanup()
        print(f"scanned={report.scanned} duplicates={len(report.duplicate_ids)} "
              f"deleted_local={report.deleted_local} deleted_mirror={report.deleted_mirror}")
        return 0 if report.ok else 1
    if args.command == "images":
        result = await service.batch_generate_illustrations(None, progress, error)
        return 1 if result.rate_limited else 0
    if args.command == "push":
        print(f"pushed={await service.push()}")
        return 0
    if args.command == "pull":
        print(f"pulled={await service.pull()}")
        return 0
    return 2


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    config = build_config()
    logger.info("Data directory: %s", config.data_dir)
    service = build_maintenance(config)
    try:
        return asyncio.run(_run(args, service))
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        service.gateway.store.close()


if __name__ == "__main__":
    sys.exit(main())
