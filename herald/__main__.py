"""
herald.__main__ — Maintenance CLI for ``python -m herald``
===========================================================

Commands::

    python -m herald init-db      # create tables + sync entity_kinds
    python -m herald sync-kinds   # sync entity_kinds only
    python -m herald compact      # one retention pass
    python -m herald stats        # notification / analytics counts
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from herald.config import HeraldConfig, load_config
from herald.database.engine import create_db_engine, init_db
from herald.database.seed import sync_entity_kinds
from herald.services.retention_service import get_retention_stats, run_retention_cleanup

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("herald")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="herald", description="Herald maintenance commands")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument(
        "command", choices=["init-db", "sync-kinds", "compact", "stats"],
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()

    try:
        cfg = load_config(args.config)
    except FileNotFoundError:
        logger.info("No %s found; using default configuration", args.config)
        cfg = HeraldConfig()

    try:
        engine = create_db_engine(args.database_url)
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    if args.command == "init-db":
        init_db(engine)
    elif args.command == "sync-kinds":
        sync_entity_kinds(engine)
    elif args.command == "compact":
        summary = run_retention_cleanup(engine, cfg)
        print(json.dumps(summary, indent=2))
    elif args.command == "stats":
        print(json.dumps(get_retention_stats(engine), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
