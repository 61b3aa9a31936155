"""
yieldvault.__main__ — Entry point for ``python -m yieldvault``
===============================================================

Operator commands that run outside the API process::

    python -m yieldvault init-db        # create tables + seed chain registry
    python -m yieldvault run-accrual    # one accrual batch (same lease as the job)
    python -m yieldvault serve          # uvicorn yieldvault.api.main:app
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("yieldvault")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="yieldvault", description="YieldVault operator commands")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and seed the chain registry")
    run = sub.add_parser("run-accrual", help="Run one accrual batch now")
    run.add_argument("--config", default=None, help="Path to config.yaml")
    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Dispatch one operator command; returns the process exit code."""
    load_dotenv()
    args = _build_parser().parse_args(argv)

    from yieldvault.database.engine import create_db_engine, init_db

    if args.command == "init-db":
        init_db(create_db_engine())
        logger.info("Schema ready.")
        return 0

    if args.command == "run-accrual":
        from yieldvault.config import load_config
        from yieldvault.services.accrual_service import run_accrual

        result = run_accrual(create_db_engine(), load_config(args.config))
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.status == "completed" and not result.errors else 1

    if args.command == "serve":
        import uvicorn

        uvicorn.run("yieldvault.api.main:app", host=args.host, port=args.port)
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
