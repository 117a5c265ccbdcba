#!/usr/bin/env python3
"""Leave year jobs — open a year's balances and roll the previous one over.

Run once at the start of each leave year, rollover first:
    python scripts/leave_year.py rollover --year 2025     # 2025 → 2026
    python scripts/leave_year.py initialize --year 2026   # fill in the rest

Both jobs are idempotent; re-running them changes nothing.

Requires .env at project root (or DATABASE_URL in the environment).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("leave_year")

from hcm.database import async_session_factory, engine
from hcm.leave.service import LeaveService


async def run_initialize(year: int) -> None:
    async with async_session_factory() as session:
        result = await LeaveService.initialize_year(session, year)
        await session.commit()
    print(f"  Initialized {year}: {result.created} created, {result.skipped} already present")


async def run_rollover(from_year: int) -> None:
    async with async_session_factory() as session:
        result = await LeaveService.rollover(session, from_year)
        await session.commit()
    print(
        f"  Rolled {result.from_year} → {result.to_year}: {result.processed} balances, "
        f"{result.carried_total} days carried, {result.forfeited_total} forfeited"
    )


async def _run(args: argparse.Namespace) -> None:
    try:
        if args.command == "initialize":
            await run_initialize(args.year)
        else:
            await run_rollover(args.year)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="Leave year jobs — balance initialization and year-end rollover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("initialize", help="Open balances for every active employee")
    init.add_argument("--year", type=int, required=True, help="Leave year to open")

    roll = sub.add_parser("rollover", help="Carry unused days into the following year")
    roll.add_argument("--year", type=int, required=True, help="Leave year being closed")

    args = parser.parse_args()

    start_time = time.time()
    logger.info("Starting %s for %s", args.command, args.year)
    try:
        asyncio.run(_run(args))
    except Exception:
        logger.exception("%s for %s failed", args.command, args.year)
        sys.exit(1)
    logger.info("%s finished in %.1fs", args.command, time.time() - start_time)


if __name__ == "__main__":
    main()
