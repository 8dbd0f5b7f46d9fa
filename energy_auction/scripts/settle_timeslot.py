"""
Preview or settle one timeslot from the command line.

Usage examples:
  # Show what clearing would produce, without touching any record
  python -m energy_auction.scripts.settle_timeslot TIMESLOT_ID --dry-run

  # Clear the timeslot and commit the matches
  python -m energy_auction.scripts.settle_timeslot TIMESLOT_ID --yes

  # Settle every sealed timeslot once
  python -m energy_auction.scripts.settle_timeslot --all-sealed --yes

Notes:
- Uses DB settings from energy_auction.config.DB_CONFIG
- Prints the outcome (or error) as JSON; exit code 1 on a clearing error
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from energy_auction.config import LOG_LEVEL
from energy_auction.db import MySQLRecordStore
from energy_auction.errors import ClearingError
from energy_auction.services.clearing import ClearingOrchestrator, ClearingResult
from energy_auction.services.clearing_scheduler import ClearingScheduler


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run market clearing for a timeslot")
    p.add_argument("timeslot_id", nargs="?", help="Timeslot to clear")
    p.add_argument("--all-sealed", action="store_true", help="Settle every SEALED timeslot")
    p.add_argument("--dry-run", action="store_true", help="Compute the outcome without committing")
    p.add_argument("--yes", action="store_true", help="Do not prompt for confirmation")
    args = p.parse_args(argv)
    if not args.timeslot_id and not args.all_sealed:
        p.error("either TIMESLOT_ID or --all-sealed is required")
    if args.all_sealed and args.dry_run:
        p.error("--dry-run needs a single TIMESLOT_ID")
    return args


def confirm(prompt: str) -> bool:
    try:
        ans = input(f"{prompt} [y/N]: ").strip().lower()
    except EOFError:
        return False
    return ans in {"y", "yes"}


def _render(result: ClearingResult) -> dict:
    if isinstance(result, ClearingError):
        return {"error": result.to_dict()}
    return result.to_dict()


def main(argv: Optional[List[str]] = None, store=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    orchestrator = ClearingOrchestrator(store or MySQLRecordStore())

    if args.dry_run:
        result = orchestrator.preview(args.timeslot_id)
        print(json.dumps(_render(result), indent=2))
        return 1 if isinstance(result, ClearingError) else 0

    target = "every sealed timeslot" if args.all_sealed else f"timeslot {args.timeslot_id}"
    if not args.yes and not confirm(f"Settle {target}? Matched records will be committed"):
        print("Aborted.")
        return 2

    if args.all_sealed:
        results = ClearingScheduler(orchestrator).run_once()
    else:
        results = {args.timeslot_id: orchestrator.execute_clearing(args.timeslot_id)}

    print(json.dumps({tid: _render(r) for tid, r in results.items()}, indent=2))
    return 1 if any(isinstance(r, ClearingError) for r in results.values()) else 0


if __name__ == "__main__":
    sys.exit(main())
