#!/usr/bin/env python3
# scripts/run_refill_cycle.py
"""
Run one refill scheduler cycle and exit. Meant for cron when the in-process
scheduler is disabled.

Run:
  python -m scripts.run_refill_cycle
  python -m scripts.run_refill_cycle --date 2025-03-01
"""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT))

from app.core.logging_config import configure_logging  # noqa: E402
from app.services.refill_service import run_refill_cycle  # noqa: E402
from app.utils.datetime_utils import utc_today  # noqa: E402

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    parser = argparse.ArgumentParser(description="Run one refill scheduler cycle")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Treat this ISO date as today (default: current UTC date)",
    )
    args = parser.parse_args()

    report = run_refill_cycle(args.date or utc_today())
    if report.skipped:
        logger.info("Another refill cycle is running; nothing done")
        return
    print(
        f"Refill cycle {report.run_date}: processed={report.processed} filled={report.filled} "
        f"blocked={report.blocked} failed={report.failed} orders={report.orders_created}"
    )
    if report.failed:
        raise SystemExit(2)


if __name__ == "__main__":
    main()
