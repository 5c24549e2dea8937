"""
Subscription expiry worker.

Runs the lifecycle sweeper once, or on a fixed interval with --loop.
"""
import argparse
import logging
import time
from typing import Optional, Sequence

from business_service.core.config import settings
from business_service.core.logging import configure_logging
from business_service.features.subscriptions.sweeper import expire_subscriptions

logger = logging.getLogger("business_service.workers.expiry")


def run_loop(sleep_seconds: int, max_runs: Optional[int] = None) -> int:
    runs = 0
    while max_runs is None or runs < max_runs:
        try:
            expire_subscriptions()
        except Exception:
            logger.exception("[sweeper] expiry run failed")
        runs += 1
        if max_runs is not None and runs >= max_runs:
            break
        time.sleep(sleep_seconds)
    return runs


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Expire subscriptions past their end date.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", dest="loop", action="store_false", help="Run a single sweep (default).")
    mode.add_argument("--loop", dest="loop", action="store_true", help="Sweep repeatedly.")
    parser.add_argument("--sleep", type=int, default=settings.SWEEPER_INTERVAL_SECONDS, help="Seconds between sweeps in --loop mode.")
    parser.set_defaults(loop=False)
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    if args.loop:
        run_loop(args.sleep)
        return 0

    result = expire_subscriptions()
    print(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
