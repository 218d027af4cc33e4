#!/usr/bin/env python3
"""
Settle Pending Refunds

Sends every created-but-unsettled refund to Stripe, oldest first. Safe to
run concurrently and to re-run: settlement is idempotent per refund.

Usage:
    # One batch (for cron)
    python3 scripts/settle_pending_refunds.py

    # Larger batch
    python3 scripts/settle_pending_refunds.py --limit 200

    # Keep sweeping every 5 minutes
    python3 scripts/settle_pending_refunds.py --loop --interval 300
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qos_refunds.config import settings
from qos_refunds.db.session import close_engines, get_write_session
from qos_refunds.models.domain import SettlementSweepResult
from qos_refunds.observability import get_logger, setup_logging, setup_tracing, shutdown_tracing
from qos_refunds.services.refunds import RefundOrchestrator
from qos_refunds.services.stripe_gateway import StripeGateway

logger = get_logger(__name__)


async def run_sweep(limit: int | None) -> SettlementSweepResult:
    """Run one settlement sweep against the primary database."""
    gateway = StripeGateway(settings.stripe_api_key)
    async with get_write_session() as session:
        orchestrator = RefundOrchestrator(session, gateway)
        result = await orchestrator.settle_pending(limit)

    for failure in result.failures:
        logger.warning(
            "refund_left_unsettled",
            refund_id=str(failure.refund_id),
            error_type=failure.error_type,
            error=failure.message,
        )
    return result


async def run_loop(limit: int | None, interval: int) -> None:
    """Sweep forever, sleeping between runs."""
    logger.info("settlement_sweeper_started", interval_seconds=interval)

    while True:
        try:
            await run_sweep(limit)
        except Exception as e:
            logger.error("settlement_sweep_error", error=str(e), exc_info=True)

        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> int:
    try:
        if args.loop:
            await run_loop(args.limit, args.interval)
            return 0
        result = await run_sweep(args.limit)
    finally:
        await close_engines()
        shutdown_tracing()
    return 0 if not result.failures else 1


def main():
    parser = argparse.ArgumentParser(
        description="Settle created QoS refunds with the payment processor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Settle one batch (for cron jobs)
  python3 scripts/settle_pending_refunds.py

  # Run continuously
  python3 scripts/settle_pending_refunds.py --loop --interval 300
        """,
    )
    parser.add_argument(
        "--limit",
        type=int,
        help=f"Refunds per batch (default: {settings.settlement_batch_size})",
    )
    parser.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
    parser.add_argument(
        "--interval", type=int, default=300, help="Seconds between sweeps with --loop"
    )

    args = parser.parse_args()

    if args.limit is not None and args.limit <= 0:
        parser.error("--limit must be positive")

    setup_logging()
    setup_tracing()

    if not settings.stripe_api_key:
        logger.error("stripe_api_key_missing")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("settlement_sweeper_stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
