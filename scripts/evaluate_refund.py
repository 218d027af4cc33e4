#!/usr/bin/env python3
"""
Evaluate (and optionally issue) a QoS refund for one purchase.

Evaluation runs against the read replica. --issue re-evaluates on the
primary under a row lock and records the refund; settlement is left to
settle_pending_refunds.py unless --settle is also given.

Usage:
    # Dry evaluation
    python3 scripts/evaluate_refund.py 7f9c2b1e-...

    # Record the refund and settle it right away
    python3 scripts/evaluate_refund.py 7f9c2b1e-... --issue --settle
"""

import argparse
import asyncio
import os
import sys
from uuid import UUID

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qos_refunds.config import settings
from qos_refunds.db.session import close_engines, get_read_session, get_write_session
from qos_refunds.exceptions import RefundEngineError
from qos_refunds.observability import get_logger, setup_logging, setup_tracing, shutdown_tracing
from qos_refunds.services.refunds import RefundOrchestrator
from qos_refunds.services.stripe_gateway import StripeGateway

logger = get_logger(__name__)


async def evaluate_and_issue(purchase_id: UUID, issue: bool, settle: bool) -> int:
    gateway = StripeGateway(settings.stripe_api_key)

    async with get_read_session() as session:
        evaluation = await RefundOrchestrator(session, gateway).evaluate_eligibility(purchase_id)

    decision = evaluation.decision
    print(
        f"eligible={decision.eligible} tier={decision.tier.value} "
        f"amount_cents={decision.amount_cents} "
        f"reason={decision.reason_code.value if decision.reason_code else '-'} "
        f"buffer_ratio={decision.buffer_ratio:.4f} downtime_ratio={decision.downtime_ratio:.4f} "
        f"watch_ms={evaluation.telemetry.total_watch_ms} "
        f"expected_duration_ms={evaluation.expected_duration_ms}"
    )

    if not issue or not decision.eligible or decision.reason_code is None:
        return 0

    async with get_write_session() as session:
        orchestrator = RefundOrchestrator(session, gateway)
        refund = await orchestrator.issue_refund(
            purchase_id,
            decision.reason_code,
            evaluation.telemetry,
            decision.applied_rule or decision.reason_code,
            decision.policy_version,
            issued_by="operator",
        )
        print(f"refund_id={refund.refund_id} amount_cents={refund.amount_cents}")

        if settle:
            refund = await orchestrator.settle_with_processor(refund.refund_id)
            print(f"processor_refund_id={refund.processor_refund_id}")

    return 0


async def run(args: argparse.Namespace) -> int:
    try:
        return await evaluate_and_issue(args.purchase_id, args.issue, args.settle)
    except RefundEngineError as e:
        logger.error("refund_cli_failed", error=str(e), error_type=type(e).__name__)
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        await close_engines()
        shutdown_tracing()


def main():
    parser = argparse.ArgumentParser(
        description="Evaluate a purchase for a QoS refund",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("purchase_id", type=UUID, help="Purchase UUID")
    parser.add_argument("--issue", action="store_true", help="Record the refund if eligible")
    parser.add_argument(
        "--settle", action="store_true", help="With --issue, settle with Stripe immediately"
    )

    args = parser.parse_args()

    if args.settle and not args.issue:
        parser.error("--settle requires --issue")

    setup_logging()
    setup_tracing()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
