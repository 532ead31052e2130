#!/usr/bin/env python3
"""
Tier Reconciliation

Recomputes every account's tier from its highest-points watermark and
repairs drift. Accounts whose watermark is below their balance are reported
and left untouched; the script exits 1 when any are found.

Usage:
    # Reconcile against DATABASE_URL
    python3 scripts/reconcile_tiers.py

    # Machine-readable output for cron alerting
    python3 scripts/reconcile_tiers.py --json
"""

import argparse
import asyncio
import json
import sys

from loyalty.db.session import close_engines, get_write_session
from loyalty.models.domain import TierReconciliation
from loyalty.observability.logging import get_logger, setup_logging
from loyalty.services.ledger import AccountLedger

logger = get_logger(__name__)


async def reconcile() -> TierReconciliation:
    """Run one reconciliation pass in its own session."""
    try:
        async with get_write_session() as session:
            return await AccountLedger(session).reconcile_tiers()
    finally:
        await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(description="Recompute account tiers from watermarks")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    setup_logging()

    try:
        result = asyncio.run(reconcile())
    except Exception as e:
        logger.error("tier_reconciliation_failed", error=str(e), exc_info=True)
        return 2

    if args.json:
        print(
            json.dumps(
                {
                    "checked": result.checked,
                    "repaired": result.repaired,
                    "violations": [str(v) for v in result.violations],
                }
            )
        )
    else:
        print(f"Checked {result.checked} accounts, repaired {result.repaired} tiers")
        for account_id in result.violations:
            print(f"  VIOLATION: account {account_id} has highest_points below points")

    return 1 if result.violations else 0


if __name__ == "__main__":
    sys.exit(main())
