"""Reconcile every account whose billing period has ended.

Intended to be run daily by an external scheduler (cron, Kubernetes CronJob).

Usage:
    cd backend
    python -m scripts.run_reconciliation
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging import setup_logging
from app.modules.billing.tasks import reconcile_due_accounts


async def main():
    """Run the reconciliation sweep."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    print("\n" + "=" * 60)
    print("Running Billing Reconciliation")
    print("=" * 60)

    async with async_session_maker() as session:
        summary = await reconcile_due_accounts(session)

        print(f"\nResults:")
        print(f"  Accounts due: {summary['checked']}")
        print(f"  Reconciled: {summary['reconciled']}")
        print(f"  Already reconciled: {summary['already_reconciled']}")
        print(f"  Recharged: {summary['recharged']}")
        print(f"  Charge failures: {summary['charge_failed']}")
        print(f"  Unpaid overage: {summary['unpaid_overage']}")
        print(f"  Errors: {summary['errors']}")

    failed = summary["errors"] or summary["charge_failed"] or summary["unpaid_overage"]
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
