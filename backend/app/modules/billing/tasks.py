"""Billing background tasks.

Entry points for an external scheduler; nothing here schedules itself.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.billing.exceptions import BillingChargeError
from app.modules.billing.reconciler import BillingReconciler
from app.modules.billing.repository import AccountRepository
from app.modules.billing.stripe_client import StripeClient

logger = logging.getLogger(__name__)


async def reconcile_due_accounts(
    session: AsyncSession,
    now: Optional[datetime] = None,
    stripe_client: Optional[StripeClient] = None,
) -> dict:
    """Reconcile every billable account whose period has ended.

    Should be run daily via scheduler. A failure for one account is logged
    and the sweep moves on to the next. Periods closed by an earlier run
    whose overage is still unpaid are charged again.

    Args:
        session: Database session
        now: Cutoff for period end (default: current time)
        stripe_client: Stripe client override

    Returns:
        Summary counts:
        - checked: accounts due
        - reconciled: periods closed by this run
        - already_reconciled: periods closed before this run
        - recharged: earlier unpaid overages paid by this run
        - charge_failed: charges that failed in this run
        - unpaid_overage: closed periods still owing overage after this run
        - errors: accounts that failed for any other reason
    """
    accounts = await AccountRepository(session).get_due_for_reconciliation(now)
    account_ids = [account.id for account in accounts]

    reconciler = BillingReconciler(session, stripe_client=stripe_client)
    summary = {
        "checked": len(account_ids),
        "reconciled": 0,
        "already_reconciled": 0,
        "recharged": 0,
        "charge_failed": 0,
        "unpaid_overage": 0,
        "errors": 0,
    }

    for account_id in account_ids:
        try:
            record, created = await reconciler.close_period(account_id)
            if created:
                summary["reconciled"] += 1
            else:
                summary["already_reconciled"] += 1
                if not record.paid and record.overage_cost > 0:
                    record = await reconciler.charge_unpaid(record.id)
                    if record.paid:
                        summary["recharged"] += 1
            if not record.paid and record.overage_cost > 0:
                summary["unpaid_overage"] += 1
        except BillingChargeError as e:
            summary["charge_failed"] += 1
            summary["unpaid_overage"] += 1
            logger.error(
                f"Overage charge failed for account {account_id}, "
                f"usage record {e.usage_record_id}"
            )
        except Exception as e:
            await session.rollback()
            summary["errors"] += 1
            logger.error(f"Failed to reconcile account {account_id}: {e}")

    logger.info(
        f"Reconciliation sweep finished: {summary['reconciled']} of "
        f"{summary['checked']} accounts reconciled, "
        f"{summary['unpaid_overage']} with unpaid overage"
    )
    return summary
