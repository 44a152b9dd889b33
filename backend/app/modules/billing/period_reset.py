"""Start a new billing period when a subscription payment succeeds."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_info, log_warning
from app.modules.billing.exceptions import BillingChargeError
from app.modules.billing.models import Account
from app.modules.billing.reconciler import BillingReconciler
from app.modules.billing.repository import AccountRepository
from app.modules.billing.stripe_client import StripeClient

logger = logging.getLogger(__name__)


class PeriodResetHandler:
    """Closes the billing period, then zeroes counters for the next one.

    The period is reconciled first so its usage always lands in a
    UsageRecord, whether or not the scheduled sweep reached the account.
    The new window is a fixed BILLING_CYCLE_DAYS from the moment the payment
    notification arrives.
    """

    def __init__(
        self,
        session: AsyncSession,
        cycle_days: Optional[int] = None,
        stripe_client: Optional[StripeClient] = None,
    ):
        self.session = session
        self.account_repo = AccountRepository(session)
        self.reconciler = BillingReconciler(session, stripe_client=stripe_client)
        self.cycle_days = cycle_days or settings.BILLING_CYCLE_DAYS

    async def on_payment_succeeded(
        self,
        customer_ref: str,
        now: Optional[datetime] = None,
    ) -> Optional[Account]:
        """Close and reset the period of the account billed under ``customer_ref``.

        Returns:
            The updated account, or None if no account uses this customer

        Raises:
            UnknownPlanTierError: If the period cannot be priced; counters
                are left untouched
        """
        account = await self.account_repo.get_by_stripe_customer_id(customer_ref)
        if not account:
            log_info(
                logger,
                "Payment for unknown customer ignored",
                stripe_customer_id=customer_ref,
            )
            return None

        account_id = account.id
        try:
            await self.reconciler.reconcile(account_id)
        except BillingChargeError as e:
            # The record is persisted unpaid and picked up by the sweep
            log_warning(
                logger,
                "Period closed with unpaid overage",
                account_id=str(account_id),
                usage_record_id=str(e.usage_record_id),
            )

        if now is None:
            now = datetime.utcnow()
        period_end = now + timedelta(days=self.cycle_days)

        updated = await self.account_repo.reset_period(account_id, now, period_end)
        log_info(
            logger,
            "Billing period reset",
            account_id=str(account_id),
            period_start=now.isoformat(),
            period_end=period_end.isoformat(),
        )
        return updated
