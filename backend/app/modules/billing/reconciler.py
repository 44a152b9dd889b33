"""Billing cycle close.

Reconciling an account snapshots its period usage into an immutable
UsageRecord and, when the account pays overages automatically, charges the
overage through Stripe. Reconciling the same period twice returns the first
record and never charges again. A record left unpaid by a failed charge is
charged again through ``charge_unpaid``.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_error, log_info
from app.core.retry import with_retry
from app.modules.billing.calculator import calculate_for_account
from app.modules.billing.exceptions import (
    AccountNotFoundError,
    BillingChargeError,
    UsageRecordNotFoundError,
)
from app.modules.billing.models import Account, UsageRecord
from app.modules.billing.repository import AccountRepository, UsageRecordRepository
from app.modules.billing.stripe_client import StripeClient, get_stripe_client

logger = logging.getLogger(__name__)


class BillingReconciler:
    """Closes an account's billing period and charges overages."""

    def __init__(
        self,
        session: AsyncSession,
        stripe_client: Optional[StripeClient] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.session = session
        self.account_repo = AccountRepository(session)
        self.record_repo = UsageRecordRepository(session)
        self._stripe_client = stripe_client
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    @property
    def stripe_client(self) -> StripeClient:
        if self._stripe_client is None:
            self._stripe_client = get_stripe_client()
        return self._stripe_client

    async def reconcile(self, account_id: uuid.UUID) -> UsageRecord:
        """Close the current billing period for an account.

        Args:
            account_id: Account ID

        Returns:
            The period's UsageRecord, newly written or already existing

        Raises:
            AccountNotFoundError: If the account does not exist
            UnknownPlanTierError: If the account's plan is not in the catalog
            BillingChargeError: If the overage charge failed after all retries
        """
        record, _ = await self.close_period(account_id)
        return record

    async def close_period(self, account_id: uuid.UUID) -> tuple[UsageRecord, bool]:
        """Close the current billing period and report whether it was new.

        Returns:
            Tuple of (record, created). ``created`` is False when the period
            was already closed, by an earlier call or a concurrent one.
        """
        account = await self.account_repo.get_by_id(account_id)
        if not account:
            raise AccountNotFoundError(account_id)

        period_start = account.current_period_start
        period_end = account.current_period_end

        existing = await self.record_repo.get_for_period(account_id, period_start)
        if existing:
            log_info(
                logger,
                "Billing period already reconciled",
                account_id=str(account_id),
                usage_record_id=str(existing.id),
            )
            return existing, False

        calculation = calculate_for_account(account)
        customer_id = account.stripe_customer_id
        chargeable = self._can_auto_charge(account)

        now = datetime.utcnow()
        record, created = await self.record_repo.create(
            account_id=account_id,
            billing_period_start=period_start,
            billing_period_end=period_end,
            year=now.year,
            month=now.month,
            plan_tier=calculation.plan_tier.value,
            plan_price=calculation.base_price,
            minutes_included=calculation.minutes.included,
            minutes_used=calculation.minutes.used,
            minutes_overage=calculation.minutes.overage,
            minutes_cost=calculation.minutes.cost,
            sms_included=calculation.sms.included,
            sms_used=calculation.sms.used,
            sms_overage=calculation.sms.overage,
            sms_cost=calculation.sms.cost,
            emails_included=calculation.emails.included,
            emails_used=calculation.emails.used,
            emails_overage=calculation.emails.overage,
            emails_cost=calculation.emails.cost,
            base_cost=calculation.base_price,
            overage_cost=calculation.total_overage_cost,
            total_cost=calculation.total_cost,
            paid=False,
        )
        if not created:
            log_info(
                logger,
                "Billing period reconciled concurrently",
                account_id=str(account_id),
                usage_record_id=str(record.id),
            )
            return record, False

        log_info(
            logger,
            "Usage record created",
            account_id=str(account_id),
            usage_record_id=str(record.id),
            overage_cost=str(calculation.total_overage_cost),
            total_cost=str(calculation.total_cost),
        )

        if not (calculation.has_overage and chargeable):
            return record, True

        record = await self._charge(record, customer_id, calculation.total_overage_cost)
        return record, True

    async def charge_unpaid(self, usage_record_id: uuid.UUID) -> UsageRecord:
        """Charge the overage of a record whose earlier charge did not go through.

        Paid records and records without overage are returned unchanged, as
        are records of accounts that do not pay overages automatically.

        Raises:
            UsageRecordNotFoundError: If the record does not exist
            AccountNotFoundError: If the record's account no longer exists
            BillingChargeError: If the charge failed after all retries
        """
        record = await self.record_repo.get_by_id(usage_record_id)
        if not record:
            raise UsageRecordNotFoundError(usage_record_id)
        if record.paid or record.overage_cost <= 0:
            return record

        account = await self.account_repo.get_by_id(record.account_id)
        if not account:
            raise AccountNotFoundError(record.account_id)
        if not self._can_auto_charge(account):
            return record

        return await self._charge(record, account.stripe_customer_id, record.overage_cost)

    @staticmethod
    def _can_auto_charge(account: Account) -> bool:
        return bool(account.auto_pay_overages) and account.has_billing_customer()

    async def _charge(self, record: UsageRecord, customer_id: str, amount) -> UsageRecord:
        client = self.stripe_client
        record_id = record.id
        account_id = record.account_id

        async def attempt_charge():
            return await asyncio.to_thread(
                client.charge_overages,
                customer_id,
                amount,
                account_id,
                record_id,
            )

        try:
            invoice = await with_retry(
                attempt_charge,
                operation="charge_overages",
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
            )
        except Exception as e:
            log_error(
                logger,
                "Overage charge failed",
                exception=e,
                account_id=str(account_id),
                usage_record_id=str(record_id),
                amount=str(amount),
            )
            raise BillingChargeError(record_id, e) from e

        record = await self.record_repo.mark_paid(record, invoice.id)
        log_info(
            logger,
            "Overage charged",
            account_id=str(account_id),
            usage_record_id=str(record_id),
            stripe_invoice_id=invoice.id,
            amount=str(amount),
        )
        return record
