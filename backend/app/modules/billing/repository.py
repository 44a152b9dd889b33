"""Repositories for billing database operations."""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.modules.billing.exceptions import AccountNotFoundError
from app.modules.billing.models import (
    Account,
    AccountStatus,
    PlanTier,
    UsageMetric,
    UsageRecord,
    METRIC_COUNTER_COLUMNS,
)


class AccountRepository:
    """Repository for account and usage counter operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        email: Optional[str] = None,
        plan_tier: str = PlanTier.STARTER.value,
        status: str = AccountStatus.TRIAL.value,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        auto_pay_overages: bool = False,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        trial_ends_at: Optional[datetime] = None,
    ) -> Account:
        """Create a new account."""
        now = datetime.utcnow()
        if current_period_start is None:
            current_period_start = now
        if current_period_end is None:
            current_period_end = current_period_start + timedelta(
                days=settings.BILLING_CYCLE_DAYS
            )

        account = Account(
            name=name,
            email=email,
            plan_tier=plan_tier,
            status=status,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            auto_pay_overages=auto_pay_overages,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            trial_ends_at=trial_ends_at,
        )
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def get_by_id(self, account_id: uuid.UUID) -> Optional[Account]:
        """Get account by ID."""
        result = await self.session.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_stripe_customer_id(
        self, stripe_customer_id: str
    ) -> Optional[Account]:
        """Get account by Stripe customer ID."""
        result = await self.session.execute(
            select(Account)
            .where(Account.stripe_customer_id == stripe_customer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment_usage(
        self,
        account_id: uuid.UUID,
        metric: UsageMetric,
        amount: int,
    ) -> None:
        """Atomically add ``amount`` to one usage counter.

        The addition happens inside a single UPDATE statement, so concurrent
        increments for the same account never lose updates.

        Raises:
            ValueError: If amount is not a positive integer
            AccountNotFoundError: If no account matched
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"Usage amount must be a positive integer, got {amount!r}")

        column_name = METRIC_COUNTER_COLUMNS[UsageMetric(metric)]
        column = getattr(Account, column_name)

        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values({column_name: column + amount})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            raise AccountNotFoundError(account_id)
        await self.session.commit()

    async def reset_period(
        self,
        account_id: uuid.UUID,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[Account]:
        """Zero all usage counters and move the billing window in one UPDATE."""
        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(
                minutes_used=0,
                sms_used=0,
                emails_used=0,
                current_period_start=period_start,
                current_period_end=period_end,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount == 0:
            return None
        return await self.get_by_id(account_id)

    async def update_account(
        self,
        account_id: uuid.UUID,
        **kwargs,
    ) -> Optional[Account]:
        """Update account fields."""
        account = await self.get_by_id(account_id)
        if not account:
            return None

        for key, value in kwargs.items():
            if hasattr(account, key):
                setattr(account, key, value)

        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def update_status(
        self,
        account_id: uuid.UUID,
        status: AccountStatus,
    ) -> Optional[Account]:
        """Update account status."""
        return await self.update_account(account_id, status=AccountStatus(status).value)

    async def update_subscription_state(
        self,
        account_id: uuid.UUID,
        status: AccountStatus,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> Optional[Account]:
        """Copy subscription status and period from the payment processor."""
        fields = {"status": AccountStatus(status).value}
        if current_period_start is not None:
            fields["current_period_start"] = current_period_start
        if current_period_end is not None:
            fields["current_period_end"] = current_period_end
        if stripe_subscription_id is not None:
            fields["stripe_subscription_id"] = stripe_subscription_id
        return await self.update_account(account_id, **fields)

    async def get_due_for_reconciliation(
        self,
        now: Optional[datetime] = None,
    ) -> list[Account]:
        """Get billable accounts whose current period has ended."""
        if now is None:
            now = datetime.utcnow()
        result = await self.session.execute(
            select(Account)
            .where(
                Account.current_period_end <= now,
                Account.status.in_([
                    AccountStatus.ACTIVE.value,
                    AccountStatus.PAST_DUE.value,
                ]),
            )
            .order_by(Account.current_period_end)
        )
        return list(result.scalars().all())


class UsageRecordRepository:
    """Repository for usage record operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, record_id: uuid.UUID) -> Optional[UsageRecord]:
        """Get usage record by ID."""
        result = await self.session.execute(
            select(UsageRecord).where(UsageRecord.id == record_id)
        )
        return result.scalar_one_or_none()

    async def get_for_period(
        self,
        account_id: uuid.UUID,
        billing_period_start: datetime,
    ) -> Optional[UsageRecord]:
        """Get the usage record for an account's billing period."""
        result = await self.session.execute(
            select(UsageRecord).where(
                UsageRecord.account_id == account_id,
                UsageRecord.billing_period_start == billing_period_start,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> tuple[UsageRecord, bool]:
        """Insert a usage record unless one exists for the same period.

        Returns:
            Tuple of (record, created). When a concurrent writer already
            closed the period, the existing record is returned with
            ``created=False``.
        """
        record = UsageRecord(**kwargs)
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_for_period(
                kwargs["account_id"], kwargs["billing_period_start"]
            )
            if existing is None:
                raise
            return existing, False

        await self.session.refresh(record)
        return record, True

    async def mark_paid(
        self,
        record: UsageRecord,
        stripe_invoice_id: str,
        paid_at: Optional[datetime] = None,
    ) -> UsageRecord:
        """Attach the Stripe invoice and mark the record as paid."""
        record.stripe_invoice_id = stripe_invoice_id
        record.paid = True
        record.paid_at = paid_at or datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def list_for_account(
        self,
        account_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[UsageRecord], int]:
        """List usage records for an account, newest period first.

        Returns:
            Tuple of (records, total_count)
        """
        count_result = await self.session.execute(
            select(func.count(UsageRecord.id)).where(
                UsageRecord.account_id == account_id
            )
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            select(UsageRecord)
            .where(UsageRecord.account_id == account_id)
            .order_by(UsageRecord.billing_period_start.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total
