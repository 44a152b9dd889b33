"""Usage metering for billable events.

Counts call minutes, SMS and emails against the account's current billing
period and reports usage against the plan's included quota with progressive
warnings at 50%, 75% and 90%.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_info
from app.modules.billing.calculator import (
    calculate_for_account,
    calculate_usage_percent,
    get_warning_threshold,
)
from app.modules.billing.exceptions import AccountNotFoundError
from app.modules.billing.models import UsageMetric
from app.modules.billing.repository import AccountRepository

logger = logging.getLogger(__name__)


@dataclass
class MetricSummary:
    """Usage of one metric against its included quota."""
    metric: str
    used: int
    included: int
    remaining: int
    overage: int
    percent_used: float
    warning_threshold_reached: Optional[int]


@dataclass
class UsageSummary:
    """Current-period usage for an account."""
    account_id: uuid.UUID
    plan_tier: str
    billing_period_start: datetime
    billing_period_end: datetime
    metrics: list[MetricSummary]
    projected_overage_cost: Decimal
    projected_total_cost: Decimal


def minutes_for_duration(duration_seconds: int) -> int:
    """Billable minutes for a call, rounded up to the next whole minute."""
    if duration_seconds < 0:
        raise ValueError(f"Call duration must be non-negative, got {duration_seconds}")
    return math.ceil(duration_seconds / 60)


class UsageMeteringService:
    """Service for recording billable usage events."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.account_repo = AccountRepository(session)

    async def increment_usage(
        self,
        account_id: uuid.UUID,
        metric: Union[UsageMetric, str],
        amount: int = 1,
    ) -> None:
        """Add usage to an account's counter.

        Args:
            account_id: Account ID
            metric: Metric to count, as UsageMetric or its string value
            amount: Positive number of units

        Raises:
            ValueError: If the metric is unknown or amount is not positive
            AccountNotFoundError: If the account does not exist
        """
        metric = UsageMetric(metric)
        await self.account_repo.increment_usage(account_id, metric, amount)
        log_info(
            logger,
            "Usage recorded",
            account_id=str(account_id),
            metric=metric.value,
            amount=amount,
        )

    async def record_call_completed(
        self,
        account_id: uuid.UUID,
        duration_seconds: int,
    ) -> int:
        """Count a completed call's minutes.

        Returns:
            Minutes added (0 for a call with no duration)
        """
        minutes = minutes_for_duration(duration_seconds)
        if minutes == 0:
            return 0
        await self.increment_usage(account_id, UsageMetric.MINUTES, minutes)
        return minutes

    async def record_sms_sent(self, account_id: uuid.UUID) -> None:
        await self.increment_usage(account_id, UsageMetric.SMS, 1)

    async def record_email_sent(self, account_id: uuid.UUID) -> None:
        await self.increment_usage(account_id, UsageMetric.EMAILS, 1)

    async def get_usage_summary(self, account_id: uuid.UUID) -> UsageSummary:
        """Get current-period usage and projected cost for an account.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = await self.account_repo.get_by_id(account_id)
        if not account:
            raise AccountNotFoundError(account_id)

        calculation = calculate_for_account(account)

        metrics = []
        for usage in calculation.metrics:
            percent = calculate_usage_percent(usage.used, usage.included)
            metrics.append(MetricSummary(
                metric=usage.metric.value,
                used=usage.used,
                included=usage.included,
                remaining=max(0, usage.included - usage.used),
                overage=usage.overage,
                percent_used=round(percent, 2),
                warning_threshold_reached=get_warning_threshold(percent),
            ))

        return UsageSummary(
            account_id=account.id,
            plan_tier=calculation.plan_tier.value,
            billing_period_start=account.current_period_start,
            billing_period_end=account.current_period_end,
            metrics=metrics,
            projected_overage_cost=calculation.total_overage_cost,
            projected_total_cost=calculation.total_cost,
        )
