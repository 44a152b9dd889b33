"""Usage and overage cost calculation.

Pure functions over plan catalog entries and counter values. Nothing here
touches the database or Stripe, so the same inputs always give the same
result.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from app.modules.billing.models import Account, PlanTier, UsageMetric
from app.modules.billing.plans import get_plan


# Progressive usage warning thresholds (percent of included quota)
WARNING_THRESHOLDS = [50, 75, 90]

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class MetricUsage:
    """Usage and overage for a single metric."""
    metric: UsageMetric
    included: int
    used: int
    overage: int
    rate: Decimal
    cost: Decimal


@dataclass(frozen=True)
class UsageCalculation:
    """Cost breakdown for one account over one billing period."""
    plan_tier: PlanTier
    base_price: Decimal
    minutes: MetricUsage
    sms: MetricUsage
    emails: MetricUsage
    total_overage_cost: Decimal
    total_cost: Decimal

    @property
    def metrics(self) -> list[MetricUsage]:
        return [self.minutes, self.sms, self.emails]

    @property
    def has_overage(self) -> bool:
        return self.total_overage_cost > 0


def calculate_overage(used: int, included: int) -> int:
    """Units used beyond the included quota.

    Raises:
        ValueError: If either value is negative
    """
    if used < 0 or included < 0:
        raise ValueError(
            f"Usage values must be non-negative (used={used}, included={included})"
        )
    return max(0, used - included)


def _metric_usage(metric: UsageMetric, used: int, included: int, rate: Decimal) -> MetricUsage:
    overage = calculate_overage(used, included)
    return MetricUsage(
        metric=metric,
        included=included,
        used=used,
        overage=overage,
        rate=rate,
        cost=overage * rate,
    )


def calculate_usage(
    tier: Union[PlanTier, str],
    minutes_used: int,
    sms_used: int,
    emails_used: int,
) -> UsageCalculation:
    """Calculate overage and total cost for a plan and its usage.

    Args:
        tier: Plan tier of the account
        minutes_used: Call minutes used in the period
        sms_used: SMS messages sent in the period
        emails_used: Emails sent in the period

    Returns:
        UsageCalculation with per-metric breakdown and totals

    Raises:
        UnknownPlanTierError: If the tier is not in the catalog
        ValueError: If any counter is negative
    """
    plan = get_plan(tier)

    minutes = _metric_usage(
        UsageMetric.MINUTES, minutes_used,
        plan.included_for(UsageMetric.MINUTES), plan.rate_for(UsageMetric.MINUTES),
    )
    sms = _metric_usage(
        UsageMetric.SMS, sms_used,
        plan.included_for(UsageMetric.SMS), plan.rate_for(UsageMetric.SMS),
    )
    emails = _metric_usage(
        UsageMetric.EMAILS, emails_used,
        plan.included_for(UsageMetric.EMAILS), plan.rate_for(UsageMetric.EMAILS),
    )

    total_overage_cost = minutes.cost + sms.cost + emails.cost

    return UsageCalculation(
        plan_tier=plan.tier,
        base_price=plan.base_price,
        minutes=minutes,
        sms=sms,
        emails=emails,
        total_overage_cost=total_overage_cost,
        total_cost=plan.base_price + total_overage_cost,
    )


def calculate_for_account(account: Account) -> UsageCalculation:
    """Calculate the current period cost from an account's counters."""
    return calculate_usage(
        account.plan_tier,
        minutes_used=account.minutes_used or 0,
        sms_used=account.sms_used or 0,
        emails_used=account.emails_used or 0,
    )


def to_cents(amount: Decimal) -> int:
    """Convert a dollar amount to integer cents, rounding half up."""
    return int((Decimal(amount) / _CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_usage_percent(used: int, included: int) -> float:
    """Calculate usage as a percentage of the included quota.

    Args:
        used: Units used
        included: Units included in the plan

    Returns:
        Percentage of quota used (can exceed 100)
    """
    if included <= 0:
        return 100.0 if used > 0 else 0.0
    return (used / included) * 100


def get_warning_threshold(percent: float) -> Optional[int]:
    """Get the highest warning threshold reached.

    Args:
        percent: Current usage percentage

    Returns:
        Highest threshold reached (50, 75, 90) or None
    """
    reached = None
    for threshold in WARNING_THRESHOLDS:
        if percent >= threshold:
            reached = threshold
    return reached
