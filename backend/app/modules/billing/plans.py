"""Static plan catalog.

Included quotas, overage rates and base prices per plan tier. The catalog is
closed: every tier an account can hold has exactly one entry here.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Union

from app.core.logging import log_error
from app.modules.billing.exceptions import UnknownPlanTierError
from app.modules.billing.models import PlanTier, UsageMetric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanCatalogEntry:
    """Quotas and prices for one plan tier."""
    tier: PlanTier
    name: str
    base_price: Decimal
    included: Mapping[UsageMetric, int]
    overage_rates: Mapping[UsageMetric, Decimal]

    def included_for(self, metric: UsageMetric) -> int:
        return self.included[UsageMetric(metric)]

    def rate_for(self, metric: UsageMetric) -> Decimal:
        return self.overage_rates[UsageMetric(metric)]


def _entry(
    tier: PlanTier,
    name: str,
    base_price: str,
    minutes: int,
    sms: int,
    emails: int,
    minute_rate: str,
    sms_rate: str,
    email_rate: str,
) -> PlanCatalogEntry:
    return PlanCatalogEntry(
        tier=tier,
        name=name,
        base_price=Decimal(base_price),
        included=MappingProxyType({
            UsageMetric.MINUTES: minutes,
            UsageMetric.SMS: sms,
            UsageMetric.EMAILS: emails,
        }),
        overage_rates=MappingProxyType({
            UsageMetric.MINUTES: Decimal(minute_rate),
            UsageMetric.SMS: Decimal(sms_rate),
            UsageMetric.EMAILS: Decimal(email_rate),
        }),
    )


PLAN_CATALOG: Mapping[PlanTier, PlanCatalogEntry] = MappingProxyType({
    PlanTier.STARTER: _entry(
        PlanTier.STARTER, "Starter", "179",
        minutes=500, sms=1000, emails=5000,
        minute_rate="0.20", sms_rate="0.08", email_rate="0.02",
    ),
    PlanTier.PRO: _entry(
        PlanTier.PRO, "Pro", "179",
        minutes=2000, sms=5000, emails=25000,
        minute_rate="0.15", sms_rate="0.05", email_rate="0.01",
    ),
    PlanTier.BUSINESS: _entry(
        PlanTier.BUSINESS, "Business", "299",
        minutes=10000, sms=25000, emails=100000,
        minute_rate="0.10", sms_rate="0.03", email_rate="0.005",
    ),
})


def get_plan(tier: Union[PlanTier, str]) -> PlanCatalogEntry:
    """Get the catalog entry for a plan tier.

    Args:
        tier: PlanTier or its string value

    Raises:
        UnknownPlanTierError: If the tier is not in the catalog
    """
    try:
        return PLAN_CATALOG[PlanTier(tier)]
    except (ValueError, KeyError) as e:
        log_error(logger, "Plan tier missing from catalog", tier=str(tier))
        raise UnknownPlanTierError(tier) from e


def list_plans() -> list[PlanCatalogEntry]:
    """List catalog entries in tier order."""
    return [PLAN_CATALOG[tier] for tier in PlanTier]
