"""Tests for the static plan catalog."""

import dataclasses
from decimal import Decimal

import pytest

from app.modules.billing.exceptions import UnknownPlanTierError
from app.modules.billing.models import PlanTier, UsageMetric
from app.modules.billing.plans import PLAN_CATALOG, get_plan, list_plans


class TestPlanCatalog:
    """Catalog values and lookups."""

    def test_every_tier_has_an_entry(self):
        assert set(PLAN_CATALOG) == set(PlanTier)
        for tier, entry in PLAN_CATALOG.items():
            assert entry.tier == tier
            assert set(entry.included) == set(UsageMetric)
            assert set(entry.overage_rates) == set(UsageMetric)

    @pytest.mark.parametrize(
        "tier,price,minutes,sms,emails",
        [
            (PlanTier.STARTER, "179", 500, 1000, 5000),
            (PlanTier.PRO, "179", 2000, 5000, 25000),
            (PlanTier.BUSINESS, "299", 10000, 25000, 100000),
        ],
    )
    def test_included_quotas_and_prices(self, tier, price, minutes, sms, emails):
        plan = get_plan(tier)

        assert plan.base_price == Decimal(price)
        assert plan.included_for(UsageMetric.MINUTES) == minutes
        assert plan.included_for(UsageMetric.SMS) == sms
        assert plan.included_for(UsageMetric.EMAILS) == emails

    @pytest.mark.parametrize(
        "tier,minute_rate,sms_rate,email_rate",
        [
            (PlanTier.STARTER, "0.20", "0.08", "0.02"),
            (PlanTier.PRO, "0.15", "0.05", "0.01"),
            (PlanTier.BUSINESS, "0.10", "0.03", "0.005"),
        ],
    )
    def test_overage_rates(self, tier, minute_rate, sms_rate, email_rate):
        plan = get_plan(tier)

        assert plan.rate_for(UsageMetric.MINUTES) == Decimal(minute_rate)
        assert plan.rate_for(UsageMetric.SMS) == Decimal(sms_rate)
        assert plan.rate_for(UsageMetric.EMAILS) == Decimal(email_rate)

    def test_lookup_by_string_value(self):
        assert get_plan("business") is PLAN_CATALOG[PlanTier.BUSINESS]

    @pytest.mark.parametrize("tier", ["free", "", None, "STARTER"])
    def test_unknown_tier_raises(self, tier):
        with pytest.raises(UnknownPlanTierError):
            get_plan(tier)

    def test_list_plans_in_tier_order(self):
        assert [plan.tier for plan in list_plans()] == [
            PlanTier.STARTER,
            PlanTier.PRO,
            PlanTier.BUSINESS,
        ]

    def test_catalog_is_read_only(self):
        plan = get_plan(PlanTier.PRO)

        with pytest.raises(dataclasses.FrozenInstanceError):
            plan.base_price = Decimal("0")
        with pytest.raises(TypeError):
            plan.included[UsageMetric.MINUTES] = 1
        with pytest.raises(TypeError):
            PLAN_CATALOG[PlanTier.PRO] = plan
