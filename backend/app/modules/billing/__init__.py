"""Billing module.

Implements usage metering, billing period reconciliation with overage
charges, and Stripe payment webhooks.
"""

from app.modules.billing.router import router
from app.modules.billing.models import (
    Account,
    AccountStatus,
    PlanTier,
    UsageMetric,
    UsageRecord,
)
from app.modules.billing.plans import PLAN_CATALOG, get_plan
from app.modules.billing.metering import UsageMeteringService
from app.modules.billing.reconciler import BillingReconciler
from app.modules.billing.period_reset import PeriodResetHandler

__all__ = [
    "router",
    "Account",
    "AccountStatus",
    "PlanTier",
    "UsageMetric",
    "UsageRecord",
    "PLAN_CATALOG",
    "get_plan",
    "UsageMeteringService",
    "BillingReconciler",
    "PeriodResetHandler",
]
