"""Pydantic schemas for the billing API."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.modules.billing.models import PlanTier, UsageMetric


# ==================== Plan Schemas ====================

class PlanResponse(BaseModel):
    """Quotas and prices for a plan tier."""
    tier: PlanTier
    name: str
    base_price: Decimal = Field(..., description="Monthly base price in dollars")
    included: dict[UsageMetric, int] = Field(..., description="Included units per metric")
    overage_rates: dict[UsageMetric, Decimal] = Field(
        ..., description="Price per unit beyond the included quota"
    )


class PlanListResponse(BaseModel):
    plans: list[PlanResponse]


# ==================== Usage Schemas ====================

class UsageIncrementRequest(BaseModel):
    """Schema for recording usage."""
    metric: UsageMetric
    amount: int = Field(1, gt=0, description="Units to add")


class CallCompletedRequest(BaseModel):
    """Call status notification from the telephony provider."""
    call_sid: Optional[str] = None
    call_status: str = Field(..., description="Final call status, e.g. completed")
    duration_seconds: Optional[int] = Field(None, ge=0)


class CallCompletedResponse(BaseModel):
    call_sid: Optional[str] = None
    minutes_added: int


class MetricUsageResponse(BaseModel):
    """Usage of one metric against its quota."""
    metric: UsageMetric
    used: int
    included: int
    remaining: int
    overage: int
    percent_used: float
    warning_threshold_reached: Optional[int] = None


class UsageSummaryResponse(BaseModel):
    """Current-period usage for an account."""
    account_id: uuid.UUID
    plan_tier: PlanTier
    billing_period_start: datetime
    billing_period_end: datetime
    metrics: list[MetricUsageResponse]
    projected_overage_cost: Decimal
    projected_total_cost: Decimal

    class Config:
        from_attributes = True


# ==================== Usage Record Schemas ====================

class UsageRecordResponse(BaseModel):
    """Schema for a closed billing period."""
    id: uuid.UUID
    account_id: uuid.UUID
    billing_period_start: datetime
    billing_period_end: datetime
    year: int
    month: int
    plan_tier: PlanTier
    plan_price: Decimal
    minutes_included: int
    minutes_used: int
    minutes_overage: int
    minutes_cost: Decimal
    sms_included: int
    sms_used: int
    sms_overage: int
    sms_cost: Decimal
    emails_included: int
    emails_used: int
    emails_overage: int
    emails_cost: Decimal
    base_cost: Decimal
    overage_cost: Decimal
    total_cost: Decimal
    stripe_invoice_id: Optional[str] = None
    paid: bool
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UsageRecordListResponse(BaseModel):
    """Paginated usage record history."""
    records: list[UsageRecordResponse]
    total: int
    limit: int
    offset: int
