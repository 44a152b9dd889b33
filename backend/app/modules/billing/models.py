"""Billing models for tenant accounts and usage records.

An Account carries the live usage counters for its current billing period.
A UsageRecord is the immutable snapshot written when a period is reconciled.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class PlanTier(str, Enum):
    """Subscription plan tiers."""
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"


class AccountStatus(str, Enum):
    """Account lifecycle status values."""
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class UsageMetric(str, Enum):
    """Types of metered usage."""
    MINUTES = "minutes"
    SMS = "sms"
    EMAILS = "emails"


# Counter column on Account for each metric
METRIC_COUNTER_COLUMNS = {
    UsageMetric.MINUTES: "minutes_used",
    UsageMetric.SMS: "sms_used",
    UsageMetric.EMAILS: "emails_used",
}

# Money columns: dollars with sub-cent precision for per-unit rates
Money = Numeric(12, 4)


class Account(Base):
    """Tenant account with usage counters for the current billing period."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Plan details
    plan_tier: Mapped[str] = mapped_column(
        String(50), default=PlanTier.STARTER.value, nullable=False, index=True
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50), default=AccountStatus.TRIAL.value, nullable=False, index=True
    )

    # Usage counters (monotonic within a period, zeroed on period reset)
    minutes_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sms_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    emails_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Billing period
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    auto_pay_overages: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Stripe integration
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )

    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("minutes_used >= 0", name="ck_accounts_minutes_used_non_negative"),
        CheckConstraint("sms_used >= 0", name="ck_accounts_sms_used_non_negative"),
        CheckConstraint("emails_used >= 0", name="ck_accounts_emails_used_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, name={self.name}, plan={self.plan_tier})>"

    def has_billing_customer(self) -> bool:
        return bool(self.stripe_customer_id)


class UsageRecord(Base):
    """Usage and cost snapshot for one account and one billing period.

    Written once per reconciliation. The only later change is attaching the
    Stripe invoice after a successful overage charge.
    """

    __tablename__ = "usage_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Billing period this record closes
    billing_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    billing_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    # Plan at time of billing
    plan_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Minutes
    minutes_included: Mapped[int] = mapped_column(Integer, nullable=False)
    minutes_used: Mapped[int] = mapped_column(Integer, nullable=False)
    minutes_overage: Mapped[int] = mapped_column(Integer, nullable=False)
    minutes_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # SMS
    sms_included: Mapped[int] = mapped_column(Integer, nullable=False)
    sms_used: Mapped[int] = mapped_column(Integer, nullable=False)
    sms_overage: Mapped[int] = mapped_column(Integer, nullable=False)
    sms_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Emails
    emails_included: Mapped[int] = mapped_column(Integer, nullable=False)
    emails_used: Mapped[int] = mapped_column(Integer, nullable=False)
    emails_overage: Mapped[int] = mapped_column(Integer, nullable=False)
    emails_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Totals
    base_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    overage_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Stripe charge
    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "billing_period_start", name="uq_usage_record_account_period"
        ),
        Index("ix_usage_record_account_created", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(id={self.id}, account={self.account_id}, "
            f"total={self.total_cost}, paid={self.paid})>"
        )
