"""Billing domain exceptions."""

import uuid
from typing import Optional


class BillingError(Exception):
    """Base exception for billing errors."""


class UnknownPlanTierError(BillingError):
    """Raised when a plan tier is outside the catalog.

    Every account is created with a catalog tier, so this signals corrupt
    data rather than bad user input.
    """

    def __init__(self, tier: object):
        self.tier = tier
        super().__init__(f"Unknown plan tier: {tier!r}")


class AccountNotFoundError(BillingError):
    """Raised when an account does not exist."""

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class UsageRecordNotFoundError(BillingError):
    """Raised when a usage record does not exist."""

    def __init__(self, usage_record_id: uuid.UUID):
        self.usage_record_id = usage_record_id
        super().__init__(f"Usage record {usage_record_id} not found")


class BillingChargeError(BillingError):
    """Raised when the overage charge failed after all retries.

    The usage record for the period stays persisted with ``paid=False``
    until ``BillingReconciler.charge_unpaid`` succeeds.
    """

    def __init__(
        self,
        usage_record_id: uuid.UUID,
        cause: Optional[BaseException] = None,
    ):
        self.usage_record_id = usage_record_id
        self.cause = cause
        message = f"Overage charge failed for usage record {usage_record_id}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
