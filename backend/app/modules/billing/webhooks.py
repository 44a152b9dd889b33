"""Stripe webhook event dispatch."""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_info
from app.modules.billing.models import Account, AccountStatus
from app.modules.billing.period_reset import PeriodResetHandler
from app.modules.billing.repository import AccountRepository
from app.modules.billing.stripe_client import StripeClient, timestamp_to_datetime

logger = logging.getLogger(__name__)


# Stripe subscription status to account status; anything else is a trial
SUBSCRIPTION_STATUS_MAP = {
    "active": AccountStatus.ACTIVE,
    "past_due": AccountStatus.PAST_DUE,
    "canceled": AccountStatus.CANCELED,
}


def map_subscription_status(stripe_status: Optional[str]) -> AccountStatus:
    return SUBSCRIPTION_STATUS_MAP.get(stripe_status or "", AccountStatus.TRIAL)


class StripeWebhookService:
    """Applies verified Stripe events to accounts."""

    def __init__(
        self,
        session: AsyncSession,
        stripe_client: Optional[StripeClient] = None,
    ):
        self.session = session
        self.account_repo = AccountRepository(session)
        self.period_reset = PeriodResetHandler(session, stripe_client=stripe_client)

    async def handle_event(self, event: dict) -> dict:
        """Handle a Stripe webhook event.

        Args:
            event: Verified Stripe event

        Returns:
            Processing result with a ``status`` of processed or ignored
        """
        event_type = event.get("type", "")
        data = event.get("data", {}).get("object", {})

        handlers = {
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

        handler = handlers.get(event_type)
        if handler:
            result = await handler(data)
            result["event_type"] = event_type
            return result

        logger.debug("Ignoring Stripe event", extra={"event_type": event_type})
        return {"status": "ignored", "event_type": event_type}

    async def _resolve_subscription_account(self, data: dict) -> Optional[Account]:
        """Find the account a subscription belongs to.

        Subscriptions created at checkout carry the account ID in metadata;
        older ones are matched by customer.
        """
        metadata = data.get("metadata") or {}
        raw_id = metadata.get("accountId") or metadata.get("account_id")
        if raw_id:
            try:
                return await self.account_repo.get_by_id(uuid.UUID(str(raw_id)))
            except ValueError:
                log_info(logger, "Invalid account id in subscription metadata", account_ref=raw_id)
                return None

        customer_id = data.get("customer")
        if customer_id:
            return await self.account_repo.get_by_stripe_customer_id(customer_id)
        return None

    async def _handle_subscription_changed(self, data: dict) -> dict:
        """Handle subscription.created and subscription.updated webhooks."""
        account = await self._resolve_subscription_account(data)
        if not account:
            return {"status": "ignored", "reason": "account_not_found"}

        status = map_subscription_status(data.get("status"))
        await self.account_repo.update_subscription_state(
            account.id,
            status=status,
            current_period_start=timestamp_to_datetime(data.get("current_period_start")),
            current_period_end=timestamp_to_datetime(data.get("current_period_end")),
            stripe_subscription_id=data.get("id"),
        )
        log_info(
            logger,
            "Subscription state updated",
            account_id=str(account.id),
            status=status.value,
        )
        return {"status": "processed", "account_id": str(account.id)}

    async def _handle_subscription_deleted(self, data: dict) -> dict:
        """Handle subscription.deleted webhook."""
        account = await self._resolve_subscription_account(data)
        if not account:
            return {"status": "ignored", "reason": "account_not_found"}

        await self.account_repo.update_status(account.id, AccountStatus.CANCELED)
        log_info(logger, "Subscription canceled", account_id=str(account.id))
        return {"status": "processed", "account_id": str(account.id)}

    async def _handle_invoice_paid(self, data: dict) -> dict:
        """Handle invoice.paid webhook by closing the period and starting a new one."""
        # Overage invoices raised by the reconciler do not renew the subscription
        if (data.get("metadata") or {}).get("usage_record_id"):
            return {"status": "ignored", "reason": "overage_invoice"}

        customer_id = data.get("customer")
        if not customer_id:
            return {"status": "ignored", "reason": "missing_customer"}

        account = await self.period_reset.on_payment_succeeded(customer_id)
        if not account:
            return {"status": "ignored", "reason": "account_not_found"}
        return {"status": "processed", "account_id": str(account.id)}

    async def _handle_invoice_payment_failed(self, data: dict) -> dict:
        """Handle invoice.payment_failed webhook."""
        customer_id = data.get("customer")
        account = (
            await self.account_repo.get_by_stripe_customer_id(customer_id)
            if customer_id else None
        )
        if not account:
            return {"status": "ignored", "reason": "account_not_found"}

        await self.account_repo.update_status(account.id, AccountStatus.PAST_DUE)
        log_info(logger, "Account marked past due", account_id=str(account.id))
        return {"status": "processed", "account_id": str(account.id)}
