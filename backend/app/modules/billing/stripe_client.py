"""Stripe client for overage charges and webhook verification."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from dataclasses import dataclass

import stripe
from stripe import Invoice as StripeInvoice

from app.core.config import settings
from app.modules.billing.calculator import to_cents


# Configure Stripe API key
stripe.api_key = settings.STRIPE_SECRET_KEY

OVERAGE_DESCRIPTION = "Usage overages"


@dataclass
class StripeInvoiceData:
    """Data for a Stripe invoice."""
    id: str
    customer_id: str
    status: str
    total: int
    amount_paid: int
    amount_due: int
    currency: str
    paid: bool = False
    hosted_invoice_url: Optional[str] = None


class StripeClient:
    """Client for the Stripe API calls made by billing.

    Methods are synchronous like the Stripe SDK; async callers run them in a
    worker thread.
    """

    def __init__(self):
        """Initialize Stripe client."""
        if not settings.STRIPE_SECRET_KEY:
            raise ValueError("STRIPE_SECRET_KEY is not configured")

    # ==================== Invoice Management ====================

    def add_invoice_item(
        self,
        customer_id: str,
        amount_cents: int,
        description: str = OVERAGE_DESCRIPTION,
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Add a pending invoice item to the customer's next invoice.

        Args:
            customer_id: Stripe customer ID
            amount_cents: Amount in cents
            description: Item description
            currency: Currency code (default BILLING_CURRENCY)
            idempotency_key: Stripe idempotency key for safe retries

        Returns:
            Invoice item ID
        """
        params = {
            "customer": customer_id,
            "amount": amount_cents,
            "currency": currency or settings.BILLING_CURRENCY,
            "description": description,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        item = stripe.InvoiceItem.create(**params)
        return item.id

    def create_invoice(
        self,
        customer_id: str,
        auto_advance: bool = True,
        metadata: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> StripeInvoiceData:
        """Create an invoice from the customer's pending invoice items.

        Args:
            customer_id: Stripe customer ID
            auto_advance: Whether Stripe finalizes the invoice automatically
            metadata: Additional metadata
            idempotency_key: Stripe idempotency key for safe retries

        Returns:
            StripeInvoiceData with invoice details
        """
        params = {
            "customer": customer_id,
            "auto_advance": auto_advance,
            "pending_invoice_items_behavior": "include",
            "metadata": metadata or {},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        invoice = stripe.Invoice.create(**params)
        return self._invoice_to_data(invoice)

    def pay_invoice(
        self,
        invoice_id: str,
        idempotency_key: Optional[str] = None,
    ) -> StripeInvoiceData:
        """Pay an invoice with the customer's default payment method."""
        params = {}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        invoice = stripe.Invoice.pay(invoice_id, **params)
        return self._invoice_to_data(invoice)

    def charge_overages(
        self,
        customer_id: str,
        amount: Decimal,
        account_id: uuid.UUID,
        usage_record_id: Optional[uuid.UUID] = None,
    ) -> StripeInvoiceData:
        """Invoice and immediately collect an overage amount.

        Creates an invoice item for the amount in cents, invoices it and pays
        the invoice. When ``usage_record_id`` is given it keys every call, so
        a retried charge for the same record never bills twice.

        Args:
            customer_id: Stripe customer ID
            amount: Overage amount in dollars
            account_id: Account ID stored in invoice metadata
            usage_record_id: Usage record being charged

        Returns:
            Paid StripeInvoiceData

        Raises:
            ValueError: If the amount rounds to less than one cent
        """
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            raise ValueError(f"Overage amount must be positive, got {amount}")

        key_prefix = f"overage-{usage_record_id}" if usage_record_id else None
        metadata = {"account_id": str(account_id)}
        if usage_record_id:
            metadata["usage_record_id"] = str(usage_record_id)

        self.add_invoice_item(
            customer_id,
            amount_cents,
            idempotency_key=f"{key_prefix}-item" if key_prefix else None,
        )
        invoice = self.create_invoice(
            customer_id,
            auto_advance=True,
            metadata=metadata,
            idempotency_key=f"{key_prefix}-invoice" if key_prefix else None,
        )
        return self.pay_invoice(
            invoice.id,
            idempotency_key=f"{key_prefix}-pay" if key_prefix else None,
        )

    def _invoice_to_data(self, inv: StripeInvoice) -> StripeInvoiceData:
        """Convert Stripe Invoice to StripeInvoiceData."""
        return StripeInvoiceData(
            id=inv.id,
            customer_id=inv.customer,
            status=inv.get("status") or "draft",
            total=inv.get("total") or 0,
            amount_paid=inv.get("amount_paid") or 0,
            amount_due=inv.get("amount_due") or 0,
            currency=inv.get("currency") or settings.BILLING_CURRENCY,
            paid=inv.get("status") == "paid",
            hosted_invoice_url=inv.get("hosted_invoice_url"),
        )

    # ==================== Webhook Handling ====================

    @staticmethod
    def construct_webhook_event(
        payload: bytes,
        sig_header: str,
    ) -> stripe.Event:
        """Construct and verify a webhook event.

        Args:
            payload: Raw request body
            sig_header: Stripe-Signature header value

        Returns:
            Verified Stripe Event

        Raises:
            ValueError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                sig_header,
                settings.STRIPE_WEBHOOK_SECRET,
            )
            return event
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid webhook signature: {e}")


def timestamp_to_datetime(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to a naive UTC datetime."""
    if value is None:
        return None
    return datetime.utcfromtimestamp(value)


# Singleton instance
_stripe_client: Optional[StripeClient] = None


def get_stripe_client() -> StripeClient:
    """Get the Stripe client singleton.

    Returns:
        StripeClient instance
    """
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient()
    return _stripe_client
