"""API tests for the billing router."""

import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe
from fastapi import Depends

from app.core.config import settings
from app.core.database import get_session
from app.modules.billing.models import PlanTier
from app.modules.billing.reconciler import BillingReconciler
from app.modules.billing.router import get_billing_reconciler

BASE = f"{settings.API_V1_PREFIX}/billing"


@pytest.fixture
def reconciler_with(stripe_client):
    """Route reconciliations through the Stripe client double."""
    from app.main import app

    def _override(session=Depends(get_session)):
        return BillingReconciler(
            session,
            stripe_client=stripe_client,
            retry_attempts=2,
            retry_base_delay=0,
        )

    app.dependency_overrides[get_billing_reconciler] = _override
    yield stripe_client
    app.dependency_overrides.pop(get_billing_reconciler, None)


class TestHealthAndPlans:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_list_plans(self, client):
        response = await client.get(f"{BASE}/plans")

        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["tier"] for p in plans] == ["starter", "pro", "business"]
        assert plans[0]["included"]["minutes"] == 500
        assert Decimal(plans[2]["overage_rates"]["emails"]) == Decimal("0.005")


class TestUsageEndpoints:

    @pytest.mark.asyncio
    async def test_record_usage_returns_no_content(self, client, make_account):
        account = await make_account()

        response = await client.post(
            f"{BASE}/accounts/{account.id}/usage",
            json={"metric": "sms", "amount": 4},
        )
        assert response.status_code == 204

        summary = (await client.get(f"{BASE}/accounts/{account.id}/usage")).json()
        sms = next(m for m in summary["metrics"] if m["metric"] == "sms")
        assert sms["used"] == 4

    @pytest.mark.asyncio
    async def test_record_usage_for_unknown_account(self, client):
        response = await client.post(
            f"{BASE}/accounts/{uuid.uuid4()}/usage",
            json={"metric": "minutes", "amount": 1},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{"metric": "minutes", "amount": 0}, {"metric": "faxes", "amount": 1}],
    )
    async def test_record_usage_rejects_invalid_body(self, client, make_account, body):
        account = await make_account()

        response = await client.post(f"{BASE}/accounts/{account.id}/usage", json=body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_completed_call_adds_minutes(self, client, make_account):
        account = await make_account()

        response = await client.post(
            f"{BASE}/accounts/{account.id}/calls/completed",
            json={"call_sid": "CA123", "call_status": "completed", "duration_seconds": 61},
        )

        assert response.status_code == 200
        assert response.json() == {"call_sid": "CA123", "minutes_added": 2}

    @pytest.mark.asyncio
    async def test_unanswered_call_adds_nothing(self, client, make_account):
        account = await make_account()

        response = await client.post(
            f"{BASE}/accounts/{account.id}/calls/completed",
            json={"call_sid": "CA124", "call_status": "no-answer", "duration_seconds": 30},
        )

        assert response.json()["minutes_added"] == 0

    @pytest.mark.asyncio
    async def test_usage_summary(self, client, make_account):
        account = await make_account(plan_tier=PlanTier.PRO, minutes_used=1500)

        response = await client.get(f"{BASE}/accounts/{account.id}/usage")

        assert response.status_code == 200
        body = response.json()
        assert body["plan_tier"] == "pro"
        minutes = next(m for m in body["metrics"] if m["metric"] == "minutes")
        assert minutes["percent_used"] == 75.0
        assert minutes["warning_threshold_reached"] == 75
        assert Decimal(body["projected_total_cost"]) == Decimal("179")

    @pytest.mark.asyncio
    async def test_usage_summary_unknown_account(self, client):
        response = await client.get(f"{BASE}/accounts/{uuid.uuid4()}/usage")

        assert response.status_code == 404


class TestReconcileEndpoints:

    @pytest.mark.asyncio
    async def test_reconcile_charges_overage(self, client, make_account, reconciler_with):
        account = await make_account(
            minutes_used=600, auto_pay_overages=True, stripe_customer_id="cus_api"
        )

        response = await client.post(f"{BASE}/accounts/{account.id}/reconcile")

        assert response.status_code == 200
        body = response.json()
        assert body["paid"] is True
        assert body["stripe_invoice_id"] == "in_test_123"
        assert Decimal(body["total_cost"]) == Decimal("199")

    @pytest.mark.asyncio
    async def test_reconcile_charge_failure_returns_bad_gateway(
        self, client, make_account, reconciler_with
    ):
        account = await make_account(
            minutes_used=600, auto_pay_overages=True, stripe_customer_id="cus_fail"
        )
        reconciler_with.charge_overages.side_effect = RuntimeError("card declined")

        response = await client.post(f"{BASE}/accounts/{account.id}/reconcile")

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert uuid.UUID(detail["usage_record_id"])

        history = (await client.get(f"{BASE}/accounts/{account.id}/usage-records")).json()
        assert history["total"] == 1
        assert history["records"][0]["paid"] is False

    @pytest.mark.asyncio
    async def test_unpaid_record_can_be_charged_again(
        self, client, make_account, reconciler_with
    ):
        account = await make_account(
            minutes_used=600, auto_pay_overages=True, stripe_customer_id="cus_retry_api"
        )
        reconciler_with.charge_overages.side_effect = RuntimeError("card declined")
        failed = await client.post(f"{BASE}/accounts/{account.id}/reconcile")
        record_id = failed.json()["detail"]["usage_record_id"]

        reconciler_with.charge_overages.side_effect = None
        response = await client.post(f"{BASE}/usage-records/{record_id}/charge")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == record_id
        assert body["paid"] is True
        assert body["stripe_invoice_id"] == "in_test_123"

    @pytest.mark.asyncio
    async def test_charge_unknown_record(self, client, reconciler_with):
        response = await client.post(f"{BASE}/usage-records/{uuid.uuid4()}/charge")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reconcile_unknown_account(self, client, reconciler_with):
        response = await client.post(f"{BASE}/accounts/{uuid.uuid4()}/reconcile")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_usage_records_pagination(self, client, make_account, reconciler_with):
        account = await make_account()
        await client.post(f"{BASE}/accounts/{account.id}/reconcile")

        response = await client.get(
            f"{BASE}/accounts/{account.id}/usage-records", params={"limit": 1, "offset": 0}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["limit"] == 1
        assert len(body["records"]) == 1

    @pytest.mark.asyncio
    async def test_usage_records_unknown_account(self, client):
        response = await client.get(f"{BASE}/accounts/{uuid.uuid4()}/usage-records")

        assert response.status_code == 404


class TestStripeWebhookEndpoint:

    @pytest.mark.asyncio
    async def test_invalid_signature_rejected(self, client):
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            response = await client.post(
                f"{BASE}/stripe/webhook",
                content=b"{}",
                headers={"stripe-signature": "t=1,v1=bad"},
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_verified_event_is_dispatched(self, client, make_account):
        account = await make_account(minutes_used=50, stripe_customer_id="cus_hook")
        event = {
            "id": "evt_1",
            "type": "invoice.paid",
            "data": {"object": {"id": "in_9", "customer": "cus_hook"}},
        }

        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            response = await client.post(
                f"{BASE}/stripe/webhook",
                content=b'{"id": "evt_1"}',
                headers={"stripe-signature": "t=1,v1=good"},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        construct.assert_called_once_with(
            b'{"id": "evt_1"}', "t=1,v1=good", settings.STRIPE_WEBHOOK_SECRET
        )

        summary = (await client.get(f"{BASE}/accounts/{account.id}/usage")).json()
        minutes = next(m for m in summary["metrics"] if m["metric"] == "minutes")
        assert minutes["used"] == 0
