"""API Router for billing.

Endpoints for usage metering, billing period reconciliation and Stripe
webhooks.
"""

import dataclasses
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.logging import log_error
from app.modules.billing.exceptions import (
    AccountNotFoundError,
    BillingChargeError,
    UnknownPlanTierError,
    UsageRecordNotFoundError,
)
from app.modules.billing.metering import UsageMeteringService
from app.modules.billing.plans import list_plans
from app.modules.billing.reconciler import BillingReconciler
from app.modules.billing.repository import AccountRepository, UsageRecordRepository
from app.modules.billing.schemas import (
    CallCompletedRequest,
    CallCompletedResponse,
    PlanListResponse,
    PlanResponse,
    UsageIncrementRequest,
    UsageRecordListResponse,
    UsageRecordResponse,
    UsageSummaryResponse,
)
from app.modules.billing.stripe_client import StripeClient
from app.modules.billing.webhooks import StripeWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

COMPLETED_CALL_STATUS = "completed"


def get_billing_reconciler(
    session: AsyncSession = Depends(get_session),
) -> BillingReconciler:
    return BillingReconciler(session)


def _plan_config_error(e: UnknownPlanTierError) -> HTTPException:
    log_error(logger, "Account has a plan outside the catalog", exception=e)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Plan configuration error",
    )


def _charge_failed_error(e: BillingChargeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={
            "message": "Overage charge failed",
            "usage_record_id": str(e.usage_record_id),
        },
    )


# ==================== Plans ====================

@router.get("/plans", response_model=PlanListResponse)
async def get_plans():
    """Get all plan tiers with quotas and overage rates."""
    return PlanListResponse(plans=[
        PlanResponse(
            tier=plan.tier,
            name=plan.name,
            base_price=plan.base_price,
            included=dict(plan.included),
            overage_rates=dict(plan.overage_rates),
        )
        for plan in list_plans()
    ])


# ==================== Usage Metering ====================

@router.post(
    "/accounts/{account_id}/usage",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def record_usage(
    account_id: uuid.UUID,
    data: UsageIncrementRequest,
    session: AsyncSession = Depends(get_session),
):
    """Add usage to an account's current billing period."""
    service = UsageMeteringService(session)
    try:
        await service.increment_usage(account_id, data.metric, data.amount)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/accounts/{account_id}/calls/completed",
    response_model=CallCompletedResponse,
)
async def record_call_completed(
    account_id: uuid.UUID,
    data: CallCompletedRequest,
    session: AsyncSession = Depends(get_session),
):
    """Count minutes for a finished call.

    Only calls with status ``completed`` and a duration are billable.
    """
    if data.call_status != COMPLETED_CALL_STATUS or not data.duration_seconds:
        return CallCompletedResponse(call_sid=data.call_sid, minutes_added=0)

    service = UsageMeteringService(session)
    try:
        minutes = await service.record_call_completed(account_id, data.duration_seconds)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return CallCompletedResponse(call_sid=data.call_sid, minutes_added=minutes)


@router.get("/accounts/{account_id}/usage", response_model=UsageSummaryResponse)
async def get_usage_summary(
    account_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Get current-period usage and projected cost."""
    service = UsageMeteringService(session)
    try:
        summary = await service.get_usage_summary(account_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnknownPlanTierError as e:
        raise _plan_config_error(e)
    return UsageSummaryResponse(**dataclasses.asdict(summary))


# ==================== Reconciliation ====================

@router.post("/accounts/{account_id}/reconcile", response_model=UsageRecordResponse)
async def reconcile_account(
    account_id: uuid.UUID,
    reconciler: BillingReconciler = Depends(get_billing_reconciler),
):
    """Close the current billing period and charge overages."""
    try:
        return await reconciler.reconcile(account_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UnknownPlanTierError as e:
        raise _plan_config_error(e)
    except BillingChargeError as e:
        raise _charge_failed_error(e)


@router.post("/usage-records/{usage_record_id}/charge", response_model=UsageRecordResponse)
async def charge_usage_record(
    usage_record_id: uuid.UUID,
    reconciler: BillingReconciler = Depends(get_billing_reconciler),
):
    """Retry the overage charge of an unpaid usage record."""
    try:
        return await reconciler.charge_unpaid(usage_record_id)
    except (UsageRecordNotFoundError, AccountNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except BillingChargeError as e:
        raise _charge_failed_error(e)


@router.get("/accounts/{account_id}/usage-records", response_model=UsageRecordListResponse)
async def list_usage_records(
    account_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """Get closed billing periods, newest first."""
    account = await AccountRepository(session).get_by_id(account_id)
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

    records, total = await UsageRecordRepository(session).list_for_account(
        account_id, limit=limit, offset=offset
    )
    return UsageRecordListResponse(
        records=[UsageRecordResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


# ==================== Stripe Webhooks ====================

@router.post("/stripe/webhook")
async def handle_stripe_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Handle Stripe webhook events."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = StripeClient.construct_webhook_event(payload, sig_header)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    service = StripeWebhookService(session)
    return await service.handle_event(event)
