"""Tests for starting a new billing period after payment."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.modules.billing.models import PlanTier, UsageRecord
from app.modules.billing.period_reset import PeriodResetHandler
from app.modules.billing.repository import AccountRepository
from app.modules.billing.tasks import reconcile_due_accounts


async def records_for(session, account_id) -> list[UsageRecord]:
    result = await session.execute(
        select(UsageRecord).where(UsageRecord.account_id == account_id)
    )
    return list(result.scalars().all())


class TestPeriodReset:
    """Counter reset and billing window roll-forward."""

    @pytest.mark.asyncio
    async def test_payment_zeroes_counters_and_rolls_period(
        self, session, make_account, past_period
    ):
        start, end = past_period
        account = await make_account(
            minutes_used=800,
            sms_used=20,
            emails_used=7,
            stripe_customer_id="cus_reset",
            current_period_start=start,
            current_period_end=end,
        )
        now = datetime(2026, 10, 17, 12, 0, 0)

        updated = await PeriodResetHandler(session).on_payment_succeeded("cus_reset", now=now)

        assert updated.id == account.id
        assert updated.minutes_used == 0
        assert updated.sms_used == 0
        assert updated.emails_used == 0
        assert updated.current_period_start == now
        assert updated.current_period_end == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_cycle_length_is_configurable(self, session, make_account):
        await make_account(stripe_customer_id="cus_short")
        now = datetime(2026, 2, 1)

        updated = await PeriodResetHandler(session, cycle_days=28).on_payment_succeeded(
            "cus_short", now=now
        )

        assert updated.current_period_end == datetime(2026, 3, 1)

    @pytest.mark.asyncio
    async def test_unknown_customer_is_a_no_op(self, session, make_account):
        account = await make_account(minutes_used=5, stripe_customer_id="cus_known")

        result = await PeriodResetHandler(session).on_payment_succeeded("cus_unknown")

        assert result is None
        unchanged = await AccountRepository(session).get_by_id(account.id)
        assert unchanged.minutes_used == 5

    @pytest.mark.asyncio
    async def test_repeated_notification_is_idempotent(self, session, make_account):
        await make_account(sms_used=30, stripe_customer_id="cus_repeat")
        handler = PeriodResetHandler(session)
        now = datetime(2026, 10, 17)

        first = await handler.on_payment_succeeded("cus_repeat", now=now)
        second = await handler.on_payment_succeeded("cus_repeat", now=now)

        assert first.sms_used == second.sms_used == 0
        assert second.current_period_start == now
        assert second.current_period_end == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_other_accounts_are_untouched(self, session, make_account):
        await make_account(minutes_used=10, stripe_customer_id="cus_paid")
        other = await make_account(minutes_used=42, stripe_customer_id="cus_other")

        await PeriodResetHandler(session).on_payment_succeeded("cus_paid")

        refreshed = await AccountRepository(session).get_by_id(other.id)
        assert refreshed.minutes_used == 42


class TestCloseBeforeReset:
    """The ending period is written to a usage record before counters reset."""

    @pytest.mark.asyncio
    async def test_unreconciled_due_account_leaves_exactly_one_record(
        self, session, make_account, past_period, stripe_client
    ):
        start, end = past_period
        account = await make_account(
            plan_tier=PlanTier.PRO,
            minutes_used=2200,
            sms_used=4000,
            emails_used=25000,
            auto_pay_overages=True,
            stripe_customer_id="cus_renewed",
            current_period_start=start,
            current_period_end=end,
        )
        account_id = account.id

        updated = await PeriodResetHandler(
            session, stripe_client=stripe_client
        ).on_payment_succeeded("cus_renewed")
        summary = await reconcile_due_accounts(session, stripe_client=stripe_client)

        assert updated.minutes_used == 0
        assert summary["checked"] == 0
        records = await records_for(session, account_id)
        assert len(records) == 1
        record = records[0]
        assert record.billing_period_start == start
        assert record.minutes_used == 2200
        assert record.minutes_overage == 200
        assert record.total_cost == 209
        assert record.paid is True
        stripe_client.charge_overages.assert_called_once()

    @pytest.mark.asyncio
    async def test_period_already_closed_by_sweep_is_not_written_twice(
        self, session, make_account, past_period, stripe_client
    ):
        start, end = past_period
        account = await make_account(
            minutes_used=600,
            auto_pay_overages=True,
            stripe_customer_id="cus_swept",
            current_period_start=start,
            current_period_end=end,
        )
        account_id = account.id
        await reconcile_due_accounts(session, stripe_client=stripe_client)

        await PeriodResetHandler(session, stripe_client=stripe_client).on_payment_succeeded(
            "cus_swept"
        )

        assert len(await records_for(session, account_id)) == 1
        stripe_client.charge_overages.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_charge_still_resets_with_unpaid_record(
        self, session, make_account, past_period, stripe_client
    ):
        start, end = past_period
        account = await make_account(
            minutes_used=600,
            auto_pay_overages=True,
            stripe_customer_id="cus_declined_renewal",
            current_period_start=start,
            current_period_end=end,
        )
        account_id = account.id
        stripe_client.charge_overages.side_effect = RuntimeError("card declined")

        updated = await PeriodResetHandler(
            session, stripe_client=stripe_client
        ).on_payment_succeeded("cus_declined_renewal")

        assert updated.minutes_used == 0
        records = await records_for(session, account_id)
        assert len(records) == 1
        assert records[0].minutes_used == 600
        assert records[0].paid is False
