from datetime import datetime, timedelta, timezone

import pytest

from application.services.payment_sweep_service import PaymentSweepService
from core.settings import SweepSettings
from domain.order.entity import OrderStatus
from domain.payment.entity import TransactionStatus
from domain.payment.events import PaymentFailed
from infrastructure.tasks.config.beat import build_beat_schedule


@pytest.fixture
def sweep(uow_factory, notifier):
    return PaymentSweepService(uow_factory, notifier, pending_timeout_minutes=30)


@pytest.mark.asyncio
async def test_disabled_without_timeout(uow_factory, notifier, create_checkout, start_payment):
    await create_checkout("ORD001")
    await start_payment("ORD001")
    sweep = PaymentSweepService(uow_factory, notifier, pending_timeout_minutes=None)

    assert await sweep.expire_stale_pending(datetime.now(timezone.utc) + timedelta(days=1)) == 0
    assert notifier.payments == []


@pytest.mark.asyncio
async def test_stale_pending_transaction_expires(sweep, create_checkout, start_payment, uow_factory, notifier):
    await create_checkout("ORD001")
    txn = await start_payment("ORD001")

    expired = await sweep.expire_stale_pending(datetime.now(timezone.utc) + timedelta(hours=2))

    assert expired == 1
    async with uow_factory(readonly=True) as uow:
        stored = await uow.transaction_repository.get_by_id(txn.id)
        order = await uow.order_repository.get_by_id("ORD001")
    assert stored.status is TransactionStatus.FAILED
    assert stored.content.startswith("Expired")
    assert stored.external_transaction_id is None
    assert order.status is OrderStatus.PAYMENT_FAILED
    assert isinstance(notifier.payments[-1], PaymentFailed)
    assert notifier.payments[-1].reason == "expired"


@pytest.mark.asyncio
async def test_recent_pending_transaction_is_left_alone(sweep, create_checkout, start_payment, uow_factory):
    await create_checkout("ORD001")
    txn = await start_payment("ORD001")

    assert await sweep.expire_stale_pending() == 0
    async with uow_factory(readonly=True) as uow:
        assert (await uow.transaction_repository.get_by_id(txn.id)).status is TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_reconcile_is_a_noop_when_orders_are_in_sync(sweep, create_checkout, start_payment):
    await create_checkout("ORD001")
    await start_payment("ORD001")
    assert await sweep.reconcile_order_statuses() == 0


def test_order_repair_always_scheduled_expiry_only_with_timeout():
    default = build_beat_schedule(SweepSettings(interval_seconds=120))

    assert default == {
        "reconcile-order-statuses": {"task": "payments.reconcile_order_statuses", "schedule": 120.0},
    }

    schedule = build_beat_schedule(SweepSettings(pending_timeout_minutes=30, interval_seconds=120))

    assert schedule["expire-stale-payments"] == {"task": "payments.expire_stale_payments", "schedule": 120.0}
    assert schedule["reconcile-order-statuses"]["task"] == "payments.reconcile_order_statuses"
