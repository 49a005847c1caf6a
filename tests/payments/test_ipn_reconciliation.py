from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from application.dtos.payments import ClientContext
from application.services.order_service import OrderApplicationService
from application.services.payment_callback_service import PaymentCallbackService
from application.services.payment_service import PaymentService
from application.services.payment_sweep_service import PaymentSweepService
from domain.common.exceptions import OrderAlreadyPaidException
from domain.order.entity import OrderStatus
from domain.payment.entity import PaymentTransaction, TransactionStatus
from domain.payment.events import PaymentFailed, PaymentSucceeded
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentTransactionRepository
from shared.codes import BusinessCode


ORD001_MINOR = 15000000


@pytest.fixture
def callbacks(uow_factory, gateway, notifier):
    return PaymentCallbackService(uow_factory, gateway, notifier)


@pytest.fixture
def pending_ord001(create_checkout, start_payment):
    async def _pending():
        await create_checkout("ORD001")
        return await start_payment("ORD001")

    return _pending


async def _transaction(uow_factory, txn_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.transaction_repository.get_by_id(txn_id)


async def _order_status(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id(order_id)
    return order.status


@pytest.mark.asyncio
async def test_success_then_replay_is_idempotent(callbacks, pending_ord001, signed_ipn, uow_factory, notifier):
    txn = await pending_ord001()
    params = signed_ipn(txn.gateway_ref, ORD001_MINOR, "00")

    ack = await callbacks.handle_ipn(params)

    assert (ack.code, ack.message) == ("00", "Confirm Success")
    stored = await _transaction(uow_factory, txn.id)
    assert stored.status is TransactionStatus.SUCCESS
    assert stored.external_transaction_id == "14123456"
    assert stored.content == "ResponseCode: 00, BankCode: NCB, PayDate: 20261018100500"
    assert stored.completed_at is not None
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.APPROVED
    assert [type(e) for e in notifier.payments] == [PaymentSucceeded]
    assert notifier.payments[0].transaction_id == txn.id

    replay = await callbacks.handle_ipn(params)

    assert (replay.code, replay.message) == ("02", "Order already confirmed")
    assert len(notifier.payments) == 1
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.SUCCESS


@pytest.mark.asyncio
async def test_customer_cancellation_fails_transaction_and_order(
    callbacks, pending_ord001, signed_ipn, uow_factory, notifier
):
    txn = await pending_ord001()

    ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "24"))

    assert ack.code == "00"
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.FAILED
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.PAYMENT_FAILED
    assert isinstance(notifier.payments[0], PaymentFailed)


@pytest.mark.asyncio
async def test_unknown_order_creates_nothing(callbacks, signed_ipn, uow_factory, payment_methods):
    ack = await callbacks.handle_ipn(signed_ipn("ORD999_1792292400000", ORD001_MINOR, "00"))

    assert (ack.code, ack.message) == ("01", "Order not found")
    async with uow_factory(readonly=True) as uow:
        assert await uow.transaction_repository.get_by_order_id("ORD999") == []
        assert await uow.order_repository.get_by_id("ORD999") is None


@pytest.mark.asyncio
async def test_unmatched_reference_for_known_order(callbacks, pending_ord001, signed_ipn):
    await pending_ord001()
    ack = await callbacks.handle_ipn(signed_ipn("ORD001_1000", ORD001_MINOR, "00"))
    assert ack.code == "01"


@pytest.mark.asyncio
@pytest.mark.parametrize("ref", ["garbage", "ORD001_", "ORD001_notanumber"])
async def test_unparseable_reference(callbacks, signed_ipn, ref):
    ack = await callbacks.handle_ipn(signed_ipn(ref, ORD001_MINOR, "00"))
    assert ack.code == "01"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["14000000", "15000000.5", "-15000000", "abc", "²", "１５０００００００"])
async def test_amount_mismatch_leaves_pending(callbacks, pending_ord001, signed_ipn, uow_factory, notifier, amount):
    txn = await pending_ord001()

    ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, amount, "00"))

    assert (ack.code, ack.message) == ("04", "Invalid amount")
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.PENDING
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.PENDING_PROCESSING
    assert notifier.payments == []


@pytest.mark.asyncio
async def test_tampered_signature_rejected_without_mutation(callbacks, pending_ord001, signed_ipn, uow_factory):
    txn = await pending_ord001()
    params = signed_ipn(txn.gateway_ref, ORD001_MINOR, "24")
    params["vnp_ResponseCode"] = "00"

    ack = await callbacks.handle_ipn(params)

    assert (ack.code, ack.message) == ("97", "Invalid signature")
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "missing",
    ["vnp_TxnRef", "vnp_ResponseCode", "vnp_TransactionNo", "vnp_Amount", "vnp_BankCode", "vnp_PayDate", "vnp_SecureHash"],
)
async def test_missing_required_param_rejected(callbacks, pending_ord001, signed_ipn, uow_factory, missing):
    txn = await pending_ord001()
    params = signed_ipn(txn.gateway_ref, ORD001_MINOR, "00")
    params.pop(missing)

    ack = await callbacks.handle_ipn(params)

    assert ack.code == "97"
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_pending_outcome_acknowledged_without_write(callbacks, pending_ord001, signed_ipn, uow_factory, notifier):
    txn = await pending_ord001()

    ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "07"))

    assert ack.code == "00"
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.PENDING
    assert notifier.payments == []


@pytest.mark.asyncio
async def test_losing_the_status_race_acks_already_confirmed(
    callbacks, pending_ord001, signed_ipn, uow_factory, notifier, monkeypatch
):
    txn = await pending_ord001()
    original = SQLAlchemyPaymentTransactionRepository.update_status

    async def racing_update(self, transaction_id, status, external_id, content=None):
        # A concurrent callback settles the row after our snapshot was read.
        await original(self, transaction_id, TransactionStatus.SUCCESS, "14999999", "other worker")
        return await original(self, transaction_id, status, external_id, content)

    monkeypatch.setattr(SQLAlchemyPaymentTransactionRepository, "update_status", racing_update)

    ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "24"))

    assert ack.code == "02"
    stored = await _transaction(uow_factory, txn.id)
    assert stored.status is TransactionStatus.SUCCESS
    assert stored.external_transaction_id == "14999999"
    assert notifier.payments == []


@pytest.mark.asyncio
async def test_order_write_failure_still_acknowledges_and_sweep_repairs(
    callbacks, pending_ord001, signed_ipn, uow_factory, notifier, monkeypatch
):
    txn = await pending_ord001()

    async def broken(self, *args, **kwargs):
        raise RuntimeError("database unavailable")

    with monkeypatch.context() as m:
        m.setattr(OrderApplicationService, "apply_payment_outcome", broken)
        ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "00"))

    assert ack.code == "00"
    assert (await _transaction(uow_factory, txn.id)).status is TransactionStatus.SUCCESS
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.PENDING_PROCESSING
    assert isinstance(notifier.payments[0], PaymentSucceeded)

    repaired = await PaymentSweepService(uow_factory, notifier).reconcile_order_statuses()

    assert repaired == 1
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.APPROVED


@pytest.mark.asyncio
async def test_storage_error_acks_unknown_error(callbacks, pending_ord001, signed_ipn, monkeypatch):
    txn = await pending_ord001()

    async def failing_lookup(self, order_id):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(SQLAlchemyPaymentTransactionRepository, "get_by_order_id", failing_lookup)

    ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "00"))

    assert (ack.code, ack.message) == ("99", "Unknown error")


async def _paid_but_order_not_advanced(callbacks, pending_ord001, signed_ipn, monkeypatch):
    """Transaction committed as SUCCESS while the order write failed."""
    txn = await pending_ord001()

    async def broken(self, *args, **kwargs):
        raise RuntimeError("database unavailable")

    with monkeypatch.context() as m:
        m.setattr(OrderApplicationService, "apply_payment_outcome", broken)
        ack = await callbacks.handle_ipn(signed_ipn(txn.gateway_ref, ORD001_MINOR, "00"))
    assert ack.code == "00"
    return txn


@pytest.mark.asyncio
async def test_paid_order_cannot_be_paid_again(
    callbacks, pending_ord001, signed_ipn, uow_factory, gateway, order_service, validation_service, monkeypatch
):
    paid = await _paid_but_order_not_advanced(callbacks, pending_ord001, signed_ipn, monkeypatch)

    with pytest.raises(OrderAlreadyPaidException) as ei:
        await validation_service.validate_for_payment("ORD001")
    assert ei.value.message_key == "payment.already_paid"
    assert ei.value.details["transaction_id"] == paid.id

    service = PaymentService(uow_factory, gateway)
    snapshot = await order_service.get_order("ORD001")
    with pytest.raises(OrderAlreadyPaidException) as ei:
        await service.initiate_payment(snapshot, "PM-CARD", ClientContext(client_ip="10.0.0.8"))

    assert ei.value.code == BusinessCode.ORDER_ALREADY_PAID
    assert [t.id for t in await service.list_order_transactions("ORD001")] == [paid.id]


@pytest.mark.asyncio
async def test_paid_order_cannot_be_cancelled(
    callbacks, pending_ord001, signed_ipn, uow_factory, order_service, notifier, monkeypatch
):
    paid = await _paid_but_order_not_advanced(callbacks, pending_ord001, signed_ipn, monkeypatch)

    with pytest.raises(OrderAlreadyPaidException) as ei:
        await order_service.cancel_order("ORD001")

    assert ei.value.message_key == "order.cancel.refund_required"
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.PENDING_PROCESSING
    assert (await _transaction(uow_factory, paid.id)).status is TransactionStatus.SUCCESS

    assert await PaymentSweepService(uow_factory, notifier).reconcile_order_statuses() == 1
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.APPROVED


@pytest.mark.asyncio
async def test_reconcile_prefers_settled_payment_over_later_failure(
    callbacks, pending_ord001, signed_ipn, uow_factory, notifier, monkeypatch
):
    paid = await _paid_but_order_not_advanced(callbacks, pending_ord001, signed_ipn, monkeypatch)
    async with uow_factory() as uow:
        await uow.transaction_repository.create(
            PaymentTransaction(
                id="TXN-LATER-FAILED",
                order_id="ORD001",
                amount=paid.amount,
                status=TransactionStatus.FAILED,
                payment_method_id="PM-CARD",
                created_at=datetime.now(timezone.utc) + timedelta(hours=1),
            )
        )

    assert await PaymentSweepService(uow_factory, notifier).reconcile_order_statuses() == 1
    assert await _order_status(uow_factory, "ORD001") is OrderStatus.APPROVED
