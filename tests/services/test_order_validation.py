from dataclasses import replace
from decimal import Decimal

import pytest

from application.services.order_validation_service import OrderValidationService
from domain.common.exceptions import DomainValidationException, OrderNotFoundException
from domain.order.entity import DeliveryInfo, Order, OrderItem, OrderStatus, OrderTotals, compute_totals


VAT = Decimal("0.10")
DELIVERY = DeliveryInfo(recipient_name="Nguyen Van A", phone="0912345678", address="12 Hang Bai", province_city="Hanoi")


def _valid_order(**overrides):
    items = (OrderItem(product_id="SKU-1", quantity=1, unit_price=Decimal("100000")),)
    order = Order(
        id="ORD001",
        status=OrderStatus.PENDING_PAYMENT,
        items=items,
        totals=compute_totals(items, Decimal("40000"), VAT),
        delivery_info=DELIVERY,
    )
    return replace(order, **overrides)


def _with_fee(fee):
    order = _valid_order()
    excl = order.totals.subtotal_excl_vat
    incl = order.totals.subtotal_incl_vat
    return replace(order, totals=OrderTotals(excl, incl, Decimal(fee), incl + Decimal(fee)))


CASES = [
    (lambda: _valid_order(status=OrderStatus.APPROVED), "order.status.not_payable", "status"),
    (lambda: _valid_order(items=()), "order.items.empty", "items"),
    (
        lambda: _valid_order(items=(OrderItem(product_id="SKU-1", quantity=0, unit_price=Decimal("100000")),)),
        "order.item.quantity.non_positive",
        "items[0].quantity",
    ),
    (
        lambda: _valid_order(items=(OrderItem(product_id="SKU-1", quantity=1, unit_price=Decimal("0")),)),
        "order.item.price.non_positive",
        "items[0].unit_price",
    ),
    (lambda: _valid_order(delivery_info=None), "order.delivery_info.missing", "delivery_info"),
    (
        lambda: _valid_order(delivery_info=replace(DELIVERY, phone="")),
        "order.delivery_info.incomplete",
        "delivery_info.phone",
    ),
    (lambda: _with_fee("-200000"), "order.total.non_positive", "total"),
    (lambda: _with_fee("-5000"), "order.delivery_fee.negative", "delivery_fee"),
    (
        lambda: replace(_valid_order(), totals=replace(_valid_order().totals, total=Decimal("140000"))),
        "order.total.mismatch",
        "total",
    ),
]


@pytest.mark.parametrize("build,message_key,field", CASES)
def test_each_rule_has_distinct_key_and_field(build, message_key, field):
    service = OrderValidationService(uow_factory=None, vat_rate=VAT)
    with pytest.raises(DomainValidationException) as ei:
        service.validate_order(build())
    assert ei.value.message_key == message_key
    assert ei.value.field == field


def test_message_keys_are_distinct():
    keys = [key for _, key, _ in CASES]
    assert len(keys) == len(set(keys))


@pytest.mark.parametrize(
    "status",
    [OrderStatus.PENDING_PROCESSING, OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING_DELIVERY_INFO],
)
def test_awaitable_statuses_pass(status):
    service = OrderValidationService(uow_factory=None, vat_rate=VAT)
    order = service.validate_order(_valid_order(status=status))
    assert order.total == Decimal("150000")


@pytest.mark.asyncio
async def test_validate_for_payment_returns_fully_loaded_snapshot(create_checkout, validation_service):
    await create_checkout()

    order = await validation_service.validate_for_payment("ORD001")

    assert order.status is OrderStatus.PENDING_PAYMENT
    assert order.total == Decimal("150000")
    assert [i.product_id for i in order.items] == ["SKU-AODAI-01"]
    assert order.delivery_info.province_city == "Hanoi"


@pytest.mark.asyncio
async def test_readiness(create_checkout, validation_service):
    await create_checkout("ORD001")
    await create_checkout("ORD002", with_delivery=False)

    assert await validation_service.is_ready_for_payment("ORD001") is True
    assert await validation_service.is_ready_for_payment("ORD002") is False
    with pytest.raises(OrderNotFoundException):
        await validation_service.is_ready_for_payment("ORD404")
