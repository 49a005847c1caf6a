"""
订单应用服务（application/services）- 结账、配送信息与订单生命周期操作

所有状态变更都经由 OrderStateMachine 完成。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from application.dto import OrderCreateDTO
from application.ports.notifications import PaymentNotifier
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, OrderAlreadyPaidException, OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import (
    DeliveryInfo,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusRecord,
    OrderTotals,
    compute_totals,
    new_order_id,
)
from domain.order.events import OrderStatusChanged
from domain.order.state_machine import OrderStateMachine
from domain.payment.entity import TransactionStatus, settled_payment
from domain.payment.events import PaymentFailed


logger = get_logger(__name__)

# 支付开始后配送信息不可再修改
DELIVERY_EDITABLE_STATUSES = frozenset({OrderStatus.PENDING_DELIVERY_INFO, OrderStatus.PENDING_PAYMENT})


class OrderApplicationService:
    """订单应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        notifier: Optional[PaymentNotifier] = None,
        *,
        vat_rate: Decimal = settings.order.vat_rate,
        rush_cities: Iterable[str] = tuple(settings.order.rush_delivery_cities),
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._vat_rate = vat_rate
        self._rush_cities = tuple(rush_cities)

    async def create_order(self, data: OrderCreateDTO, *, order_id: Optional[str] = None) -> Order:
        """开始结账：以价格快照创建订单，状态为 PENDING_DELIVERY_INFO"""
        items = tuple(
            OrderItem(
                product_id=i.product_id,
                product_title=i.product_title,
                quantity=i.quantity,
                unit_price=i.unit_price,
            )
            for i in data.items
        )
        order = Order(
            id=order_id or new_order_id(),
            status=OrderStatus.PENDING_DELIVERY_INFO,
            items=items,
            totals=compute_totals(items, Decimal("0"), self._vat_rate),
            user_id=data.user_id,
        )
        async with self._uow_factory() as uow:
            return await uow.order_repository.create(order)

    async def get_order(self, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    async def list_status_history(self, order_id: str) -> List[OrderStatusRecord]:
        async with self._uow_factory(readonly=True) as uow:
            if await uow.order_repository.get_by_id(order_id) is None:
                raise OrderNotFoundException(order_id)
            return await uow.order_repository.list_status_events(order_id)

    async def save_delivery_info(
        self,
        order_id: str,
        delivery_info: DeliveryInfo,
        delivery_fee: Decimal = Decimal("0"),
        *,
        actor: str = "customer",
    ) -> Order:
        """保存配送信息、重算合计，并推进到 PENDING_PAYMENT"""
        missing = delivery_info.missing_fields()
        if missing:
            raise DomainValidationException(
                f"Delivery information is incomplete: {', '.join(missing)}",
                field=f"delivery_info.{missing[0]}",
                details={"missing": missing},
                message_key="order.delivery_info.incomplete",
            )
        if delivery_fee < 0:
            raise DomainValidationException(
                "Delivery fee cannot be negative",
                field="delivery_fee",
                message_key="order.delivery_fee.negative",
            )
        delivery_info.validate_rush(self._rush_cities)

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.status not in DELIVERY_EDITABLE_STATUSES:
                raise DomainValidationException(
                    f"Delivery information can no longer be changed for an order in {order.status.value}",
                    field="status",
                    message_key="order.delivery_info.locked",
                )
            totals = compute_totals(order.items, delivery_fee, self._vat_rate)
            await uow.order_repository.update_delivery(order_id, delivery_info, totals)

            machine = OrderStateMachine(uow.order_repository)
            if order.status is OrderStatus.PENDING_DELIVERY_INFO:
                await machine.transition(
                    order_id,
                    OrderStatus.PENDING_PAYMENT,
                    actor=actor,
                    expected=OrderStatus.PENDING_DELIVERY_INFO,
                )
            updated = await uow.order_repository.get_by_id(order_id)

        logger.info(
            "order_delivery_info_saved",
            order_id=order_id,
            is_rush=delivery_info.is_rush,
            total=str(totals.total),
        )
        self._publish(machine.events)
        if updated is None:
            raise OrderNotFoundException(order_id)
        return updated

    async def cancel_order(self, order_id: str, *, actor: str = "customer") -> Order:
        """
        取消订单；仅限支付处理完成前的状态

        已有成功扣款的订单不走取消流程（需退款）；仍在进行中的 PENDING 交易
        与订单在同一事务中置为 FAILED。
        """
        async with self._uow_factory() as uow:
            transactions = await uow.transaction_repository.get_by_order_id(order_id)
            paid = settled_payment(transactions)
            if paid is not None:
                logger.warning("order_cancel_refused_already_paid", order_id=order_id, transaction_id=paid.id)
                raise OrderAlreadyPaidException(order_id, paid.id, message_key="order.cancel.refund_required")

            machine = OrderStateMachine(uow.order_repository)
            order = await machine.transition(order_id, OrderStatus.CANCELLED, actor=actor)

            abandoned = []
            for txn in transactions:
                if txn.status is not TransactionStatus.PENDING:
                    continue
                if await uow.transaction_repository.update_status(
                    txn.id, TransactionStatus.FAILED, None, f"Cancelled: order cancelled by {actor}"
                ):
                    abandoned.append(txn)

        logger.info(
            "order_status_changed",
            order_id=order_id,
            status=OrderStatus.CANCELLED.value,
            actor=actor,
            failed_transactions=[t.id for t in abandoned],
        )
        self._publish(machine.events)
        if self._notifier is not None:
            for txn in abandoned:
                self._notifier.payment_outcome(
                    PaymentFailed(order_id=order_id, transaction_id=txn.id, amount=str(txn.amount), reason="cancelled")
                )
        return order

    async def reject_order(self, order_id: str, reason: str, *, actor: str = "manager") -> Order:
        return await self._transition(order_id, OrderStatus.REJECTED, actor=actor, reason=reason)

    async def mark_shipped(self, order_id: str, *, actor: str = "manager") -> Order:
        return await self._transition(order_id, OrderStatus.SHIPPING, actor=actor)

    async def mark_delivered(self, order_id: str, *, actor: str = "manager") -> Order:
        return await self._transition(order_id, OrderStatus.DELIVERED, actor=actor)

    async def apply_payment_outcome(
        self,
        order_id: str,
        status: TransactionStatus,
        *,
        actor: str = "payment-gateway",
    ) -> Order:
        """根据已落库的交易终态推进订单：SUCCESS -> APPROVED，FAILED -> PAYMENT_FAILED"""
        target = OrderStatus.APPROVED if status is TransactionStatus.SUCCESS else OrderStatus.PAYMENT_FAILED
        return await self._transition(
            order_id,
            target,
            actor=actor,
            expected=OrderStatus.PENDING_PROCESSING,
        )

    async def _transition(
        self,
        order_id: str,
        target: OrderStatus,
        *,
        actor: str,
        reason: Optional[str] = None,
        expected: Optional[OrderStatus] = None,
    ) -> Order:
        async with self._uow_factory() as uow:
            machine = OrderStateMachine(uow.order_repository)
            order = await machine.transition(order_id, target, actor=actor, reason=reason, expected=expected)
        logger.info("order_status_changed", order_id=order_id, status=target.value, actor=actor)
        self._publish(machine.events)
        return order

    def _publish(self, events: List[OrderStatusChanged]) -> None:
        if self._notifier is None:
            return
        for event in events:
            self._notifier.order_status_changed(event)
