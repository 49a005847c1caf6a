"""
Order validation: decides whether an order may proceed to payment.

The order is read as one fully-loaded aggregate inside a single read-only
unit of work and handed back as an immutable snapshot whose totals have been
recomputed from its items.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable

from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, OrderAlreadyPaidException, OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, compute_totals
from domain.payment.entity import settled_payment


logger = get_logger(__name__)

AWAITABLE_STATUSES = frozenset(
    {
        OrderStatus.PENDING_PROCESSING,
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PENDING_DELIVERY_INFO,
    }
)


class OrderValidationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        vat_rate: Decimal = settings.order.vat_rate,
    ) -> None:
        self._uow_factory = uow_factory
        self._vat_rate = vat_rate

    async def validate_for_payment(self, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            transactions = await uow.transaction_repository.get_by_order_id(order_id) if order else []
        if order is None:
            raise OrderNotFoundException(order_id)

        try:
            paid = settled_payment(transactions)
            if paid is not None:
                raise OrderAlreadyPaidException(order_id, paid.id)
            validated = self.validate_order(order)
        except DomainValidationException as exc:
            logger.info(
                "order_payment_validation_failed",
                order_id=order_id,
                message_key=exc.message_key,
                field=exc.field,
            )
            raise
        logger.info("order_payment_validation_passed", order_id=order_id, total=str(validated.total))
        return validated

    async def is_ready_for_payment(self, order_id: str) -> bool:
        """Like validate_for_payment, but answers False for business-rule failures.

        Not-found and storage errors still propagate.
        """
        try:
            await self.validate_for_payment(order_id)
        except DomainValidationException:
            return False
        return True

    def validate_order(self, order: Order) -> Order:
        if order.status not in AWAITABLE_STATUSES:
            raise DomainValidationException(
                f"Order in status {order.status.value} cannot be paid",
                field="status",
                details={"status": order.status.value},
                message_key="order.status.not_payable",
            )

        if not order.items:
            raise DomainValidationException(
                "Order must contain at least one product for payment processing.",
                field="items",
                message_key="order.items.empty",
            )
        for index, item in enumerate(order.items):
            if item.quantity <= 0:
                raise DomainValidationException(
                    "All order items must have positive quantities.",
                    field=f"items[{index}].quantity",
                    details={"product_id": item.product_id, "quantity": item.quantity},
                    message_key="order.item.quantity.non_positive",
                )
            if item.unit_price is None or item.unit_price <= 0:
                raise DomainValidationException(
                    "All order items must have positive prices.",
                    field=f"items[{index}].unit_price",
                    details={"product_id": item.product_id, "unit_price": str(item.unit_price)},
                    message_key="order.item.price.non_positive",
                )

        if order.delivery_info is None:
            raise DomainValidationException(
                "Delivery information is required for payment processing.",
                field="delivery_info",
                message_key="order.delivery_info.missing",
            )
        missing = order.delivery_info.missing_fields()
        if missing:
            raise DomainValidationException(
                f"Delivery information is incomplete: {', '.join(missing)}",
                field=f"delivery_info.{missing[0]}",
                details={"missing": missing},
                message_key="order.delivery_info.incomplete",
            )

        totals = compute_totals(order.items, order.totals.delivery_fee, self._vat_rate)
        if totals.total <= 0:
            raise DomainValidationException(
                "Order total must be greater than zero.",
                field="total",
                details={"total": str(totals.total)},
                message_key="order.total.non_positive",
            )
        if totals.delivery_fee < 0:
            raise DomainValidationException(
                "Delivery fee cannot be negative.",
                field="delivery_fee",
                message_key="order.delivery_fee.negative",
            )
        if totals.total != order.totals.total:
            raise DomainValidationException(
                "Stored order total does not match its items.",
                field="total",
                details={"stored": str(order.totals.total), "computed": str(totals.total)},
                message_key="order.total.mismatch",
            )
        return order.with_totals(totals)
