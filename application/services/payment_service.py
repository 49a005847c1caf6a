"""
Application service orchestrating payment initiation and status queries.

This class depends only on the application PaymentGateway port, the unit of
work abstraction and DTOs. Gateway implementations are provided by
infrastructure and injected from the composition root (API/tasks).
"""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Tuple

from application.dtos.payments import ClientContext, GatewayStatusQuery, GatewayStatusResult
from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import (
    DomainValidationException,
    OrderAlreadyPaidException,
    PaymentException,
    PaymentMethodNotFoundException,
    PaymentTransactionNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.order.state_machine import OrderStateMachine
from domain.payment.entity import PaymentTransaction, TransactionStatus, new_transaction_id, settled_payment
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: Optional[PaymentNotifier] = None,
        *,
        initiate_timeout: float = payment_settings.timeouts.initiate,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._notifier = notifier
        self._initiate_timeout = initiate_timeout

    async def initiate_payment(
        self,
        order: Order,
        method_id: str,
        context: ClientContext,
    ) -> Tuple[PaymentTransaction, str]:
        """Record a PENDING transaction, then ask the gateway for a redirect URL.

        The PENDING row is committed before the gateway is called so that a
        failed or timed-out initiation still leaves a trace for reconciliation.
        """
        if order.total <= 0:
            raise DomainValidationException(
                "Payment amount must be greater than zero.",
                field="total",
                message_key="order.total.non_positive",
            )

        async with self._uow_factory() as uow:
            method = await uow.payment_method_repository.get_by_id(method_id)
            if method is None:
                raise PaymentMethodNotFoundException(method_id)
            if method.user_id and order.user_id and method.user_id != order.user_id:
                raise DomainValidationException(
                    "Payment method does not belong to the order's customer.",
                    field="payment_method_id",
                    message_key="payment.method.not_owned",
                )
            existing = await uow.transaction_repository.get_by_order_id(order.id)
            paid = settled_payment(existing)
            if paid is not None:
                logger.warning("payment_initiation_refused_already_paid", order_id=order.id, transaction_id=paid.id)
                raise OrderAlreadyPaidException(order.id, paid.id)
            if any(t.status is TransactionStatus.PENDING for t in existing):
                raise DomainValidationException(
                    f"Order {order.id} already has a payment in progress",
                    field="order_id",
                    message_key="payment.in_progress",
                    code=BusinessCode.PAYMENT_IN_PROGRESS,
                )
            txn = await uow.transaction_repository.create(
                PaymentTransaction(
                    id=new_transaction_id(),
                    order_id=order.id,
                    amount=order.total,
                    payment_method_id=method.id,
                )
            )

        logger.info(
            "payment_initiation_started",
            transaction_id=txn.id,
            order_id=order.id,
            amount=str(txn.amount),
            provider=self.gateway.provider,
        )

        try:
            redirect = await asyncio.wait_for(
                self.gateway.build_payment_request(order, method, context),
                timeout=self._initiate_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "payment_initiation_timeout",
                transaction_id=txn.id,
                order_id=order.id,
                timeout=self._initiate_timeout,
            )
            raise PaymentException(
                "Payment gateway did not respond in time",
                code=PaymentCode.TIMEOUT,
                details={"transaction_id": txn.id},
                message_key="payment.initiation_timeout",
            ) from exc
        except Exception as exc:
            logger.error(
                "payment_initiation_failed",
                transaction_id=txn.id,
                order_id=order.id,
                error=str(exc),
            )
            raise PaymentException(
                "Could not start payment with the gateway",
                details={"transaction_id": txn.id},
            ) from exc

        async with self._uow_factory() as uow:
            await uow.transaction_repository.set_gateway_ref(txn.id, redirect.gateway_ref)
            machine = OrderStateMachine(uow.order_repository)
            if order.status is OrderStatus.PENDING_DELIVERY_INFO:
                await machine.transition(
                    order.id,
                    OrderStatus.PENDING_PAYMENT,
                    actor="payment",
                    expected=OrderStatus.PENDING_DELIVERY_INFO,
                )
            if order.status in (OrderStatus.PENDING_DELIVERY_INFO, OrderStatus.PENDING_PAYMENT):
                await machine.transition(
                    order.id,
                    OrderStatus.PENDING_PROCESSING,
                    actor="payment",
                    expected=OrderStatus.PENDING_PAYMENT,
                )

        txn.gateway_ref = redirect.gateway_ref
        logger.info(
            "payment_redirect_issued",
            transaction_id=txn.id,
            order_id=order.id,
            gateway_ref=redirect.gateway_ref,
        )
        if self._notifier is not None:
            for event in machine.events:
                self._notifier.order_status_changed(event)
        return txn, redirect.redirect_url

    async def check_status(self, transaction_id: str) -> PaymentTransaction:
        """Read-through status query; reconciliation is the only writer."""
        async with self._uow_factory(readonly=True) as uow:
            txn = await uow.transaction_repository.get_by_id(transaction_id)
        if txn is None:
            raise PaymentTransactionNotFoundException(transaction_id)
        return txn

    async def list_order_transactions(self, order_id: str) -> List[PaymentTransaction]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.transaction_repository.get_by_order_id(order_id)

    async def query_gateway_status(self, transaction_id: str, client_ip: str) -> GatewayStatusResult:
        """Ask the gateway what it knows about a transaction. Never writes."""
        txn = await self.check_status(transaction_id)
        if not txn.gateway_ref:
            raise DomainValidationException(
                "Transaction was never sent to the payment gateway",
                field="transaction_id",
                message_key="payment.transaction.not_submitted",
            )
        logger.info("payment_gateway_query", transaction_id=txn.id, gateway_ref=txn.gateway_ref)
        return await self.gateway.query_transaction(
            GatewayStatusQuery(
                gateway_ref=txn.gateway_ref,
                client_ip=client_ip,
                order_info=f"Query transaction {txn.id}",
            )
        )

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
