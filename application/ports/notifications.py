"""
Notification port for terminal payment outcomes and order status changes.

Implementations are fire-and-forget: they must not raise into the caller,
since the state they report on has already been committed.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.order.events import OrderStatusChanged
from domain.payment.events import PaymentEvent


@runtime_checkable
class PaymentNotifier(Protocol):
    def payment_outcome(self, event: PaymentEvent) -> None: ...

    def order_status_changed(self, event: OrderStatusChanged) -> None: ...
