"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    ClientContext,
    GatewayStatusQuery,
    GatewayStatusResult,
    PaymentRedirect,
)
from domain.order.entity import Order
from domain.payment.entity import PaymentMethod, StandardStatus


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for redirect-style payment providers.

    `verify_signature` and `map_response_code` are pure CPU and must never
    perform IO; callback handlers call them on the request path.
    """

    provider: str

    async def build_payment_request(
        self,
        order: Order,
        method: PaymentMethod,
        context: ClientContext,
    ) -> PaymentRedirect: ...

    def verify_signature(self, params: Mapping[str, str]) -> bool: ...

    def map_response_code(self, code: Optional[str]) -> StandardStatus: ...

    async def query_transaction(self, query: GatewayStatusQuery) -> GatewayStatusResult: ...
