"""
Browser return handler: advisory result shown to the customer.

Shares verification and code mapping with the IPN handler but never writes;
the IPN may arrive before, after or concurrently with this redirect.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Mapping, Optional

from application.dtos.payments import PaymentReturnResult
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentTransaction, StandardStatus, TransactionStatus
from domain.payment.reference import parse_order_id
from shared.codes.payment_codes import VNPAY_RETURN_DEFAULT_MESSAGE, VNPAY_RETURN_MESSAGES


logger = get_logger(__name__)

TITLES = {
    StandardStatus.SUCCESS: "Payment successful",
    StandardStatus.PENDING: "Payment processing",
    StandardStatus.CANCELLED: "Payment cancelled",
    StandardStatus.FAILED: "Payment failed",
}

AWAITING_CONFIRMATION_MESSAGE = (
    "We are waiting for the payment gateway to confirm this transaction. "
    "Your order will be updated automatically."
)
UNVERIFIED_MESSAGE = (
    "We could not verify the payment response. If you were charged, "
    "your order will be updated automatically once the gateway confirms it."
)


def _amount_from_minor(raw: Optional[str]) -> Optional[Decimal]:
    if not raw or not (raw.isascii() and raw.isdigit()):
        return None
    return Decimal(raw) / 100


class PaymentReturnService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], gateway: PaymentGateway) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway

    async def handle_return(self, params: Mapping[str, str]) -> PaymentReturnResult:
        params = {str(k): str(v) for k, v in params.items()}
        response_code = params.get("vnp_ResponseCode")
        gateway_ref = params.get("vnp_TxnRef")

        if not params.get("vnp_SecureHash") or not self.gateway.verify_signature(params):
            logger.warning("payment_security_event", reason="invalid_return_signature", gateway_ref=gateway_ref)
            return PaymentReturnResult(
                verified=False,
                outcome=StandardStatus.FAILED,
                title="Payment verification failed",
                message=UNVERIFIED_MESSAGE,
                response_code=response_code,
                gateway_ref=gateway_ref,
            )

        outcome = self.gateway.map_response_code(response_code)
        order_id = parse_order_id(gateway_ref)
        txn = await self._find_transaction(order_id, gateway_ref) if order_id else None

        display = outcome
        message = VNPAY_RETURN_MESSAGES.get(response_code or "", VNPAY_RETURN_DEFAULT_MESSAGE)
        reconciled = txn is not None and txn.is_terminal()
        if txn is not None and not reconciled:
            display = StandardStatus.PENDING
            message = AWAITING_CONFIRMATION_MESSAGE
        elif reconciled and txn.status is TransactionStatus.SUCCESS:
            display = StandardStatus.SUCCESS
        elif reconciled and outcome in (StandardStatus.SUCCESS, StandardStatus.PENDING):
            # Recorded as failed even though the redirect claims otherwise.
            display = StandardStatus.FAILED
            message = VNPAY_RETURN_DEFAULT_MESSAGE

        logger.info(
            "payment_return_rendered",
            gateway_ref=gateway_ref,
            response_code=response_code,
            outcome=display.value,
            reconciled=reconciled,
        )
        return PaymentReturnResult(
            verified=True,
            outcome=display,
            title=TITLES[display],
            message=message,
            response_code=response_code,
            gateway_ref=gateway_ref,
            order_id=order_id,
            transaction_id=txn.id if txn else None,
            amount=txn.amount if txn else _amount_from_minor(params.get("vnp_Amount")),
            transaction_status=txn.status if txn else None,
            reconciled=reconciled,
        )

    async def _find_transaction(self, order_id: str, gateway_ref: Optional[str]) -> Optional[PaymentTransaction]:
        async with self._uow_factory(readonly=True) as uow:
            transactions = await uow.transaction_repository.get_by_order_id(order_id)
        return next((t for t in transactions if t.gateway_ref == gateway_ref), None)
