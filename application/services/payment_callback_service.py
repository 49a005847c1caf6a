"""
Gateway callback (IPN) reconciliation.

The gateway calls this zero or more times, in any order, possibly duplicated.
Every rejection path returns before any write; the transaction update is a
compare-and-swap from PENDING so concurrent deliveries resolve to exactly one
writer; the follow-up order transition is best-effort.
"""
from __future__ import annotations

from typing import Callable, Mapping, Optional

from application.dtos.payments import IpnAck
from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderApplicationService
from core.logging_config import get_logger
from domain.common.exceptions import PaymentSecurityException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    PaymentTransaction,
    TransactionStatus,
    outcome_to_transaction_status,
)
from domain.payment.events import PaymentFailed, PaymentSucceeded
from domain.payment.reference import parse_order_id
from shared.codes.payment_codes import IPN_ACK_MESSAGES, IpnAckCode, PaymentCode


logger = get_logger(__name__)

REQUIRED_IPN_PARAMS = (
    "vnp_TxnRef",
    "vnp_ResponseCode",
    "vnp_TransactionNo",
    "vnp_Amount",
    "vnp_BankCode",
    "vnp_PayDate",
    "vnp_SecureHash",
)

SECURITY_ACKS = {
    PaymentCode.SIGNATURE_ERROR: IpnAckCode.INVALID_SIGNATURE,
    PaymentCode.AMOUNT_MISMATCH: IpnAckCode.INVALID_AMOUNT,
}


def ipn_ack(code: str) -> IpnAck:
    return IpnAck(code=code, message=IPN_ACK_MESSAGES[code])


def summarize_gateway_result(params: Mapping[str, str]) -> str:
    return (
        f"ResponseCode: {params.get('vnp_ResponseCode')}, "
        f"BankCode: {params.get('vnp_BankCode')}, "
        f"PayDate: {params.get('vnp_PayDate')}"
    )


class PaymentCallbackService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: Optional[PaymentNotifier] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._notifier = notifier
        self._orders = OrderApplicationService(uow_factory, notifier)

    async def handle_ipn(self, params: Mapping[str, str]) -> IpnAck:
        params = {str(k): str(v) for k, v in params.items()}
        try:
            return await self._reconcile(params)
        except PaymentSecurityException as exc:
            logger.warning(
                "payment_security_event",
                reason=exc.message_key,
                gateway_ref=params.get("vnp_TxnRef"),
                **(exc.details or {}),
            )
            return ipn_ack(SECURITY_ACKS[exc.code])

    def _verify_signature(self, params: Mapping[str, str]) -> None:
        missing = [name for name in REQUIRED_IPN_PARAMS if not params.get(name)]
        if missing:
            raise PaymentSecurityException(
                "IPN is missing required parameters",
                details={"missing": missing},
                message_key="payment.security.missing_params",
            )
        if not self.gateway.verify_signature(params):
            raise PaymentSecurityException("IPN signature verification failed")

    @staticmethod
    def _verify_amount(txn: PaymentTransaction, raw_amount: str) -> None:
        if not (raw_amount.isascii() and raw_amount.isdigit()) or int(raw_amount) != txn.amount_minor:
            raise PaymentSecurityException(
                "IPN amount does not match the transaction",
                code=PaymentCode.AMOUNT_MISMATCH,
                details={"transaction_id": txn.id, "expected_minor": txn.amount_minor, "received": raw_amount},
                message_key="payment.security.amount_mismatch",
            )

    async def _reconcile(self, params: dict[str, str]) -> IpnAck:
        self._verify_signature(params)
        txn_ref = params["vnp_TxnRef"]

        order_id = parse_order_id(txn_ref)
        if order_id is None:
            logger.warning("ipn_unrecognized_reference", gateway_ref=txn_ref)
            return ipn_ack(IpnAckCode.ORDER_NOT_FOUND)

        try:
            async with self._uow_factory(readonly=True) as uow:
                transactions = await uow.transaction_repository.get_by_order_id(order_id)
        except Exception:
            logger.exception("ipn_lookup_failed", order_id=order_id, gateway_ref=txn_ref)
            return ipn_ack(IpnAckCode.UNKNOWN_ERROR)

        txn = next((t for t in transactions if t.gateway_ref == txn_ref), None)
        if txn is None:
            logger.warning("ipn_transaction_not_found", order_id=order_id, gateway_ref=txn_ref)
            return ipn_ack(IpnAckCode.ORDER_NOT_FOUND)

        if txn.is_terminal():
            logger.info("ipn_already_processed", transaction_id=txn.id, status=txn.status.value)
            return ipn_ack(IpnAckCode.ALREADY_CONFIRMED)

        self._verify_amount(txn, params["vnp_Amount"])

        response_code = params["vnp_ResponseCode"]
        outcome = self.gateway.map_response_code(response_code)
        new_status = outcome_to_transaction_status(outcome)
        if new_status is None:
            # Money held for review at the bank; a later notification or the sweep settles it.
            logger.warning("ipn_pending_outcome", transaction_id=txn.id, response_code=response_code)
            return ipn_ack(IpnAckCode.SUCCESS)

        try:
            async with self._uow_factory() as uow:
                swapped = await uow.transaction_repository.update_status(
                    txn.id,
                    new_status,
                    params["vnp_TransactionNo"],
                    summarize_gateway_result(params),
                )
        except Exception:
            logger.exception("ipn_transaction_update_failed", transaction_id=txn.id)
            return ipn_ack(IpnAckCode.UNKNOWN_ERROR)

        if not swapped:
            logger.info("ipn_lost_race", transaction_id=txn.id)
            return ipn_ack(IpnAckCode.ALREADY_CONFIRMED)

        logger.info(
            "ipn_reconciled",
            transaction_id=txn.id,
            order_id=order_id,
            status=new_status.value,
            response_code=response_code,
        )
        await self._advance_order(order_id, txn, new_status)
        self._publish_outcome(txn, new_status, params)
        return ipn_ack(IpnAckCode.SUCCESS)

    async def _advance_order(self, order_id: str, txn: PaymentTransaction, status: TransactionStatus) -> None:
        # The transaction write above is authoritative; the order catches up here
        # or later via PaymentSweepService.reconcile_order_statuses.
        try:
            await self._orders.apply_payment_outcome(order_id, status)
        except Exception:
            logger.exception(
                "ipn_order_transition_failed",
                order_id=order_id,
                transaction_id=txn.id,
                transaction_status=status.value,
            )

    def _publish_outcome(self, txn: PaymentTransaction, status: TransactionStatus, params: Mapping[str, str]) -> None:
        if self._notifier is None:
            return
        common = dict(
            order_id=txn.order_id,
            transaction_id=txn.id,
            amount=str(txn.amount),
            provider=self.gateway.provider,
            external_transaction_id=params.get("vnp_TransactionNo"),
        )
        if status is TransactionStatus.SUCCESS:
            self._notifier.payment_outcome(PaymentSucceeded(**common))
        else:
            self._notifier.payment_outcome(
                PaymentFailed(**common, reason=f"Gateway response code {params.get('vnp_ResponseCode')}")
            )
