"""
Periodic maintenance for payments left behind by the happy path.

- expire_stale_pending: PENDING transactions older than the configured
  timeout become FAILED (the customer abandoned the gateway page, or the
  gateway never called back). Disabled while no timeout is configured.
- reconcile_order_statuses: orders still PENDING_PROCESSING are moved on
  from their settled payment, or else from their latest transaction once it
  is terminal; this repairs a failed order write during IPN reconciliation.
  Runs regardless of the pending timeout.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from application.ports.notifications import PaymentNotifier
from application.services.order_service import OrderApplicationService
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import OrderStatus
from domain.payment.entity import TransactionStatus, settled_payment
from domain.payment.events import PaymentFailed


logger = get_logger(__name__)


class PaymentSweepService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        notifier: Optional[PaymentNotifier] = None,
        *,
        pending_timeout_minutes: Optional[int] = payment_settings.sweep.pending_timeout_minutes,
        batch_size: int = payment_settings.sweep.batch_size,
    ) -> None:
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._timeout_minutes = pending_timeout_minutes
        self._batch_size = batch_size
        self._orders = OrderApplicationService(uow_factory, notifier)

    async def expire_stale_pending(self, now: Optional[datetime] = None) -> int:
        if not self._timeout_minutes:
            logger.info("payment_sweep_disabled")
            return 0

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=self._timeout_minutes)
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.transaction_repository.list_stale_pending(cutoff, limit=self._batch_size)

        expired = 0
        for txn in stale:
            async with self._uow_factory() as uow:
                swapped = await uow.transaction_repository.update_status(
                    txn.id,
                    TransactionStatus.FAILED,
                    None,
                    f"Expired: no gateway notification within {self._timeout_minutes} minutes",
                )
            if not swapped:
                # A callback settled it between the listing and the update.
                continue
            expired += 1
            logger.info("payment_transaction_expired", transaction_id=txn.id, order_id=txn.order_id)

            await self._advance_order(txn.order_id, txn.id, TransactionStatus.FAILED)
            if self._notifier is not None:
                self._notifier.payment_outcome(
                    PaymentFailed(
                        order_id=txn.order_id,
                        transaction_id=txn.id,
                        amount=str(txn.amount),
                        reason="expired",
                    )
                )

        logger.info("payment_sweep_finished", expired=expired, scanned=len(stale), cutoff=cutoff.isoformat())
        return expired

    async def reconcile_order_statuses(self) -> int:
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.transaction_repository.list_terminal_for_order_status(
                OrderStatus.PENDING_PROCESSING, limit=self._batch_size
            )

        repaired = 0
        seen: set[str] = set()
        for txn in candidates:
            if txn.order_id in seen:
                continue
            seen.add(txn.order_id)

            async with self._uow_factory(readonly=True) as uow:
                history = await uow.transaction_repository.get_by_order_id(txn.order_id)
            # A settled payment wins over any later attempt; otherwise the most
            # recent attempt decides, and never while one is still open.
            decisive = settled_payment(history) or (history[-1] if history else None)
            if decisive is None or not decisive.is_terminal():
                continue
            if await self._advance_order(txn.order_id, decisive.id, decisive.status):
                repaired += 1

        logger.info("order_status_reconcile_finished", repaired=repaired, scanned=len(candidates))
        return repaired

    async def _advance_order(self, order_id: str, transaction_id: str, status: TransactionStatus) -> bool:
        try:
            await self._orders.apply_payment_outcome(order_id, status, actor="payment-sweep")
        except BusinessException as exc:
            # Orders that already left PENDING_PROCESSING (e.g. still PENDING_PAYMENT
            # after a failed initiation) are left alone.
            logger.info(
                "payment_sweep_order_skipped",
                order_id=order_id,
                transaction_id=transaction_id,
                reason=exc.message,
            )
            return False
        return True
