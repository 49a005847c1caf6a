"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.order.entity import OrderStatus
from domain.payment.entity import (
    PaymentMethod,
    PaymentMethodType,
    PaymentTransaction,
    TransactionStatus,
    TransactionType,
)
from domain.payment.repository import PaymentMethodRepository, PaymentTransactionRepository
from infrastructure.models.order import OrderModel
from infrastructure.models.payment import PaymentMethodModel, PaymentTransactionModel
from shared.codes import BusinessCode


logger = get_logger(__name__)


class SQLAlchemyPaymentTransactionRepository(PaymentTransactionRepository):
    """支付交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        """将数据库模型转换为领域实体"""
        return PaymentTransaction(
            id=model.id,
            order_id=model.order_id,
            amount=Decimal(str(model.amount)),
            status=TransactionStatus(model.status),
            transaction_type=TransactionType(model.transaction_type),
            payment_method_id=model.payment_method_id,
            gateway_ref=model.gateway_ref,
            external_transaction_id=model.external_transaction_id,
            content=model.content,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        """将领域实体转换为数据库模型"""
        return PaymentTransactionModel(
            id=entity.id,
            order_id=entity.order_id,
            payment_method_id=entity.payment_method_id,
            transaction_type=entity.transaction_type.value,
            amount=entity.amount,
            status=entity.status.value,
            gateway_ref=entity.gateway_ref,
            external_transaction_id=entity.external_transaction_id,
            content=entity.content,
            created_at=entity.created_at or datetime.now(timezone.utc),
            updated_at=entity.updated_at or datetime.now(timezone.utc),
            completed_at=entity.completed_at,
        )

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """创建交易记录"""
        db_txn = self._to_model(transaction)
        try:
            self.session.add(db_txn)
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.warning("payment_transaction_create_conflict", order_id=transaction.order_id)
            raise DomainValidationException(
                f"Order {transaction.order_id} already has a payment in progress",
                field="order_id",
                message_key="payment.in_progress",
                code=BusinessCode.PAYMENT_IN_PROGRESS,
            )
        await self.session.refresh(db_txn)
        logger.info(
            "payment_transaction_created",
            transaction_id=db_txn.id,
            order_id=db_txn.order_id,
            amount=str(db_txn.amount),
        )
        return self._to_entity(db_txn)

    async def get_by_id(self, transaction_id: str) -> Optional[PaymentTransaction]:
        """根据ID获取交易"""
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def get_by_order_id(self, order_id: str) -> List[PaymentTransaction]:
        """获取订单的全部交易（按创建时间升序）"""
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.created_at, PaymentTransactionModel.id)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        external_id: Optional[str],
        content: Optional[str] = None,
    ) -> bool:
        """PENDING -> 终态 的条件更新，同一交易并发回调只有一方写入成功"""
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == transaction_id,
                PaymentTransactionModel.status == TransactionStatus.PENDING.value,
            )
            .values(
                status=status.value,
                external_transaction_id=external_id,
                content=content,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        swapped = result.rowcount == 1
        if swapped:
            logger.info("payment_transaction_status_updated", transaction_id=transaction_id, status=status.value)
        else:
            logger.info("payment_transaction_status_unchanged", transaction_id=transaction_id, status=status.value)
        return swapped

    async def set_gateway_ref(self, transaction_id: str, gateway_ref: str) -> None:
        await self.session.execute(
            update(PaymentTransactionModel)
            .where(PaymentTransactionModel.id == transaction_id)
            .values(gateway_ref=gateway_ref, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.status == TransactionStatus.PENDING.value,
                PaymentTransactionModel.created_at < created_before,
            )
            .order_by(PaymentTransactionModel.created_at)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_terminal_for_order_status(
        self,
        order_status: OrderStatus,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .join(OrderModel, OrderModel.id == PaymentTransactionModel.order_id)
            .where(
                OrderModel.status == order_status.value,
                PaymentTransactionModel.status.in_(
                    [TransactionStatus.SUCCESS.value, TransactionStatus.FAILED.value]
                ),
            )
            .order_by(PaymentTransactionModel.completed_at)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyPaymentMethodRepository(PaymentMethodRepository):
    """支付方式仓储（只读）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        result = await self.session.execute(
            select(PaymentMethodModel).where(PaymentMethodModel.id == method_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return PaymentMethod(
            id=model.id,
            method_type=PaymentMethodType(model.method_type),
            user_id=model.user_id,
        )
