"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.order.repository import OrderRepository
from domain.payment.repository import PaymentMethodRepository, PaymentTransactionRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    只读模式下同样在单个事务内读取，退出时总是回滚。
    """

    order_repository: OrderRepository
    transaction_repository: PaymentTransactionRepository
    payment_method_repository: PaymentMethodRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.transaction_repository = None  # type: ignore[assignment]
        self.payment_method_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc or self._readonly:
            await self.rollback()
        elif not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
