"""
支付仓储接口 - 定义交易与支付方式数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from domain.order.entity import OrderStatus
from .entity import PaymentMethod, PaymentTransaction, TransactionStatus


class PaymentTransactionRepository(ABC):
    """支付交易仓储抽象接口"""

    @abstractmethod
    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """创建交易记录；同一订单已有 PENDING 交易时抛出 DomainValidationException"""
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: str) -> Optional[PaymentTransaction]:
        """根据ID获取交易"""
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> List[PaymentTransaction]:
        """获取订单的全部交易（按创建时间升序）"""
        pass

    @abstractmethod
    async def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        external_id: Optional[str],
        content: Optional[str] = None,
    ) -> bool:
        """仅当交易仍为 PENDING 时写入终态，返回是否写入成功"""
        pass

    @abstractmethod
    async def set_gateway_ref(self, transaction_id: str, gateway_ref: str) -> None:
        """记录网关交易参考号"""
        pass

    @abstractmethod
    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[PaymentTransaction]:
        """列出创建时间早于指定时刻且仍为 PENDING 的交易"""
        pass

    @abstractmethod
    async def list_terminal_for_order_status(
        self,
        order_status: OrderStatus,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        """列出已终态、但所属订单仍停留在指定状态的交易"""
        pass


class PaymentMethodRepository(ABC):
    """支付方式仓储抽象接口（只读）"""

    @abstractmethod
    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        """根据ID获取支付方式"""
        pass
