"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import DeliveryInfo, Order, OrderStatus, OrderStatusRecord, OrderTotals


class OrderRepository(ABC):
    """订单仓储抽象接口

    get_by_id 必须一次性加载完整聚合（明细 + 配送信息）。
    """

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取完整订单聚合"""
        pass

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（含明细）"""
        pass

    @abstractmethod
    async def update_status(self, order_id: str, *, expected: OrderStatus, new: OrderStatus) -> bool:
        """条件更新状态：仅当当前状态等于 expected 时写入，返回是否成功"""
        pass

    @abstractmethod
    async def update_delivery(self, order_id: str, delivery_info: DeliveryInfo, totals: OrderTotals) -> None:
        """写入配送信息并刷新合计"""
        pass

    @abstractmethod
    async def add_status_event(self, record: OrderStatusRecord) -> None:
        """追加状态变更审计记录"""
        pass

    @abstractmethod
    async def list_status_events(self, order_id: str) -> List[OrderStatusRecord]:
        """按时间顺序列出订单的状态变更记录"""
        pass
