"""
订单状态机 - 订单状态变更的唯一入口

所有写状态的路径（支付对账、管理员操作、客户取消）都必须调用
OrderStateMachine.transition，而不是直接写仓储。
"""
from __future__ import annotations

from typing import Dict, FrozenSet, List, Optional

from domain.common.exceptions import InvalidStateTransitionException, OrderNotFoundException
from .entity import Order, OrderStatus, OrderStatusRecord
from .events import OrderStatusChanged
from .repository import OrderRepository

S = OrderStatus

# 允许的状态迁移表；未列出的 (当前, 目标) 组合一律拒绝
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING_DELIVERY_INFO: frozenset({S.PENDING_PAYMENT, S.CANCELLED}),
    S.PENDING_PAYMENT: frozenset({S.PENDING_PROCESSING, S.CANCELLED}),
    S.PENDING_PROCESSING: frozenset({S.APPROVED, S.PAYMENT_FAILED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.SHIPPING}),
    S.SHIPPING: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
    S.PAYMENT_FAILED: frozenset(),
    S.ERROR_STOCK_UPDATE_FAILED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({S.CANCELLED, S.REJECTED, S.DELIVERED})

# 客户/管理员可取消的前置状态
CANCELLABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {S.PENDING_PROCESSING, S.PENDING_PAYMENT, S.PENDING_DELIVERY_INFO}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(
    order_id: str,
    current: OrderStatus,
    target: OrderStatus,
    *,
    reason: Optional[str] = None,
) -> None:
    """校验迁移是否合法，不合法时抛出 InvalidStateTransitionException"""
    if current in TERMINAL_STATUSES:
        raise InvalidStateTransitionException(
            order_id, current.value, target.value, reason="order is in a terminal state"
        )
    if not can_transition(current, target):
        raise InvalidStateTransitionException(order_id, current.value, target.value)
    if target is S.REJECTED and not (reason or "").strip():
        raise InvalidStateTransitionException(
            order_id, current.value, target.value, reason="a rejection reason is required"
        )


class OrderStateMachine:
    """
    订单状态机

    职责：
    1. 按迁移表校验前置状态
    2. 以 compare-and-swap 方式写入新状态，与并发写者竞争时只有一方成功
    3. 写入审计记录并收集领域事件
    """

    def __init__(self, order_repository: OrderRepository):
        self.order_repository = order_repository
        self.events: List[OrderStatusChanged] = []

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        *,
        actor: str = "system",
        reason: Optional[str] = None,
        expected: Optional[OrderStatus] = None,
    ) -> Order:
        order = await self.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)

        current = order.status
        if expected is not None and current is not expected:
            raise InvalidStateTransitionException(
                order_id, current.value, target.value, reason=f"expected {expected.value}"
            )
        ensure_transition(order_id, current, target, reason=reason)

        swapped = await self.order_repository.update_status(order_id, expected=current, new=target)
        if not swapped:
            # 读取与写入之间状态被其他写者修改
            latest = await self.order_repository.get_by_id(order_id)
            latest_status = latest.status.value if latest else current.value
            raise InvalidStateTransitionException(
                order_id, latest_status, target.value, reason="order was modified concurrently"
            )

        await self.order_repository.add_status_event(
            OrderStatusRecord(
                order_id=order_id,
                from_status=current,
                to_status=target,
                actor=actor,
                reason=reason,
            )
        )
        self.events.append(
            OrderStatusChanged(
                order_id=order_id,
                from_status=current.value,
                to_status=target.value,
                actor=actor,
                reason=reason,
            )
        )
        return order.with_status(target)
