"""
订单领域实体 - 订单聚合根（不可变快照）

订单交给校验与支付流程时必须是一次性完整加载的聚合：
明细、配送信息均已就绪，不存在延迟加载的半成品对象。
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from domain.common.exceptions import DomainValidationException

# 金额以越南盾整数单位计
MONEY_QUANT = Decimal("1")


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING_DELIVERY_INFO = "PENDING_DELIVERY_INFO"   # 待填写配送信息
    PENDING_PAYMENT = "PENDING_PAYMENT"               # 待支付
    PENDING_PROCESSING = "PENDING_PROCESSING"         # 已跳转网关，等待支付结果
    APPROVED = "APPROVED"                             # 支付成功，待发货
    SHIPPING = "SHIPPING"                             # 配送中
    DELIVERED = "DELIVERED"                           # 已送达
    CANCELLED = "CANCELLED"                           # 已取消
    REJECTED = "REJECTED"                             # 管理员拒绝
    PAYMENT_FAILED = "PAYMENT_FAILED"                 # 支付失败
    ERROR_STOCK_UPDATE_FAILED = "ERROR_STOCK_UPDATE_FAILED"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_order_id() -> str:
    return f"ORD{uuid.uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class OrderItem:
    """订单明细，价格为下单时快照"""

    product_id: str
    quantity: int
    unit_price: Decimal
    product_title: Optional[str] = None
    id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class DeliveryInfo:
    """配送信息（与订单 1:1）"""

    recipient_name: str
    phone: str
    address: str
    province_city: str
    email: Optional[str] = None
    instructions: Optional[str] = None
    is_rush: bool = False
    rush_window_start: Optional[datetime] = None
    rush_window_end: Optional[datetime] = None

    REQUIRED_FIELDS = ("recipient_name", "phone", "address", "province_city")

    def __post_init__(self):
        object.__setattr__(self, "rush_window_start", _ensure_utc(self.rush_window_start))
        object.__setattr__(self, "rush_window_end", _ensure_utc(self.rush_window_end))

    def missing_fields(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if not (getattr(self, name) or "").strip()]

    def validate_rush(self, rush_cities: Iterable[str]) -> None:
        """加急配送仅限指定城市，且时间窗口必须有效"""
        if not self.is_rush:
            return
        allowed = {c.strip().lower() for c in rush_cities}
        if (self.province_city or "").strip().lower() not in allowed:
            raise DomainValidationException(
                f"Rush delivery is not available for {self.province_city}",
                field="delivery_info.province_city",
                message_key="delivery.rush.unsupported_city",
            )
        start, end = self.rush_window_start, self.rush_window_end
        if start is None or end is None or end <= start:
            raise DomainValidationException(
                "Rush delivery requires a time window whose end is after its start",
                field="delivery_info.rush_window",
                message_key="delivery.rush.invalid_window",
            )


@dataclass(frozen=True)
class OrderTotals:
    subtotal_excl_vat: Decimal
    subtotal_incl_vat: Decimal
    delivery_fee: Decimal
    total: Decimal

    @classmethod
    def zero(cls) -> "OrderTotals":
        z = Decimal("0")
        return cls(z, z, z, z)


def compute_totals(items: Iterable[OrderItem], delivery_fee: Decimal, vat_rate: Decimal) -> OrderTotals:
    """从明细与运费重新计算订单金额，从不信任客户端传入的合计"""
    excl = sum((item.line_total for item in items), Decimal("0")).quantize(MONEY_QUANT, ROUND_HALF_UP)
    incl = (excl * (Decimal("1") + vat_rate)).quantize(MONEY_QUANT, ROUND_HALF_UP)
    fee = Decimal(delivery_fee).quantize(MONEY_QUANT, ROUND_HALF_UP)
    return OrderTotals(
        subtotal_excl_vat=excl,
        subtotal_incl_vat=incl,
        delivery_fee=fee,
        total=incl + fee,
    )


@dataclass(frozen=True)
class Order:
    """
    订单聚合根

    业务规则：
    1. 合计金额始终由明细 + 运费计算得出
    2. 状态只能通过订单状态机变更
    3. 订单不做物理删除，取消即逻辑终态
    """

    id: str
    status: OrderStatus
    items: tuple[OrderItem, ...]
    totals: OrderTotals
    delivery_info: Optional[DeliveryInfo] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        # frozen dataclass 需通过 object.__setattr__ 规范化
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "created_at", _ensure_utc(self.created_at))
        object.__setattr__(self, "updated_at", _ensure_utc(self.updated_at))

    @property
    def total(self) -> Decimal:
        return self.totals.total

    def with_status(self, status: OrderStatus) -> "Order":
        return replace(self, status=status, updated_at=datetime.now(timezone.utc))

    def with_totals(self, totals: OrderTotals) -> "Order":
        return replace(self, totals=totals)


@dataclass(frozen=True)
class OrderStatusRecord:
    """订单状态变更审计记录"""

    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    actor: str
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
