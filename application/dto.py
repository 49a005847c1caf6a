"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_serializer, model_validator

from domain.order.entity import DeliveryInfo, Order, OrderStatus, OrderStatusRecord


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class OrderItemInputDTO(BaseModel):
    """下单明细（价格由商品目录服务给出的快照）"""
    product_id: str = Field(..., min_length=1, max_length=64)
    product_title: Optional[str] = Field(None, max_length=255)
    quantity: int = Field(..., gt=0, description="购买数量")
    unit_price: Decimal = Field(..., gt=0, description="下单时单价（VND）")


class OrderCreateDTO(BaseModel):
    """开始结账：创建订单"""
    user_id: Optional[str] = Field(None, max_length=64, description="用户ID，游客下单为空")
    items: List[OrderItemInputDTO] = Field(..., min_length=1)


class DeliveryInfoDTO(BaseModel):
    """配送信息输入"""
    recipient_name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    address: str = Field(..., min_length=1)
    province_city: str = Field(..., min_length=1, max_length=120)
    instructions: Optional[str] = None
    is_rush: bool = False
    rush_window_start: Optional[datetime] = None
    rush_window_end: Optional[datetime] = None

    def to_entity(self) -> DeliveryInfo:
        return DeliveryInfo(**self.model_dump())


class DeliveryInfoUpdateDTO(BaseModel):
    """保存配送信息；运费来自配送报价服务"""
    delivery_info: DeliveryInfoDTO
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)


class OrderRejectDTO(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

    @model_validator(mode="after")
    def _strip_reason(self):
        if not self.reason.strip():
            raise ValueError("reason must not be blank")
        return self


class OrderItemDTO(DTOBase):
    product_id: str
    product_title: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderTotalsDTO(DTOBase):
    subtotal_excl_vat: Decimal
    subtotal_incl_vat: Decimal
    delivery_fee: Decimal
    total: Decimal


class OrderResponseDTO(DTOBase):
    """订单响应DTO"""
    id: str
    status: OrderStatus
    user_id: Optional[str] = None
    items: List[OrderItemDTO]
    totals: OrderTotalsDTO
    delivery_info: Optional[DeliveryInfoDTO] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponseDTO":
        info = order.delivery_info
        return cls(
            id=order.id,
            status=order.status,
            user_id=order.user_id,
            items=[
                OrderItemDTO(
                    product_id=i.product_id,
                    product_title=i.product_title,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    line_total=i.line_total,
                )
                for i in order.items
            ],
            totals=OrderTotalsDTO(
                subtotal_excl_vat=order.totals.subtotal_excl_vat,
                subtotal_incl_vat=order.totals.subtotal_incl_vat,
                delivery_fee=order.totals.delivery_fee,
                total=order.totals.total,
            ),
            delivery_info=DeliveryInfoDTO(
                recipient_name=info.recipient_name,
                phone=info.phone,
                email=info.email,
                address=info.address,
                province_city=info.province_city,
                instructions=info.instructions,
                is_rush=info.is_rush,
                rush_window_start=info.rush_window_start,
                rush_window_end=info.rush_window_end,
            ) if info else None,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderStatusRecordDTO(DTOBase):
    from_status: OrderStatus
    to_status: OrderStatus
    actor: str
    reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, record: OrderStatusRecord) -> "OrderStatusRecordDTO":
        return cls(
            from_status=record.from_status,
            to_status=record.to_status,
            actor=record.actor,
            reason=record.reason,
            created_at=record.created_at,
        )


class PaymentReadinessDTO(DTOBase):
    order_id: str
    ready: bool
