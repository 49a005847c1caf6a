"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    订单数据库模型

    关系一律 lazy="raise"：需要明细/配送信息时必须在查询中显式预加载，
    防止把半加载的订单交给支付流程。
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, comment="订单ID")
    user_id = Column(String(64), nullable=True, index=True, comment="下单用户ID（游客为空）")
    status = Column(String(40), nullable=False, index=True, comment="订单状态")

    # 金额（越南盾整数单位，Numeric 保证精确）
    subtotal_excl_vat = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="不含税小计")
    subtotal_incl_vat = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="含税小计")
    delivery_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="应付总额")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="raise",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )
    delivery_info = relationship(
        "DeliveryInfoModel",
        back_populates="order",
        lazy="raise",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<OrderModel(id='{self.id}', status='{self.status}', total={self.total_amount})>"


class OrderItemModel(Base):
    """订单明细（价格快照）"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, comment="商品ID")
    product_title = Column(String(255), nullable=True, comment="商品名称快照")
    quantity = Column(Integer, nullable=False, comment="数量")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="下单时单价")

    order = relationship("OrderModel", back_populates="items", lazy="raise")


class DeliveryInfoModel(Base):
    """配送信息（与订单 1:1）"""
    __tablename__ = "delivery_infos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    recipient_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=False)
    province_city = Column(String(120), nullable=False)
    instructions = Column(Text, nullable=True)
    is_rush = Column(Boolean, nullable=False, default=False)
    rush_window_start = Column(DateTime(timezone=True), nullable=True)
    rush_window_end = Column(DateTime(timezone=True), nullable=True)

    order = relationship("OrderModel", back_populates="delivery_info", lazy="raise")


class OrderStatusEventModel(Base):
    """订单状态变更审计"""
    __tablename__ = "order_status_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    from_status = Column(String(40), nullable=False)
    to_status = Column(String(40), nullable=False)
    actor = Column(String(64), nullable=False, comment="操作者：system/customer/manager 等")
    reason = Column(Text, nullable=True, comment="原因（拒单必填）")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_order_status_events_order_created", "order_id", "created_at"),
    )
