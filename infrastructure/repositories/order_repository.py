"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.logging_config import get_logger
from domain.order.entity import (
    DeliveryInfo,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusRecord,
    OrderTotals,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import (
    DeliveryInfoModel,
    OrderItemModel,
    OrderModel,
    OrderStatusEventModel,
)


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _delivery_to_entity(model: Optional[DeliveryInfoModel]) -> Optional[DeliveryInfo]:
        if model is None:
            return None
        return DeliveryInfo(
            recipient_name=model.recipient_name,
            phone=model.phone,
            address=model.address,
            province_city=model.province_city,
            email=model.email,
            instructions=model.instructions,
            is_rush=bool(model.is_rush),
            rush_window_start=model.rush_window_start,
            rush_window_end=model.rush_window_end,
        )

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体（调用方需已预加载关系）"""
        return Order(
            id=model.id,
            status=OrderStatus(model.status),
            items=tuple(
                OrderItem(
                    id=item.id,
                    product_id=item.product_id,
                    product_title=item.product_title,
                    quantity=item.quantity,
                    unit_price=Decimal(str(item.unit_price)),
                )
                for item in model.items
            ),
            totals=OrderTotals(
                subtotal_excl_vat=Decimal(str(model.subtotal_excl_vat)),
                subtotal_incl_vat=Decimal(str(model.subtotal_incl_vat)),
                delivery_fee=Decimal(str(model.delivery_fee)),
                total=Decimal(str(model.total_amount)),
            ),
            delivery_info=self._delivery_to_entity(model.delivery_info),
            user_id=model.user_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _delivery_to_model(order_id: str, info: DeliveryInfo) -> DeliveryInfoModel:
        return DeliveryInfoModel(
            order_id=order_id,
            recipient_name=info.recipient_name,
            phone=info.phone,
            email=info.email,
            address=info.address,
            province_city=info.province_city,
            instructions=info.instructions,
            is_rush=info.is_rush,
            rush_window_start=info.rush_window_start,
            rush_window_end=info.rush_window_end,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        model = OrderModel(
            id=entity.id,
            user_id=entity.user_id,
            status=entity.status.value,
            subtotal_excl_vat=entity.totals.subtotal_excl_vat,
            subtotal_incl_vat=entity.totals.subtotal_incl_vat,
            delivery_fee=entity.totals.delivery_fee,
            total_amount=entity.totals.total,
            items=[
                OrderItemModel(
                    product_id=item.product_id,
                    product_title=item.product_title,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in entity.items
            ],
        )
        if entity.delivery_info is not None:
            model.delivery_info = self._delivery_to_model(entity.id, entity.delivery_info)
        return model

    def _aggregate_query(self):
        return select(OrderModel).options(
            selectinload(OrderModel.items),
            selectinload(OrderModel.delivery_info),
        )

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取完整订单聚合"""
        result = await self.session.execute(
            self._aggregate_query()
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def create(self, order: Order) -> Order:
        """创建订单（含明细与可选配送信息）"""
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        logger.info("order_created", order_id=db_order.id, status=db_order.status, items=len(order.items))
        created = await self.get_by_id(db_order.id)
        assert created is not None
        return created

    async def update_status(self, order_id: str, *, expected: OrderStatus, new: OrderStatus) -> bool:
        """条件更新状态（compare-and-swap）"""
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected.value)
            .values(status=new.value)
            .execution_options(synchronize_session=False)
        )
        swapped = result.rowcount == 1
        if not swapped:
            logger.warning(
                "order_status_cas_lost",
                order_id=order_id,
                expected=expected.value,
                new=new.value,
            )
        return swapped

    async def update_delivery(self, order_id: str, delivery_info: DeliveryInfo, totals: OrderTotals) -> None:
        """写入配送信息并刷新合计"""
        result = await self.session.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.delivery_info))
            .where(OrderModel.id == order_id)
        )
        db_order = result.scalar_one()
        if db_order.delivery_info is None:
            db_order.delivery_info = self._delivery_to_model(order_id, delivery_info)
        else:
            target = db_order.delivery_info
            target.recipient_name = delivery_info.recipient_name
            target.phone = delivery_info.phone
            target.email = delivery_info.email
            target.address = delivery_info.address
            target.province_city = delivery_info.province_city
            target.instructions = delivery_info.instructions
            target.is_rush = delivery_info.is_rush
            target.rush_window_start = delivery_info.rush_window_start
            target.rush_window_end = delivery_info.rush_window_end
        db_order.subtotal_excl_vat = totals.subtotal_excl_vat
        db_order.subtotal_incl_vat = totals.subtotal_incl_vat
        db_order.delivery_fee = totals.delivery_fee
        db_order.total_amount = totals.total
        await self.session.flush()

    async def add_status_event(self, record: OrderStatusRecord) -> None:
        self.session.add(
            OrderStatusEventModel(
                order_id=record.order_id,
                from_status=record.from_status.value,
                to_status=record.to_status.value,
                actor=record.actor,
                reason=record.reason,
                created_at=record.created_at,
            )
        )
        await self.session.flush()

    async def list_status_events(self, order_id: str) -> List[OrderStatusRecord]:
        result = await self.session.execute(
            select(OrderStatusEventModel)
            .where(OrderStatusEventModel.order_id == order_id)
            .order_by(OrderStatusEventModel.created_at, OrderStatusEventModel.id)
        )
        return [
            OrderStatusRecord(
                order_id=row.order_id,
                from_status=OrderStatus(row.from_status),
                to_status=OrderStatus(row.to_status),
                actor=row.actor,
                reason=row.reason,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]
