"""
订单API路由 - 结账、配送信息与订单生命周期
"""
from typing import List

from fastapi import APIRouter, Depends, status

from application.dto import (
    DeliveryInfoUpdateDTO,
    OrderCreateDTO,
    OrderRejectDTO,
    OrderResponseDTO,
    OrderStatusRecordDTO,
    PaymentReadinessDTO,
)
from application.services.order_service import OrderApplicationService
from application.services.order_validation_service import OrderValidationService
from api.dependencies import get_order_service, get_order_validation_service
from core.response import success_response, Response as ApiResponse


router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


@router.post(
    "",
    summary="开始结账",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[OrderResponseDTO],
)
async def create_order(
    payload: OrderCreateDTO,
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    以商品价格快照创建订单

    - **items**: 至少一件商品，数量与单价均须为正
    - 新订单状态为 PENDING_DELIVERY_INFO
    """
    order = await service.create_order(payload)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order created")


@router.get("/{order_id}", summary="获取订单", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id)
    return success_response(data=OrderResponseDTO.from_entity(order))


@router.get(
    "/{order_id}/status-history",
    summary="订单状态变更记录",
    response_model=ApiResponse[List[OrderStatusRecordDTO]],
)
async def get_status_history(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    records = await service.list_status_history(order_id)
    return success_response(data=[OrderStatusRecordDTO.from_entity(r) for r in records])


@router.put("/{order_id}/delivery-info", summary="保存配送信息", response_model=ApiResponse[OrderResponseDTO])
async def save_delivery_info(
    order_id: str,
    payload: DeliveryInfoUpdateDTO,
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    保存配送信息并重新计算订单金额

    - 仅在支付开始前可修改
    - 加急配送仅支持指定城市，且需提供有效的时间窗口
    """
    order = await service.save_delivery_info(
        order_id,
        payload.delivery_info.to_entity(),
        payload.delivery_fee,
        actor="customer",
    )
    return success_response(data=OrderResponseDTO.from_entity(order), message="Delivery info saved")


@router.get(
    "/{order_id}/payment-validation",
    summary="校验订单是否可支付",
    response_model=ApiResponse[OrderResponseDTO],
)
async def validate_for_payment(
    order_id: str,
    service: OrderValidationService = Depends(get_order_validation_service),
):
    """校验失败时返回 422，错误体中的 message_key 指明具体规则"""
    order = await service.validate_for_payment(order_id)
    return success_response(data=OrderResponseDTO.from_entity(order))


@router.get(
    "/{order_id}/payment-readiness",
    summary="订单是否可支付",
    response_model=ApiResponse[PaymentReadinessDTO],
)
async def payment_readiness(
    order_id: str,
    service: OrderValidationService = Depends(get_order_validation_service),
):
    ready = await service.is_ready_for_payment(order_id)
    return success_response(data=PaymentReadinessDTO(order_id=order_id, ready=ready))


@router.post("/{order_id}/cancel", summary="取消订单", response_model=ApiResponse[OrderResponseDTO])
async def cancel_order(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.cancel_order(order_id)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order cancelled")


@router.post("/{order_id}/reject", summary="拒绝订单", response_model=ApiResponse[OrderResponseDTO])
async def reject_order(
    order_id: str,
    payload: OrderRejectDTO,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.reject_order(order_id, payload.reason)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order rejected")


@router.post("/{order_id}/ship", summary="订单发货", response_model=ApiResponse[OrderResponseDTO])
async def ship_order(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.mark_shipped(order_id)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order shipped")


@router.post("/{order_id}/deliver", summary="订单送达", response_model=ApiResponse[OrderResponseDTO])
async def deliver_order(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.mark_delivered(order_id)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order delivered")
