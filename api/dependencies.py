"""
API依赖项 - 组合根

网关与通知器在应用启动时（lifespan）构建并挂在 app.state 上；
应用服务按请求构建。测试通过 dependency_overrides 替换。
"""
from typing import Callable, Optional

from fastapi import Depends, Request

from api.middleware.request_id import resolve_client_ip
from application.ports.notifications import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderApplicationService
from application.services.order_validation_service import OrderValidationService
from application.services.payment_callback_service import PaymentCallbackService
from application.services.payment_return_service import PaymentReturnService
from application.services.payment_service import PaymentService
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_payment_gateway(request: Request) -> PaymentGateway:
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        # lifespan 未运行（如嵌入式调用）时按需构建
        from infrastructure.external.payments import get_payment_gateway as build_gateway

        gateway = build_gateway()
        request.app.state.payment_gateway = gateway
    return gateway


def get_notifier(request: Request) -> Optional[PaymentNotifier]:
    return getattr(request.app.state, "notifier", None)


def get_client_ip(request: Request) -> str:
    """客户端IP：优先使用 RequestIDMiddleware 解析的结果"""
    client_ip = getattr(request.state, "client_ip", None)
    if client_ip:
        return client_ip
    return resolve_client_ip(request.client.host if request.client else None, None, None, ())


async def get_order_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    notifier: Optional[PaymentNotifier] = Depends(get_notifier),
) -> OrderApplicationService:
    return OrderApplicationService(uow_factory=uow_factory, notifier=notifier)


async def get_order_validation_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> OrderValidationService:
    return OrderValidationService(uow_factory=uow_factory)


async def get_payment_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Optional[PaymentNotifier] = Depends(get_notifier),
) -> PaymentService:
    return PaymentService(uow_factory=uow_factory, gateway=gateway, notifier=notifier)


async def get_payment_callback_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Optional[PaymentNotifier] = Depends(get_notifier),
) -> PaymentCallbackService:
    return PaymentCallbackService(uow_factory=uow_factory, gateway=gateway, notifier=notifier)


async def get_payment_return_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentReturnService:
    return PaymentReturnService(uow_factory=uow_factory, gateway=gateway)
