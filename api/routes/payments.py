"""
Payments API routes.

Exposes the VNPay IPN and return endpoints plus initiation and status
queries via the application services. Keep this thin: no gateway details here.
"""
from __future__ import annotations

import ipaddress
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import (
    get_client_ip,
    get_order_validation_service,
    get_payment_callback_service,
    get_payment_return_service,
    get_payment_service,
)
from application.dtos.payments import (
    ClientContext,
    GatewayStatusResult,
    InitiatePaymentDTO,
    PaymentInitiationDTO,
    PaymentReturnResult,
    PaymentTransactionDTO,
)
from application.services.order_validation_service import OrderValidationService
from application.services.payment_callback_service import PaymentCallbackService, ipn_ack
from application.services.payment_return_service import PaymentReturnService
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import success_response, Response as ApiResponse
from core.settings import payment_settings
from shared.codes.payment_codes import IpnAckCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def ip_allowed(remote_ip: Optional[str], allowlist: Optional[List[str]]) -> bool:
    """Exact IPs or CIDR ranges; an empty allowlist admits everyone."""
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            continue
    return False


async def _callback_params(request: Request) -> dict[str, str]:
    # VNPay sends IPN as a GET query string; form posts are accepted too.
    params = dict(request.query_params)
    if request.method == "POST":
        ct = (request.headers.get("content-type") or "").lower()
        if "application/x-www-form-urlencoded" in ct or "multipart/form-data" in ct:
            form = await request.form()
            params.update({k: str(v) for k, v in form.items()})
    return params


@router.api_route("/vnpay/ipn", methods=["GET", "POST"], summary="VNPay IPN callback")
async def vnpay_ipn(
    request: Request,
    remote_ip: str = Depends(get_client_ip),
    service: PaymentCallbackService = Depends(get_payment_callback_service),
):
    if not ip_allowed(remote_ip, payment_settings.ipn.ip_allowlist):
        logger.warning("ipn_ip_not_allowed", remote_ip=remote_ip)
        return ipn_ack(IpnAckCode.INVALID_SIGNATURE).model_dump(by_alias=True)

    ack = await service.handle_ipn(await _callback_params(request))
    return ack.model_dump(by_alias=True)


@router.get("/vnpay/return", summary="VNPay browser return", response_model=ApiResponse[PaymentReturnResult])
async def vnpay_return(
    request: Request,
    service: PaymentReturnService = Depends(get_payment_return_service),
):
    result = await service.handle_return(dict(request.query_params))
    return success_response(data=result, message=result.title)


@router.post("", summary="Initiate payment", response_model=ApiResponse[PaymentInitiationDTO])
async def initiate_payment(
    payload: InitiatePaymentDTO,
    client_ip: str = Depends(get_client_ip),
    validation: OrderValidationService = Depends(get_order_validation_service),
    service: PaymentService = Depends(get_payment_service),
):
    order = await validation.validate_for_payment(payload.order_id)
    txn, redirect_url = await service.initiate_payment(
        order,
        payload.payment_method_id,
        ClientContext(client_ip=client_ip, locale=payload.locale, bank_code=payload.bank_code),
    )
    return success_response(
        data=PaymentInitiationDTO(transaction=PaymentTransactionDTO.from_entity(txn), redirect_url=redirect_url),
        message="Payment initiated",
    )


@router.get(
    "/transactions/{transaction_id}",
    summary="Payment transaction status",
    response_model=ApiResponse[PaymentTransactionDTO],
)
async def get_transaction(
    transaction_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    txn = await service.check_status(transaction_id)
    return success_response(data=PaymentTransactionDTO.from_entity(txn))


@router.get(
    "/orders/{order_id}/transactions",
    summary="Payment transactions of an order",
    response_model=ApiResponse[List[PaymentTransactionDTO]],
)
async def list_order_transactions(
    order_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    txns = await service.list_order_transactions(order_id)
    return success_response(data=[PaymentTransactionDTO.from_entity(t) for t in txns])


@router.get(
    "/transactions/{transaction_id}/gateway-status",
    summary="Query gateway for transaction status",
    response_model=ApiResponse[GatewayStatusResult],
)
async def gateway_status(
    transaction_id: str,
    client_ip: str = Depends(get_client_ip),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.query_gateway_status(transaction_id, client_ip)
    return success_response(data=result)
