"""
VNPay gateway client.

Builds signed redirect URLs (command `pay`), verifies callback signatures and
queries transaction status (command `querydr`). Signatures are HMAC-SHA512
over the URL-encoded, name-sorted, non-empty parameters.
"""
from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional
from urllib.parse import quote_plus, urlencode
from zoneinfo import ZoneInfo

import httpx

from application.dtos.payments import (
    ClientContext,
    GatewayStatusQuery,
    GatewayStatusResult,
    PaymentRedirect,
)
from core.settings import VNPaySettings, payment_settings
from domain.order.entity import Order
from domain.payment.entity import PaymentMethod, PaymentMethodType, StandardStatus, to_minor_units
from domain.payment.reference import build_gateway_ref, created_at_from_ref
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from shared.codes.payment_codes import VNPAY_QUERY_STATUS_TO_INTERNAL


DATE_FORMAT = "%Y%m%d%H%M%S"
SIGNATURE_FIELDS = frozenset({"vnp_SecureHash", "vnp_SecureHashType"})
# International cards go straight to the card form; domestic cards pick a bank on VNPay.
CREDIT_CARD_BANK_CODE = "INTCARD"


def build_hash_data(params: Mapping[str, Optional[str]]) -> str:
    pairs = []
    for name in sorted(params):
        value = params[name]
        if name in SIGNATURE_FIELDS or value is None or str(value) == "":
            continue
        pairs.append(f"{quote_plus(name)}={quote_plus(str(value))}")
    return "&".join(pairs)


def sign(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


class VNPayClient(BasePaymentClient):
    provider = "vnpay"

    def __init__(
        self,
        config: Optional[VNPaySettings] = None,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(timeouts=timeouts, retry=retry)
        self.config = config or payment_settings.vnpay
        self._tz = ZoneInfo(self.config.timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def sign_params(self, params: Mapping[str, Optional[str]]) -> str:
        self._require_credentials()
        return sign(self.config.hash_secret or "", build_hash_data(params))

    def verify_signature(self, params: Mapping[str, str]) -> bool:
        received = params.get("vnp_SecureHash")
        secret = self.config.hash_secret
        if not received or not secret:
            return False
        expected = sign(secret, build_hash_data(params))
        return hmac.compare_digest(expected.encode("ascii"), str(received).lower().encode("utf-8"))

    async def build_payment_request(
        self,
        order: Order,
        method: PaymentMethod,
        context: ClientContext,
    ) -> PaymentRedirect:
        self._require_credentials()
        now = self._clock()
        local_now = now.astimezone(self._tz)
        gateway_ref = build_gateway_ref(order.id, now)

        params: dict[str, str] = {
            "vnp_Version": self.config.version,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.config.tmn_code or "",
            "vnp_Amount": str(to_minor_units(order.total)),
            "vnp_CurrCode": self.config.currency,
            "vnp_TxnRef": gateway_ref,
            "vnp_OrderInfo": f"Thanh toan don hang {order.id}",
            "vnp_OrderType": self.config.order_type,
            "vnp_Locale": context.locale or self.config.locale,
            "vnp_ReturnUrl": context.return_url or self.config.return_url,
            "vnp_IpAddr": context.client_ip,
            "vnp_CreateDate": local_now.strftime(DATE_FORMAT),
            "vnp_ExpireDate": (local_now + timedelta(minutes=self.config.expire_minutes)).strftime(DATE_FORMAT),
        }
        bank_code = context.bank_code
        if bank_code is None and method.method_type is PaymentMethodType.CREDIT_CARD:
            bank_code = CREDIT_CARD_BANK_CODE
        if bank_code:
            params["vnp_BankCode"] = bank_code

        secure_hash = self.sign_params(params)
        query = urlencode(sorted(params.items()) + [("vnp_SecureHash", secure_hash)])
        self._log(
            "vnpay_payment_url_built",
            order_id=order.id,
            gateway_ref=gateway_ref,
            amount_minor=params["vnp_Amount"],
            bank_code=bank_code,
        )
        return PaymentRedirect(redirect_url=f"{self.config.pay_url}?{query}", gateway_ref=gateway_ref)

    async def query_transaction(self, query: GatewayStatusQuery) -> GatewayStatusResult:
        self._require_credentials()
        transaction_date = query.transaction_date or created_at_from_ref(query.gateway_ref)
        if transaction_date is None:
            raise PaymentProviderError(
                "Cannot determine the original transaction date",
                provider=self.provider,
                details={"gateway_ref": query.gateway_ref},
            )
        now = self._clock().astimezone(self._tz)
        payload: dict[str, str] = {
            "vnp_RequestId": uuid.uuid4().hex,
            "vnp_Version": self.config.version,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.config.tmn_code or "",
            "vnp_TxnRef": query.gateway_ref,
            "vnp_OrderInfo": query.order_info or f"Truy van giao dich {query.gateway_ref}",
            "vnp_TransactionDate": transaction_date.astimezone(self._tz).strftime(DATE_FORMAT),
            "vnp_CreateDate": now.strftime(DATE_FORMAT),
            "vnp_IpAddr": query.client_ip,
        }
        payload["vnp_SecureHash"] = self.sign_params(payload)

        async def _send() -> dict:
            async with self.client() as c:
                resp = await c.post(self.config.api_url, json=payload)
                resp.raise_for_status()
                return resp.json()

        try:
            data = await self._retry(_send)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise PaymentRecoverableError(
                "VNPay query could not reach the gateway",
                provider=self.provider,
                details={"gateway_ref": query.gateway_ref, "error": str(exc)},
            ) from exc
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise PaymentProviderError(
                "VNPay query returned an invalid response",
                provider=self.provider,
                details={"gateway_ref": query.gateway_ref, "error": str(exc)},
            ) from exc

        response_code = data.get("vnp_ResponseCode")
        if response_code != "00":
            raise PaymentProviderError(
                f"VNPay query failed: {data.get('vnp_Message')}",
                provider=self.provider,
                provider_code=response_code,
            )
        status_code = data.get("vnp_TransactionStatus")
        raw_amount = str(data.get("vnp_Amount") or "")
        self._log("vnpay_query_completed", gateway_ref=query.gateway_ref, transaction_status=status_code)
        return GatewayStatusResult(
            gateway_ref=query.gateway_ref,
            response_code=response_code,
            transaction_status_code=status_code,
            outcome=StandardStatus(VNPAY_QUERY_STATUS_TO_INTERNAL.get(status_code or "", StandardStatus.FAILED.value)),
            amount_minor=int(raw_amount) if raw_amount.isascii() and raw_amount.isdigit() else None,
            external_transaction_id=data.get("vnp_TransactionNo"),
            raw=data,
        )

    def _require_credentials(self) -> None:
        if not self.config.tmn_code or not self.config.hash_secret:
            raise PaymentProviderError(
                "VNPay merchant credentials are not configured",
                provider=self.provider,
            )
