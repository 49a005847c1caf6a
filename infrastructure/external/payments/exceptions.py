"""
Gateway failures mapped onto BusinessException so the API layer renders them uniformly.

Recoverable errors (timeouts, connection resets) are worth retrying later;
provider errors mean the gateway answered and refused.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class GatewayError(BusinessException):
    code_value: int = PaymentCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=type(self).__name__,
            details={"provider": provider, "provider_code": provider_code, **(details or {})},
            message_key="payment.gateway_error",
        )


class PaymentProviderError(GatewayError):
    code_value = PaymentCode.PROVIDER_ERROR


class PaymentRecoverableError(GatewayError):
    code_value = PaymentCode.PROVIDER_RECOVERABLE
