"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    """输入或业务规则不满足，调用方修正输入后可重试。"""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        code: int = BusinessCode.PARAM_VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )


class ResourceNotFoundException(BusinessException):
    def __init__(
        self,
        message: str = "Resource not found",
        *,
        code: int = BusinessCode.NOT_FOUND,
        error_type: str = "NotFound",
        details: dict | None = None,
        message_key: str = "resource.not_found",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
            message_key=message_key,
        )


class OrderNotFoundException(ResourceNotFoundException):
    def __init__(self, order_id: str):
        super().__init__(
            f"Order {order_id} not found",
            code=BusinessCode.ORDER_NOT_FOUND,
            error_type="OrderNotFound",
            details={"order_id": order_id},
            message_key="order.not_found",
        )


class PaymentTransactionNotFoundException(ResourceNotFoundException):
    def __init__(self, transaction_id: str):
        super().__init__(
            f"Payment transaction {transaction_id} not found",
            code=BusinessCode.PAYMENT_TRANSACTION_NOT_FOUND,
            error_type="PaymentTransactionNotFound",
            details={"transaction_id": transaction_id},
            message_key="payment.transaction.not_found",
        )


class PaymentMethodNotFoundException(ResourceNotFoundException):
    def __init__(self, method_id: str):
        super().__init__(
            f"Payment method {method_id} not found",
            code=BusinessCode.PAYMENT_METHOD_NOT_FOUND,
            error_type="PaymentMethodNotFound",
            details={"payment_method_id": method_id},
            message_key="payment.method.not_found",
        )


class InvalidStateTransitionException(BusinessException):
    def __init__(self, order_id: str, current: str, target: str, *, reason: str | None = None):
        message = f"Order {order_id} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            code=BusinessCode.INVALID_STATE_TRANSITION,
            message=message,
            error_type="InvalidStateTransition",
            details={"order_id": order_id, "current_status": current, "target_status": target},
            field="status",
            message_key="order.status.invalid_transition",
        )


class PaymentException(BusinessException):
    """网关通信或支付发起失败。交易记录保持 PENDING，交由对账处理。"""

    def __init__(
        self,
        message: str,
        *,
        code: int = PaymentCode.PROVIDER_ERROR,
        details: dict | None = None,
        message_key: str = "payment.initiation_failed",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type="PaymentError",
            details=details,
            message_key=message_key,
        )


class OrderAlreadyPaidException(DomainValidationException):
    """订单已有成功扣款：不可再次支付，取消需走退款流程。"""

    def __init__(self, order_id: str, transaction_id: str, *, message_key: str = "payment.already_paid"):
        super().__init__(
            f"Order {order_id} has already been paid by transaction {transaction_id}",
            field="order_id",
            details={"order_id": order_id, "transaction_id": transaction_id},
            message_key=message_key,
            code=BusinessCode.ORDER_ALREADY_PAID,
        )


class PaymentSecurityException(BusinessException):
    """签名或金额校验失败。详情仅记录在服务端日志中，对网关只返回通用应答码。"""

    def __init__(
        self,
        message: str,
        *,
        code: int = PaymentCode.SIGNATURE_ERROR,
        details: dict | None = None,
        message_key: str = "payment.security.signature",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type="PaymentSecurityError",
            details=details,
            message_key=message_key,
        )
