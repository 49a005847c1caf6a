"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from application.dto import DTOBase
from domain.payment.entity import PaymentTransaction, StandardStatus, TransactionStatus, TransactionType


class ClientContext(BaseModel):
    """Request-side facts the gateway needs to build a redirect."""

    client_ip: str = "127.0.0.1"
    locale: Optional[str] = None
    bank_code: Optional[str] = None
    return_url: Optional[str] = None


class PaymentRedirect(BaseModel):
    redirect_url: str
    gateway_ref: str


class InitiatePaymentDTO(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=64)
    payment_method_id: str = Field(..., min_length=1, max_length=64)
    bank_code: Optional[str] = Field(default=None, max_length=20)
    locale: Optional[str] = None

    @field_validator("locale")
    @classmethod
    def _validate_locale(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v not in {"vn", "en"}:
            raise ValueError("locale must be 'vn' or 'en'")
        return v


class PaymentTransactionDTO(DTOBase):
    id: str
    order_id: str
    amount: Decimal
    status: TransactionStatus
    transaction_type: TransactionType
    payment_method_id: Optional[str] = None
    gateway_ref: Optional[str] = None
    external_transaction_id: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, txn: PaymentTransaction) -> "PaymentTransactionDTO":
        return cls(
            id=txn.id,
            order_id=txn.order_id,
            amount=txn.amount,
            status=txn.status,
            transaction_type=txn.transaction_type,
            payment_method_id=txn.payment_method_id,
            gateway_ref=txn.gateway_ref,
            external_transaction_id=txn.external_transaction_id,
            content=txn.content,
            created_at=txn.created_at,
            completed_at=txn.completed_at,
        )


class PaymentInitiationDTO(DTOBase):
    transaction: PaymentTransactionDTO
    redirect_url: str


class IpnAck(BaseModel):
    """Machine acknowledgement returned to the gateway (`{"RspCode", "Message"}` on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(serialization_alias="RspCode")
    message: str = Field(serialization_alias="Message")


class PaymentReturnResult(BaseModel):
    """Advisory result for the customer's browser after the gateway redirect."""

    verified: bool
    outcome: StandardStatus
    title: str
    message: str
    response_code: Optional[str] = None
    gateway_ref: Optional[str] = None
    order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    transaction_status: Optional[TransactionStatus] = None
    reconciled: bool = False


class GatewayStatusQuery(BaseModel):
    gateway_ref: str
    # Defaults to the creation moment encoded in the gateway reference
    transaction_date: Optional[datetime] = None
    client_ip: str = "127.0.0.1"
    order_info: Optional[str] = None


class GatewayStatusResult(BaseModel):
    gateway_ref: str
    response_code: Optional[str] = None
    transaction_status_code: Optional[str] = None
    outcome: StandardStatus
    amount_minor: Optional[int] = None
    external_transaction_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)
