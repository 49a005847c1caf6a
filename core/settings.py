"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials can be loaded
(and overridden in tests) without touching the application settings.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 15.0
    read: float = 15.0
    write: float = 15.0
    # Upper bound for building the gateway redirect during initiation
    initiate: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class IpnSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs allowed to deliver IPN callbacks


class SweepSettings(BaseModel):
    # No default on purpose: expiry stays disabled until an operator sets it.
    pending_timeout_minutes: Optional[int] = None
    interval_seconds: int = 300
    batch_size: int = 100


class VNPaySettings(BaseModel):
    tmn_code: Optional[str] = None
    hash_secret: Optional[str] = None
    pay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    api_url: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    return_url: str = "http://localhost:8000/api/v1/payments/vnpay/return"
    version: str = "2.1.0"
    currency: str = "VND"
    locale: str = "vn"
    order_type: str = "other"
    timezone: str = "Asia/Ho_Chi_Minh"
    expire_minutes: int = 15


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="vnpay", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    ipn: IpnSettings = Field(default_factory=IpnSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)

    vnpay: VNPaySettings = Field(default_factory=VNPaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
