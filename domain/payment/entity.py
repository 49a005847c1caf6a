"""
支付领域实体 - 支付交易与支付方式
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from domain.common.exceptions import DomainValidationException


class TransactionStatus(str, Enum):
    """交易状态：PENDING -> SUCCESS / FAILED，单向且终态"""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TransactionType(str, Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class StandardStatus(str, Enum):
    """网关响应码映射后的标准结果"""
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentMethodType(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DOMESTIC_DEBIT_CARD = "DOMESTIC_DEBIT_CARD"


TERMINAL_TRANSACTION_STATUSES = frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_minor_units(amount: Decimal) -> int:
    """金额转换为网关使用的最小单位（x100）"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), ROUND_HALF_UP))


def new_transaction_id() -> str:
    return f"TXN{uuid.uuid4().hex[:16].upper()}"


def settled_payment(transactions: Iterable["PaymentTransaction"]) -> Optional["PaymentTransaction"]:
    """订单中已成功扣款的支付交易（若有）"""
    return next(
        (
            t for t in transactions
            if t.transaction_type is TransactionType.PAYMENT and t.status is TransactionStatus.SUCCESS
        ),
        None,
    )


def outcome_to_transaction_status(outcome: StandardStatus) -> Optional[TransactionStatus]:
    """SUCCESS -> SUCCESS；FAILED/CANCELLED -> FAILED；PENDING 不落库"""
    if outcome is StandardStatus.SUCCESS:
        return TransactionStatus.SUCCESS
    if outcome in (StandardStatus.FAILED, StandardStatus.CANCELLED):
        return TransactionStatus.FAILED
    return None


@dataclass(frozen=True)
class PaymentMethod:
    """支付方式（只读，归属账户管理）"""

    id: str
    method_type: PaymentMethodType
    user_id: Optional[str] = None


@dataclass
class PaymentTransaction:
    """
    支付交易

    业务规则：
    1. 金额必须大于0
    2. 每个订单同一时间最多一笔 PENDING 交易
    3. 状态只能从 PENDING 迁移到 SUCCESS 或 FAILED 一次
    """

    id: str
    order_id: str
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    transaction_type: TransactionType = TransactionType.PAYMENT
    payment_method_id: Optional[str] = None
    gateway_ref: Optional[str] = None
    external_transaction_id: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount is None or Decimal(self.amount) <= 0:
            raise DomainValidationException(
                f"Transaction amount must be positive: {self.amount}",
                field="amount",
                message_key="payment.amount.non_positive",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSACTION_STATUSES

    def resolve(self, status: TransactionStatus, *, external_id: Optional[str], content: Optional[str]) -> None:
        """在内存中应用终态；持久化由仓储的条件更新完成"""
        if self.is_terminal():
            raise DomainValidationException(
                f"Transaction {self.id} is already {self.status.value}",
                field="status",
                message_key="payment.transaction.already_terminal",
            )
        if status not in TERMINAL_TRANSACTION_STATUSES:
            raise DomainValidationException(
                f"{status.value} is not a terminal transaction status",
                field="status",
            )
        now = datetime.now(timezone.utc)
        self.status = status
        self.external_transaction_id = external_id
        self.content = content
        self.completed_at = now
        self.updated_at = now
