"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Numeric, String, Text, text

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentMethodModel(Base):
    """支付方式（由账户管理维护，本服务只读）"""
    __tablename__ = "payment_methods"

    id = Column(String(64), primary_key=True)
    method_type = Column(String(40), nullable=False, comment="CREDIT_CARD / DOMESTIC_DEBIT_CARD")
    user_id = Column(String(64), nullable=True, index=True, comment="所属用户（游客为空）")
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class PaymentTransactionModel(Base):
    """
    支付交易数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.PaymentTransaction 中
    """
    __tablename__ = "payment_transactions"

    id = Column(String(64), primary_key=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False, index=True, comment="订单ID")
    payment_method_id = Column(String(64), ForeignKey("payment_methods.id"), nullable=True)
    transaction_type = Column(String(20), nullable=False, default="PAYMENT", comment="PAYMENT / REFUND")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="交易金额")
    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="PENDING/SUCCESS/FAILED")

    # 网关信息
    gateway_ref = Column(String(128), nullable=True, unique=True, comment="网关交易参考号 vnp_TxnRef")
    external_transaction_id = Column(String(128), nullable=True, comment="网关交易号 vnp_TransactionNo")
    content = Column(Text, nullable=True, comment="网关结果摘要")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="终态时间")

    __table_args__ = (
        # 每个订单最多一笔 PENDING 交易
        Index(
            "uq_payment_transactions_active_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id='{self.id}', order_id='{self.order_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
