"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import DeliveryInfoModel, OrderItemModel, OrderModel, OrderStatusEventModel
from .payment import PaymentMethodModel, PaymentTransactionModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "DeliveryInfoModel",
    "OrderStatusEventModel",
    "PaymentMethodModel",
    "PaymentTransactionModel",
]
